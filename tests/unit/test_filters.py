import pytest

from blocksearch.match.filters import file_passes
from blocksearch.query.parser import parse_query


@pytest.mark.parametrize(
    ("query", "path", "expected"),
    [
        ("x ext:rs", "src/server.rs", True),
        ("x ext:rs", "app/handler.py", False),
        ("x ext:.py,rs", "app/handler.py", True),
        ("x file:handler", "app/handler.py", True),
        ("x file:*.py", "app/handler.py", True),
        ("x file:src/**/*.rs", "src/server.rs", True),
        ("x file:src/**/*.rs", "src/net/server.rs", True),
        ("x dir:src", "src/net/server.rs", True),
        ("x dir:net", "src/net/server.rs", True),
        ("x dir:src/net", "src/net/server.rs", True),
        ("x dir:sr", "src/net/server.rs", False),
        ("x dir:app", "src/net/server.rs", False),
        ("x type:rust", "src/server.rs", True),
        ("x type:py", "src/server.rs", False),
        ("x lang:rs", "src/server.rs", True),
        ("x lang:typescript", "web/App.tsx", True),
        ("x lang:python", "web/App.tsx", False),
    ],
)
def test_single_filter(query: str, path: str, expected: bool) -> None:
    assert file_passes(parse_query(query), path) is expected


def test_same_kind_filters_or_together() -> None:
    plan = parse_query("x ext:rs ext:py")

    assert file_passes(plan, "a.rs")
    assert file_passes(plan, "a.py")
    assert not file_passes(plan, "a.go")


def test_different_kinds_and_together() -> None:
    plan = parse_query("x ext:rs dir:src")

    assert file_passes(plan, "src/a.rs")
    assert not file_passes(plan, "lib/a.rs")
    assert not file_passes(plan, "src/a.py")


def test_no_filters_accept_everything() -> None:
    assert file_passes(parse_query("x"), "anything/at/all.txt")


def test_windows_separators_are_normalized() -> None:
    assert file_passes(parse_query("x dir:src"), "src\\server.rs")
