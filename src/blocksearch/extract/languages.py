"""Extension, language and file-type tables."""

from __future__ import annotations

from pathlib import PurePosixPath

from blocksearch.types import ChunkKind

LANG_BY_SUFFIX = {
    ".rs": "rust",
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".go": "go",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".hxx": "cpp",
    ".java": "java",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".cs": "csharp",
    ".yaml": "yaml",
    ".yml": "yaml",
}

# `lang:` accepts canonical names and the short aliases people type.
LANGUAGE_ALIASES = {
    "rs": "rust",
    "py": "python",
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "golang": "go",
    "h": "c",
    "cc": "cpp",
    "cxx": "cpp",
    "hpp": "cpp",
    "hxx": "cpp",
    "c++": "cpp",
    "rb": "ruby",
    "cs": "csharp",
    "c#": "csharp",
    "yml": "yaml",
}

# ripgrep-style `type:` names mapped to the extensions they cover.
FILE_TYPES = {
    "rust": {"rs"},
    "py": {"py", "pyi"},
    "python": {"py", "pyi"},
    "js": {"js", "jsx", "mjs", "cjs"},
    "ts": {"ts", "tsx"},
    "go": {"go"},
    "c": {"c", "h"},
    "cpp": {"cpp", "cc", "cxx", "hpp", "hxx", "h"},
    "java": {"java"},
    "ruby": {"rb"},
    "php": {"php"},
    "swift": {"swift"},
    "csharp": {"cs"},
    "yaml": {"yaml", "yml"},
    "md": {"md", "markdown"},
    "markdown": {"md", "markdown"},
    "json": {"json"},
    "toml": {"toml"},
    "html": {"html", "htm"},
    "css": {"css", "scss"},
    "sh": {"sh", "bash", "zsh"},
}

# tree-sitter grammar names differ from canonical names for a few languages.
GRAMMAR_NAMES = {
    "csharp": "c_sharp",
}


def detect_language(path: str) -> str | None:
    return LANG_BY_SUFFIX.get(PurePosixPath(path).suffix.lower())


def normalize_language(name: str) -> str:
    lowered = name.strip().lower()
    return LANGUAGE_ALIASES.get(lowered, lowered)


def extension_of(path: str) -> str:
    return PurePosixPath(path).suffix.lower().lstrip(".")


# Node kinds (tree-sitter names plus generic names) that delimit a chunk.
DECLARATION_KINDS = {
    "function": ChunkKind.FUNCTION,
    "method": ChunkKind.FUNCTION,
    "function_item": ChunkKind.FUNCTION,
    "function_signature_item": ChunkKind.FUNCTION,
    "function_definition": ChunkKind.FUNCTION,
    "function_declaration": ChunkKind.FUNCTION,
    "generator_function_declaration": ChunkKind.FUNCTION,
    "method_declaration": ChunkKind.FUNCTION,
    "method_definition": ChunkKind.FUNCTION,
    "constructor_declaration": ChunkKind.FUNCTION,
    "singleton_method": ChunkKind.FUNCTION,
    "struct": ChunkKind.STRUCT,
    "struct_item": ChunkKind.STRUCT,
    "struct_specifier": ChunkKind.STRUCT,
    "struct_declaration": ChunkKind.STRUCT,
    "impl": ChunkKind.IMPL,
    "impl_item": ChunkKind.IMPL,
    "trait": ChunkKind.TRAIT,
    "interface": ChunkKind.TRAIT,
    "trait_item": ChunkKind.TRAIT,
    "interface_declaration": ChunkKind.TRAIT,
    "protocol_declaration": ChunkKind.TRAIT,
    "type": ChunkKind.TYPE,
    "type_item": ChunkKind.TYPE,
    "type_declaration": ChunkKind.TYPE,
    "type_alias_declaration": ChunkKind.TYPE,
    "enum": ChunkKind.ENUM,
    "enum_item": ChunkKind.ENUM,
    "enum_specifier": ChunkKind.ENUM,
    "enum_declaration": ChunkKind.ENUM,
    "class": ChunkKind.CLASS,
    "class_definition": ChunkKind.CLASS,
    "class_declaration": ChunkKind.CLASS,
    "class_specifier": ChunkKind.CLASS,
}

# Wrapper nodes whose kind comes from the wrapped definition (Python decorators).
WRAPPER_KINDS = {"decorated_definition"}
