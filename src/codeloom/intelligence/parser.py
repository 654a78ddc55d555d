"""Extract code elements and relation edges from tree-sitter ASTs."""

from __future__ import annotations

import importlib
import logging
import threading
from dataclasses import dataclass, field
from pathlib import PurePosixPath

import tree_sitter

from codeloom.config import EXTENSION_MAP, GRAMMAR_MODULES
from codeloom.constants import MODULE_ELEMENT_NAME, ElementType, RelationType
from codeloom.intelligence.schemas import (
    CodeElement,
    ElementRelation,
    ParsedFile,
    element_id,
)
from codeloom.resilience.errors import ParsingError

logger = logging.getLogger(__name__)

MODULE_CONTENT_LINES = 50

# Sentinel for nodes that only wrap a declaration (decorators, exports).
_WRAPPER = "wrapper"

# Node types that represent named declarations, per language.
_ELEMENT_NODE_TYPES: dict[str, dict[str, str]] = {
    "python": {
        "function_definition": ElementType.FUNCTION,
        "class_definition": ElementType.CLASS,
        "decorated_definition": _WRAPPER,
    },
    "javascript": {
        "function_declaration": ElementType.FUNCTION,
        "generator_function_declaration": ElementType.FUNCTION,
        "class_declaration": ElementType.CLASS,
        "method_definition": ElementType.METHOD,
        "export_statement": _WRAPPER,
    },
    "typescript": {
        "function_declaration": ElementType.FUNCTION,
        "class_declaration": ElementType.CLASS,
        "abstract_class_declaration": ElementType.CLASS,
        "method_definition": ElementType.METHOD,
        "interface_declaration": ElementType.INTERFACE,
        "type_alias_declaration": ElementType.INTERFACE,
        "export_statement": _WRAPPER,
    },
    "java": {
        "class_declaration": ElementType.CLASS,
        "interface_declaration": ElementType.INTERFACE,
        "enum_declaration": ElementType.CLASS,
        "method_declaration": ElementType.METHOD,
        "constructor_declaration": ElementType.METHOD,
    },
    "go": {
        "function_declaration": ElementType.FUNCTION,
        "method_declaration": ElementType.METHOD,
        "type_spec": ElementType.CLASS,
    },
    "rust": {
        "function_item": ElementType.FUNCTION,
        "struct_item": ElementType.CLASS,
        "enum_item": ElementType.CLASS,
        "trait_item": ElementType.INTERFACE,
    },
}
_ELEMENT_NODE_TYPES["tsx"] = _ELEMENT_NODE_TYPES["typescript"]

# Call expression node types per language
_CALL_NODE_TYPES: dict[str, set[str]] = {
    "python": {"call"},
    "javascript": {"call_expression", "new_expression"},
    "typescript": {"call_expression", "new_expression"},
    "tsx": {"call_expression", "new_expression"},
    "java": {"method_invocation", "object_creation_expression"},
    "go": {"call_expression"},
    "rust": {"call_expression", "macro_invocation"},
}

_IMPORT_NODE_TYPES: dict[str, set[str]] = {
    "python": {"import_from_statement"},
    "javascript": {"import_statement"},
    "typescript": {"import_statement"},
    "tsx": {"import_statement"},
    "java": {"import_declaration"},
    "go": set(),
    "rust": {"use_declaration"},
}

# Variable declarators whose value is a function count as functions (JS/TS).
_FUNCTION_VALUE_TYPES = frozenset({
    "arrow_function",
    "function_expression",
    "function",
})

_NAME_NODE_TYPES = (
    "identifier",
    "name",
    "type_identifier",
    "property_identifier",
    "field_identifier",
)


def language_for(path: str) -> str | None:
    """Map a file path to a supported language name by extension."""
    return EXTENSION_MAP.get(PurePosixPath(path).suffix)


def is_supported(path: str) -> bool:
    return language_for(path) is not None


# ---------------------------------------------------------------------------
# Grammar cache
# ---------------------------------------------------------------------------

_language_cache: dict[str, tree_sitter.Language] = {}
_language_lock = threading.Lock()


def _get_language(language: str) -> tree_sitter.Language | None:
    """Get or load a cached tree-sitter Language."""
    with _language_lock:
        if language in _language_cache:
            return _language_cache[language]
        spec = GRAMMAR_MODULES.get(language)
        if spec is None:
            return None
        module_name, func_name = spec
        try:
            mod = importlib.import_module(module_name)
            capsule: object = getattr(mod, func_name)()
            lang = tree_sitter.Language(capsule)
        except (ImportError, AttributeError):
            logger.warning(
                "event=grammar_unavailable language=%s module=%s",
                language,
                module_name,
            )
            return None
        _language_cache[language] = lang
        return lang


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


@dataclass
class _Extraction:
    file_path: str
    language: str
    elements: list[CodeElement] = field(default_factory=list)
    relations: list[ElementRelation] = field(default_factory=list)
    unresolved: list[tuple[str, str, RelationType]] = field(
        default_factory=list
    )


def parse_source(file_path: str, source: str) -> ParsedFile:
    """Parse ``source`` (the text of ``file_path``) into elements and edges.

    Raises ParsingError when the language is unsupported, its grammar is
    missing, or tree-sitter reports the whole file as an error.
    """
    language = language_for(file_path)
    if language is None:
        raise ParsingError(
            f"Unsupported file type: {file_path}", file_path=file_path
        )
    lang = _get_language(language)
    if lang is None:
        raise ParsingError(
            f"No grammar available for {language}",
            file_path=file_path,
            language=language,
        )

    try:
        # Parser instances are not thread safe; one per call.
        parser = tree_sitter.Parser(lang)
        tree = parser.parse(source.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise ParsingError(
            f"Failed to parse {file_path}: {exc}",
            file_path=file_path,
            language=language,
            cause=exc,
        ) from exc

    root = tree.root_node
    if root.type == "ERROR":
        raise ParsingError(
            f"Unparseable source in {file_path}",
            file_path=file_path,
            language=language,
        )

    lines = source.splitlines()
    ex = _Extraction(file_path=file_path, language=language)
    module = CodeElement(
        id=element_id(file_path, MODULE_ELEMENT_NAME, 1),
        type=ElementType.MODULE,
        name=PurePosixPath(file_path).stem,
        content="\n".join(lines[:MODULE_CONTENT_LINES]),
        file_path=file_path,
        start_line=1,
        end_line=max(1, len(lines)),
        language=language,
    )
    ex.elements.append(module)
    _walk(root, ex, owner=module, qualifier="")

    return ParsedFile(
        file_path=file_path,
        language=language,
        elements=ex.elements,
        relations=ex.relations,
        unresolved_refs=ex.unresolved,
    )


def _walk(
    node: tree_sitter.Node,
    ex: _Extraction,
    owner: CodeElement,
    qualifier: str,
) -> None:
    """Recursively walk the AST, attributing calls to the enclosing element."""
    node_types = _ELEMENT_NODE_TYPES.get(ex.language, {})
    for child in node.children:
        kind = node_types.get(child.type)
        if kind == _WRAPPER:
            _walk(child, ex, owner, qualifier)
            continue
        if kind is None and child.type == "variable_declarator":
            value = child.child_by_field_name("value")
            if value is not None and value.type in _FUNCTION_VALUE_TYPES:
                kind = ElementType.FUNCTION
        if kind is not None:
            element = _make_element(child, ex, kind, owner, qualifier)
            if element is not None:
                ex.elements.append(element)
                ex.relations.append(
                    ElementRelation(
                        from_id=owner.id,
                        to_id=element.id,
                        relation_type=RelationType.DEFINES,
                    )
                )
                _collect_bases(child, ex, element)
                _walk(child, ex, element, f"{qualifier}{element.name}.")
                continue
        _record_reference(child, ex, owner)
        _walk(child, ex, owner, qualifier)


def _make_element(
    node: tree_sitter.Node,
    ex: _Extraction,
    kind: str,
    owner: CodeElement,
    qualifier: str,
) -> CodeElement | None:
    name = _get_name(node)
    if name is None:
        return None
    element_type = ElementType(kind)
    if (
        element_type == ElementType.FUNCTION
        and owner.type in (ElementType.CLASS, ElementType.INTERFACE)
    ):
        element_type = ElementType.METHOD
    start = node.start_point[0] + 1
    end = node.end_point[0] + 1
    # Include the decorator/export wrapper line range in the content.
    content_node = node
    parent = node.parent
    if parent is not None and parent.type in ("decorated_definition",):
        content_node = parent
    content = _node_text(content_node)
    return CodeElement(
        id=element_id(ex.file_path, f"{qualifier}{name}", start),
        type=element_type,
        name=name,
        content=content,
        file_path=ex.file_path,
        start_line=start,
        end_line=end,
        language=ex.language,
    )


def _record_reference(
    node: tree_sitter.Node, ex: _Extraction, owner: CodeElement
) -> None:
    if node.type in _CALL_NODE_TYPES.get(ex.language, set()):
        callee = _get_callee_name(node)
        if callee:
            ex.unresolved.append((owner.id, callee, RelationType.CALLS))
    elif node.type in _IMPORT_NODE_TYPES.get(ex.language, set()):
        for imported in _get_imported_names(node, ex.language):
            ex.unresolved.append((owner.id, imported, RelationType.IMPORTS))


def _collect_bases(
    node: tree_sitter.Node, ex: _Extraction, element: CodeElement
) -> None:
    """Record superclass / implemented-interface names as ``uses`` refs."""
    if element.type not in (ElementType.CLASS, ElementType.INTERFACE):
        return
    for field_name in ("superclasses", "superclass", "interfaces"):
        bases = node.child_by_field_name(field_name)
        if bases is None:
            continue
        for ident in _descendants(bases, ("identifier", "type_identifier")):
            text = _node_text(ident)
            if text:
                ex.unresolved.append((element.id, text, RelationType.USES))
    for child in node.children:
        if child.type in ("class_heritage", "extends_clause"):
            for ident in _descendants(
                child, ("identifier", "type_identifier")
            ):
                text = _node_text(ident)
                if text:
                    ex.unresolved.append(
                        (element.id, text, RelationType.USES)
                    )


def _get_name(node: tree_sitter.Node) -> str | None:
    """Extract the identifier name from a declaration node."""
    named = node.child_by_field_name("name")
    if named is not None and named.text:
        return named.text.decode("utf-8")
    for child in node.children:
        if child.type in _NAME_NODE_TYPES:
            return child.text.decode("utf-8") if child.text else None
    return None


def _get_callee_name(node: tree_sitter.Node) -> str | None:
    """Extract the callee identifier of a call node.

    For ``obj.method()`` returns ``"method"``; for ``foo()`` returns
    ``"foo"``; for ``new Foo()`` returns ``"Foo"``.
    """
    func_node = (
        node.child_by_field_name("function")
        or node.child_by_field_name("constructor")
        or node.child_by_field_name("name")
        or node.child_by_field_name("type")
        or node.child_by_field_name("macro")
    )
    if func_node is None:
        if not node.children:
            return None
        func_node = node.children[0]
        if func_node.type == "new" and len(node.children) > 1:
            func_node = node.children[1]

    if func_node.type in _NAME_NODE_TYPES:
        return _node_text(func_node) or None

    # Attribute access: method name is the last identifier child
    for child in reversed(func_node.children):
        if child.type in _NAME_NODE_TYPES:
            return _node_text(child) or None
    return None


def _get_imported_names(
    node: tree_sitter.Node, language: str
) -> list[str]:
    """Names brought into scope by an import statement."""
    if language == "python":
        names: list[str] = []
        for child in node.children_by_field_name("name"):
            target = child
            if child.type == "aliased_import":
                target = child.child_by_field_name("name") or child
            text = _node_text(target)
            if text:
                names.append(text.rsplit(".", 1)[-1])
        return names
    if language in ("javascript", "typescript", "tsx"):
        clause = None
        for child in node.children:
            if child.type == "import_clause":
                clause = child
                break
        if clause is None:
            return []
        return [
            text
            for ident in _descendants(clause, ("identifier",))
            if (text := _node_text(ident))
        ]
    # java / rust: last path segment
    text = _node_text(node).rstrip(";").strip()
    last = text.replace("::", ".").rsplit(".", 1)[-1].strip("{} ")
    return [last] if last.isidentifier() else []


def _descendants(
    node: tree_sitter.Node, types: tuple[str, ...]
) -> list[tree_sitter.Node]:
    found: list[tree_sitter.Node] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in types:
            found.append(current)
        stack.extend(reversed(current.children))
    return found


def _node_text(node: tree_sitter.Node) -> str:
    return node.text.decode("utf-8") if node.text else ""


class CodeParser:
    """Thin object wrapper so parsing can be injected and substituted."""

    def supports(self, path: str) -> bool:
        return is_supported(path)

    def parse(self, file_path: str, source: str) -> ParsedFile:
        return parse_source(file_path, source)
