"""Rust adapter."""

from __future__ import annotations

import posixpath
from pathlib import PurePosixPath
from typing import Any, List, Optional, Tuple

from .models import Import, ImportedName
from .parser import DefinitionSpec, ModuleIndex, ModuleMatch, TreeSitterAdapter, node_text

RUST_PRELUDE = frozenset({
    "Self", "Option", "Some", "None", "Result", "Ok", "Err", "Vec", "String",
    "Box", "Clone", "Copy", "Send", "Sync", "Sized", "Unpin", "Default",
    "Drop", "Fn", "FnMut", "FnOnce", "Iterator", "IntoIterator",
    "DoubleEndedIterator", "ExactSizeIterator", "Extend", "ToString",
    "ToOwned", "From", "Into", "TryFrom", "TryInto", "AsRef", "AsMut",
    "PartialEq", "Eq", "PartialOrd", "Ord", "Debug", "Display", "Hash",
    "drop", "println", "print", "eprintln", "eprint", "format", "vec",
    "panic", "assert", "assert_eq", "assert_ne", "debug_assert",
    "debug_assert_eq", "write", "writeln", "todo", "unimplemented",
    "unreachable", "matches", "dbg", "include_str", "concat", "env",
    "stringify", "format_args", "std", "core", "alloc",
})

_STD_ROOTS = frozenset({"std", "core", "alloc"})

_PATTERN_STOP = frozenset({"scoped_identifier", "field_expression", "generic_type", "type_identifier"})


def _pattern_names(node: Optional[Any]) -> List[Any]:
    """Identifiers bound by a pattern; enum paths and struct types excluded."""
    if node is None:
        return []
    found: List[Any] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in ("identifier", "shorthand_field_identifier"):
            found.append(current)
            continue
        if current.type in _PATTERN_STOP:
            continue
        type_field = current.child_by_field_name("type")
        for child in reversed(current.named_children):
            if type_field is not None and child.start_byte == type_field.start_byte and child.type == type_field.type:
                continue
            stack.append(child)
    return found


def _path_segments(node: Any) -> List[str]:
    if node is None:
        return []
    if node.type == "scoped_identifier":
        return _path_segments(node.child_by_field_name("path")) + [node_text(node.child_by_field_name("name"))]
    return [segment for segment in node_text(node).split("::") if segment]


def _type_name_node(node: Optional[Any]) -> Optional[Any]:
    while node is not None and node.type in ("generic_type", "scoped_type_identifier", "reference_type"):
        inner = node.child_by_field_name("type") or node.child_by_field_name("name")
        node = inner
    return node


def module_dir(path: str) -> str:
    """Directory holding the child modules of the module in *path*."""
    pure = PurePosixPath(path)
    parent = "" if str(pure.parent) == "." else str(pure.parent)
    if pure.name in ("lib.rs", "main.rs", "mod.rs"):
        return parent
    return posixpath.join(parent, pure.stem) if parent else pure.stem


class RustAdapter(TreeSitterAdapter):
    language = "rust"
    extensions = (".rs",)
    grammar_module = "tree_sitter_rust"

    import_types = frozenset({"use_declaration", "mod_item", "extern_crate_declaration"})
    anonymous_scope_types = frozenset({"closure_expression"})
    call_types = frozenset({"call_expression"})
    member_types = frozenset({"field_expression", "scoped_identifier", "scoped_type_identifier"})
    identifier_types = frozenset({"identifier"})
    type_identifier_types = frozenset({"type_identifier"})
    opaque_types = frozenset({
        "line_comment", "block_comment", "attribute_item", "inner_attribute_item",
        "lifetime", "string_literal", "raw_string_literal", "char_literal",
    })
    comment_types = frozenset({"line_comment", "block_comment"})
    doc_skip_types = frozenset({"attribute_item"})
    builtins = RUST_PRELUDE
    path_qualifiers = True
    suffix_fallback = False

    _SCOPED = {
        "trait_item": ("trait", False),
        "enum_item": ("enum", False),
        "mod_item": ("module", False),
    }

    _PLAIN = {
        "struct_item": "struct",
        "union_item": "struct",
        "type_item": "type",
        "const_item": "constant",
        "static_item": "variable",
        "macro_definition": "macro",
        "enum_variant": "variant",
    }

    # ------------------------------------------------------------------
    # Definitions and bindings
    # ------------------------------------------------------------------

    def definitions(self, node: Any, local: bool) -> List[DefinitionSpec]:
        kind = node.type
        if kind in ("function_item", "function_signature_item"):
            name = node.child_by_field_name("name")
            if name is None:
                return []
            container = node.parent.parent if node.parent is not None else None
            in_impl = (
                node.parent is not None
                and node.parent.type == "declaration_list"
                and container is not None
                and container.type in ("impl_item", "trait_item")
            )
            return [DefinitionSpec(
                kind="method" if in_impl else "function", name_node=name, node=node,
                opens_scope=True, local=True,
                signature=self.signature(node), docstring=self.docstring(node),
            )]
        if kind == "impl_item":
            type_node = _type_name_node(node.child_by_field_name("type"))
            if type_node is None or not node_text(type_node):
                return []
            # The type name stays a reference from the impl to its type
            return [DefinitionSpec(
                kind="impl", name_node=None, name=node_text(type_node), node=node,
                opens_scope=True, signature=self.signature(node), docstring=self.docstring(node),
            )]
        if kind in self._SCOPED:
            if kind == "mod_item" and node.child_by_field_name("body") is None:
                return []
            name = node.child_by_field_name("name")
            if name is None:
                return []
            symbol_kind, is_local = self._SCOPED[kind]
            return [DefinitionSpec(
                kind=symbol_kind, name_node=name, node=node, opens_scope=True, local=is_local,
                signature=self.signature(node), docstring=self.docstring(node),
            )]
        if kind in self._PLAIN:
            name = node.child_by_field_name("name")
            if name is None:
                return []
            return [DefinitionSpec(
                kind=self._PLAIN[kind], name_node=name, node=node,
                opens_scope=kind not in ("enum_variant", "macro_definition"),
                signature=self.signature(node), docstring=self.docstring(node),
            )]
        return []

    def binding_targets(self, node: Any, local: bool) -> List[Any]:
        kind = node.type
        if kind in ("let_declaration", "parameter", "for_expression", "let_condition",
                    "if_let_expression", "while_let_expression"):
            return _pattern_names(node.child_by_field_name("pattern"))
        if kind == "match_arm":
            return _pattern_names(node.child_by_field_name("pattern"))
        if kind == "closure_parameters":
            found: List[Any] = []
            for child in node.named_children:
                if child.type == "parameter":
                    continue  # handled as its own node
                found.extend(_pattern_names(child))
            return found
        if kind == "type_parameters":
            names: List[Any] = []
            for child in node.named_children:
                if child.type == "type_identifier":
                    names.append(child)
                elif child.type in ("constrained_type_parameter", "optional_type_parameter", "type_parameter"):
                    left = child.child_by_field_name("left") or child.child_by_field_name("name")
                    if left is not None and left.type == "type_identifier":
                        names.append(left)
            return names
        return []

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def call_function(self, node: Any) -> Optional[Any]:
        function = node.child_by_field_name("function")
        if function is not None and function.type == "generic_function":
            return function.child_by_field_name("function")
        return function

    def member_parts(self, node: Any):
        if node.type == "field_expression":
            receiver = node.child_by_field_name("value")
            member = node.child_by_field_name("field")
        else:
            receiver = node.child_by_field_name("path")
            member = node.child_by_field_name("name")
        if receiver is None or member is None:
            return None
        return receiver, member

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def parse_import(self, node: Any) -> List[Import]:
        line = node.start_point[0] + 1
        if node.type == "mod_item":
            if node.child_by_field_name("body") is not None:
                return []
            name = node_text(node.child_by_field_name("name"))
            return [Import(specifier=f"self::{name}", line=line, module_alias=name)] if name else []
        if node.type == "extern_crate_declaration":
            name = node_text(node.child_by_field_name("name"))
            alias = node_text(node.child_by_field_name("alias")) or name
            return [Import(specifier=name, line=line, module_alias=alias)] if name else []

        argument = node.child_by_field_name("argument")
        if argument is None:
            return []
        imports: List[Import] = []
        for segments, alias, wildcard in self._flatten(argument, []):
            if not segments:
                continue
            if wildcard:
                imports.append(Import(specifier="::".join(segments), line=line, wildcard=True))
            elif segments[-1] == "self" and len(segments) > 1:
                module = segments[:-1]
                imports.append(Import(specifier="::".join(module), line=line, module_alias=alias or module[-1]))
            elif len(segments) == 1:
                imports.append(Import(specifier=segments[0], line=line, module_alias=alias or segments[0]))
            else:
                imports.append(Import(
                    specifier="::".join(segments[:-1]),
                    line=line,
                    names=(ImportedName(name=segments[-1], alias=alias),),
                ))
        return imports

    def _flatten(self, node: Any, prefix: List[str]) -> List[Tuple[List[str], Optional[str], bool]]:
        kind = node.type
        if kind == "use_as_clause":
            path = _path_segments(node.child_by_field_name("path"))
            return [(prefix + path, node_text(node.child_by_field_name("alias")) or None, False)]
        if kind == "scoped_use_list":
            path = _path_segments(node.child_by_field_name("path"))
            items = node.child_by_field_name("list")
            return self._flatten(items, prefix + path) if items is not None else []
        if kind == "use_list":
            leaves: List[Tuple[List[str], Optional[str], bool]] = []
            for child in node.named_children:
                leaves.extend(self._flatten(child, prefix))
            return leaves
        if kind == "use_wildcard":
            path: List[str] = []
            for child in node.named_children:
                path.extend(_path_segments(child))
            return [(prefix + path, None, True)]
        return [(prefix + _path_segments(node), None, False)]

    # ------------------------------------------------------------------
    # Module resolution
    # ------------------------------------------------------------------

    def match_module(self, specifier: str, importer: str, modules: ModuleIndex) -> ModuleMatch:
        segments = [s for s in specifier.split("::") if s]
        if not segments or segments[0] in _STD_ROOTS:
            return ModuleMatch()
        head = segments[0]
        if head == "crate":
            bases = [self._crate_root(importer, modules)]
            rest = segments[1:]
        elif head in ("self", "super"):
            base = module_dir(importer)
            rest = segments
            if head == "self":
                rest = segments[1:]
            while rest and rest[0] == "super":
                base = posixpath.dirname(base)
                rest = rest[1:]
            if not rest and head == "self":
                return ModuleMatch(files=[importer]) if importer in modules.files else ModuleMatch()
            bases = [base]
        else:
            bases = [module_dir(importer), self._crate_root(importer, modules)]
            rest = segments

        for base in bases:
            if not rest:
                candidates = [posixpath.join(base, f) if base else f for f in ("lib.rs", "main.rs", "mod.rs")]
                if base:
                    candidates.append(f"{base}.rs")
                for candidate in candidates:
                    if candidate in modules.files:
                        return ModuleMatch(files=[candidate])
                continue
            # Longest module path that exists wins; trailing segments may be items
            for end in range(len(rest), 0, -1):
                stem = posixpath.join(base, *rest[:end]) if base else posixpath.join(*rest[:end])
                for candidate in (f"{stem}.rs", f"{stem}/mod.rs"):
                    if candidate in modules.files:
                        return ModuleMatch(files=[candidate])
        return ModuleMatch()

    @staticmethod
    def _crate_root(importer: str, modules: ModuleIndex) -> str:
        directory = posixpath.dirname(importer)
        while True:
            for root_file in ("lib.rs", "main.rs"):
                candidate = posixpath.join(directory, root_file) if directory else root_file
                if candidate in modules.files:
                    return directory
            if not directory:
                break
            directory = posixpath.dirname(directory)
        return "src" if any(p.startswith("src/") for p in modules.files) else ""

    def submodule_specifier(self, specifier: str, name: str) -> Optional[str]:
        return f"{specifier}::{name}"

    def module_keys(self, path: str) -> List[str]:
        pure = PurePosixPath(path)
        keys = [pure.stem]
        if pure.name in ("lib.rs", "main.rs", "mod.rs") and pure.parent.name:
            keys.append(pure.parent.name)
        return keys
