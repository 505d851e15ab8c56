"""Go adapter."""

from __future__ import annotations

import posixpath
from typing import Any, List, Optional

from .models import Import
from .parser import DefinitionSpec, ModuleIndex, ModuleMatch, TreeSitterAdapter, node_text

GO_PREDECLARED = frozenset({
    "bool", "byte", "complex64", "complex128", "error", "float32", "float64",
    "int", "int8", "int16", "int32", "int64", "rune", "string", "uint",
    "uint8", "uint16", "uint32", "uint64", "uintptr", "any", "comparable",
    "true", "false", "iota", "nil", "append", "cap", "clear", "close",
    "complex", "copy", "delete", "imag", "len", "make", "max", "min", "new",
    "panic", "print", "println", "real", "recover", "_",
})


def _receiver(node: Any):
    """``(receiver name, receiver type name)`` of a method declaration."""
    params = node.child_by_field_name("receiver")
    if params is None:
        return None, None
    for param in params.named_children:
        if param.type != "parameter_declaration":
            continue
        name = param.child_by_field_name("name")
        type_node = param.child_by_field_name("type")
        while type_node is not None and type_node.type in ("pointer_type", "generic_type", "parenthesized_type"):
            inner = type_node.child_by_field_name("type")
            if inner is None:
                inner = next((c for c in type_node.named_children if c.type != "type_arguments"), None)
            type_node = inner
        return (node_text(name) or None), (node_text(type_node) or None)
    return None, None


def _names(node: Any) -> List[Any]:
    return [n for n in node.children_by_field_name("name") if n.type == "identifier"]


class GoAdapter(TreeSitterAdapter):
    language = "go"
    extensions = (".go",)
    grammar_module = "tree_sitter_go"

    import_types = frozenset({"import_declaration"})
    anonymous_scope_types = frozenset({"func_literal"})
    call_types = frozenset({"call_expression"})
    member_types = frozenset({"selector_expression", "qualified_type"})
    identifier_types = frozenset({"identifier"})
    type_identifier_types = frozenset({"type_identifier"})
    opaque_types = frozenset({
        "comment", "interpreted_string_literal", "raw_string_literal",
        "package_clause",
    })
    builtins = GO_PREDECLARED
    package_scope = True

    # ------------------------------------------------------------------
    # Definitions and bindings
    # ------------------------------------------------------------------

    def definitions(self, node: Any, local: bool) -> List[DefinitionSpec]:
        kind = node.type
        if kind == "function_declaration":
            name = node.child_by_field_name("name")
            if name is None:
                return []
            return [DefinitionSpec(
                kind="function", name_node=name, node=node, opens_scope=True,
                local=True, signature=self.signature(node), docstring=self.docstring(node),
            )]
        if kind == "method_declaration":
            name = node.child_by_field_name("name")
            if name is None:
                return []
            receiver_name, receiver_type = _receiver(node)
            return [DefinitionSpec(
                kind="method", name_node=name, node=node, opens_scope=True,
                local=True, owner=receiver_type,
                self_aliases=(receiver_name,) if receiver_name else (),
                signature=self.signature(node), docstring=self.docstring(node),
            )]
        if kind in ("type_spec", "type_alias"):
            name = node.child_by_field_name("name")
            if name is None:
                return []
            type_node = node.child_by_field_name("type")
            symbol_kind = "type"
            if kind == "type_spec" and type_node is not None:
                symbol_kind = {"struct_type": "struct", "interface_type": "interface"}.get(type_node.type, "type")
            outer = node.parent if node.parent is not None and node.parent.type == "type_declaration" else node
            return [DefinitionSpec(
                kind=symbol_kind, name_node=name, node=node, opens_scope=True,
                signature=" ".join(node_text(node).split("\n", 1)[0].split()).rstrip("{ "),
                docstring=self.docstring(outer),
            )]
        if kind in ("var_spec", "const_spec") and not local:
            symbol_kind = "constant" if kind == "const_spec" else "variable"
            outer = node.parent
            while outer is not None and outer.type in ("var_spec_list", "const_spec_list"):
                outer = outer.parent
            doc = self.docstring(outer if outer is not None else node)
            signature = " ".join(node_text(node).split("\n", 1)[0].split())[:120]
            names = _names(node)
            return [
                DefinitionSpec(kind=symbol_kind, name_node=name, node=node, opens_scope=len(names) == 1,
                               signature=signature, docstring=doc)
                for name in names
            ]
        return []

    def binding_targets(self, node: Any, local: bool) -> List[Any]:
        kind = node.type
        if kind in ("parameter_declaration", "variadic_parameter_declaration", "type_parameter_declaration"):
            return _names(node)
        if kind in ("var_spec", "const_spec"):
            return _names(node) if local else []
        if kind in ("short_var_declaration", "range_clause"):
            left = node.child_by_field_name("left")
            if left is None:
                return []
            return [n for n in left.named_children if n.type == "identifier"] or (
                [left] if left.type == "identifier" else []
            )
        if kind == "type_switch_statement":
            alias = node.child_by_field_name("alias")
            if alias is None:
                return []
            return [n for n in alias.named_children if n.type == "identifier"] or (
                [alias] if alias.type == "identifier" else []
            )
        return []

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def member_parts(self, node: Any):
        if node.type == "qualified_type":
            receiver = node.child_by_field_name("package")
            member = node.child_by_field_name("name")
        else:
            receiver = node.child_by_field_name("operand")
            member = node.child_by_field_name("field")
        if receiver is None or member is None:
            return None
        return receiver, member

    def is_reference(self, node: Any) -> bool:
        # Keys of keyed composite literal elements name struct fields
        parent = node.parent
        if parent is not None and parent.type == "literal_element":
            keyed = parent.parent
            if keyed is not None and keyed.type == "keyed_element":
                first = keyed.named_children[0] if keyed.named_children else None
                return first is None or first.start_byte != parent.start_byte
        return True

    def is_type_context(self, node: Any) -> bool:
        parent = node.parent
        return parent is not None and parent.type in ("type_arguments", "composite_literal")

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def parse_import(self, node: Any) -> List[Import]:
        imports: List[Import] = []
        stack = list(reversed(node.named_children))
        while stack:
            child = stack.pop()
            if child.type == "import_spec_list":
                stack.extend(reversed(child.named_children))
                continue
            if child.type != "import_spec":
                continue
            path = node_text(child.child_by_field_name("path")).strip("\"`")
            if not path:
                continue
            name = child.child_by_field_name("name")
            alias: Optional[str] = posixpath.basename(path)
            wildcard = False
            if name is not None:
                if name.type == "dot":
                    alias, wildcard = None, True
                elif name.type == "blank_identifier":
                    alias = None
                else:
                    alias = node_text(name)
            imports.append(Import(
                specifier=path,
                line=child.start_point[0] + 1,
                module_alias=alias,
                wildcard=wildcard,
            ))
        return imports

    # ------------------------------------------------------------------
    # Module resolution
    # ------------------------------------------------------------------

    def match_module(self, specifier: str, importer: str, modules: ModuleIndex) -> ModuleMatch:
        """A package import names a directory; match it by path suffix."""
        best: Optional[str] = None
        for directory in sorted(modules.dirs):
            if not directory:
                continue
            if specifier == directory or specifier.endswith("/" + directory):
                if best is None or len(directory) > len(best):
                    best = directory
        if best is None:
            return ModuleMatch()
        files = [p for p in modules.dirs[best] if p.endswith(".go") and not p.endswith("_test.go")]
        return ModuleMatch(files=files)

    def module_keys(self, path: str) -> List[str]:
        parent = posixpath.basename(posixpath.dirname(path))
        stem = posixpath.splitext(posixpath.basename(path))[0]
        return [key for key in (parent, stem) if key]
