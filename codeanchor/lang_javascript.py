"""JavaScript, TypeScript and TSX adapters."""

from __future__ import annotations

import posixpath
from typing import Any, List, Optional

from .models import Import, ImportedName
from .parser import DefinitionSpec, TreeSitterAdapter, node_text, pattern_identifiers

SOURCE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts", ".d.ts")

_FUNCTION_VALUES = frozenset({
    "arrow_function", "function_expression", "function", "generator_function",
})

_BINDING_IDENTIFIERS = frozenset({"identifier", "shorthand_property_identifier_pattern"})

_JSX_NAME_PARENTS = frozenset({
    "jsx_opening_element", "jsx_self_closing_element", "jsx_closing_element",
})

JS_GLOBALS = frozenset({
    "undefined", "NaN", "Infinity", "globalThis", "window", "document",
    "console", "process", "require", "module", "exports", "__dirname",
    "__filename", "arguments", "Object", "Array", "String", "Number",
    "Boolean", "Symbol", "BigInt", "Function", "Promise", "Map", "Set",
    "WeakMap", "WeakSet", "Date", "RegExp", "Error", "TypeError",
    "RangeError", "SyntaxError", "JSON", "Math", "Reflect", "Proxy", "Intl",
    "parseInt", "parseFloat", "isNaN", "isFinite", "setTimeout",
    "setInterval", "clearTimeout", "clearInterval", "queueMicrotask",
    "structuredClone", "fetch", "URL", "URLSearchParams", "TextEncoder",
    "TextDecoder", "Buffer", "encodeURIComponent", "decodeURIComponent",
    "encodeURI", "decodeURI", "localStorage", "sessionStorage", "navigator",
    "location", "history", "alert", "Event", "EventTarget", "HTMLElement",
    "Element", "Node", "AbortController", "ArrayBuffer", "Uint8Array",
    "DataView", "Iterator", "AsyncIterator",
})

TS_GLOBAL_TYPES = frozenset({
    "Record", "Partial", "Required", "Readonly", "Pick", "Omit", "Exclude",
    "Extract", "NonNullable", "Parameters", "ReturnType", "InstanceType",
    "Awaited", "ReadonlyArray", "PromiseLike", "ArrayLike", "Iterable",
    "AsyncIterable", "IterableIterator", "Uppercase", "Lowercase",
    "Capitalize", "Uncapitalize", "ThisType", "PropertyKey",
})


def _unquote(text: str) -> str:
    if len(text) >= 2 and text[0] in "'\"`" and text[-1] == text[0]:
        return text[1:-1]
    return text


class JavaScriptAdapter(TreeSitterAdapter):
    language = "javascript"
    family = "javascript"
    extensions = (".js", ".jsx", ".mjs", ".cjs")
    grammar_module = "tree_sitter_javascript"

    import_types = frozenset({"import_statement", "export_statement"})
    anonymous_scope_types = frozenset({
        "arrow_function", "function_expression", "function", "generator_function",
        "class",
    })
    call_types = frozenset({"call_expression", "new_expression"})
    member_types = frozenset({"member_expression", "nested_type_identifier"})
    identifier_types = frozenset({"identifier", "shorthand_property_identifier"})
    type_identifier_types = frozenset({"type_identifier"})
    opaque_types = frozenset({"comment", "regex", "string", "template_string_fragment"})
    comment_types = frozenset({"comment"})
    builtins = JS_GLOBALS | TS_GLOBAL_TYPES
    suffix_fallback = False

    # ------------------------------------------------------------------
    # Definitions and bindings
    # ------------------------------------------------------------------

    _SCOPED_DEFINITIONS = {
        "function_declaration": ("function", True),
        "generator_function_declaration": ("function", True),
        "method_definition": ("method", True),
        "class_declaration": ("class", False),
        "abstract_class_declaration": ("class", False),
        "internal_module": ("module", False),
    }

    _PLAIN_DEFINITIONS = {
        "interface_declaration": "interface",
        "type_alias_declaration": "type",
        "enum_declaration": "enum",
    }

    def definitions(self, node: Any, local: bool) -> List[DefinitionSpec]:
        kind = node.type
        if kind in self._SCOPED_DEFINITIONS:
            symbol_kind, is_local = self._SCOPED_DEFINITIONS[kind]
            name = node.child_by_field_name("name")
            if name is None:
                return []
            return [DefinitionSpec(
                kind=symbol_kind,
                name_node=name,
                node=self._outer(node),
                opens_scope=True,
                local=is_local,
                signature=self.signature(node),
                docstring=self.docstring(self._outer(node)),
            )]
        if kind in self._PLAIN_DEFINITIONS:
            name = node.child_by_field_name("name")
            if name is None:
                return []
            return [DefinitionSpec(
                kind=self._PLAIN_DEFINITIONS[kind],
                name_node=name,
                node=self._outer(node),
                opens_scope=True,
                signature=self.signature(node),
                docstring=self.docstring(self._outer(node)),
            )]
        if kind in ("public_field_definition", "field_definition") and not local:
            name = node.child_by_field_name("name") or node.child_by_field_name("property")
            if name is None:
                return []
            return [DefinitionSpec(kind="variable", name_node=name, node=node,
                                   opens_scope=True, signature=self.signature(node))]
        if kind == "variable_declarator" and not local:
            return self._declarator(node)
        return []

    def _declarator(self, node: Any) -> List[DefinitionSpec]:
        name = node.child_by_field_name("name")
        if name is None:
            return []
        declaration = node.parent if node.parent is not None else node
        outer = self._outer(declaration)
        value = node.child_by_field_name("value")
        if name.type == "identifier" and value is not None and value.type in _FUNCTION_VALUES:
            return [DefinitionSpec(
                kind="function",
                name_node=name,
                node=node,
                opens_scope=True,
                local=True,
                signature=self.signature(value),
                docstring=self.docstring(outer),
            )]
        signature = " ".join(node_text(node).split("\n", 1)[0].split())[:120]
        targets = pattern_identifiers(name, _BINDING_IDENTIFIERS, ("right", "type"))
        return [
            DefinitionSpec(kind="variable", name_node=target, node=node, opens_scope=len(targets) == 1,
                           signature=signature, docstring=self.docstring(outer))
            for target in targets
        ]

    @staticmethod
    def _outer(node: Any) -> Any:
        parent = node.parent
        if parent is not None and parent.type == "export_statement":
            return parent
        return node

    def binding_targets(self, node: Any, local: bool) -> List[Any]:
        kind = node.type
        if kind == "variable_declarator":
            if not local:
                return []
            name = node.child_by_field_name("name")
            return pattern_identifiers(name, _BINDING_IDENTIFIERS, ("right", "type")) if name else []
        if kind == "formal_parameters":
            return pattern_identifiers(node, _BINDING_IDENTIFIERS, ("right", "type", "value"))
        if kind == "arrow_function":
            param = node.child_by_field_name("parameter")
            return [param] if param is not None and param.type == "identifier" else []
        if kind == "catch_clause":
            param = node.child_by_field_name("parameter")
            return pattern_identifiers(param, _BINDING_IDENTIFIERS, ("right", "type")) if param else []
        if kind == "for_in_statement":
            left = node.child_by_field_name("left")
            return pattern_identifiers(left, _BINDING_IDENTIFIERS, ("right", "type")) if left else []
        if kind == "type_parameter":
            name = node.child_by_field_name("name")
            return [name] if name is not None else []
        return []

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def call_function(self, node: Any) -> Optional[Any]:
        if node.type == "new_expression":
            return node.child_by_field_name("constructor")
        return node.child_by_field_name("function")

    def member_parts(self, node: Any):
        if node.type == "nested_type_identifier":
            receiver = node.child_by_field_name("module")
        else:
            receiver = node.child_by_field_name("object")
        member = node.child_by_field_name("name") or node.child_by_field_name("property")
        if receiver is None or member is None:
            return None
        return receiver, member

    def is_reference(self, node: Any) -> bool:
        parent = node.parent
        if parent is not None and parent.type in _JSX_NAME_PARENTS:
            # Intrinsic elements (<div>) and closing tags are not references
            return parent.type != "jsx_closing_element" and not node_text(node)[:1].islower()
        return True

    def is_type_context(self, node: Any) -> bool:
        current = node.parent
        while current is not None:
            if current.type in ("class_heritage", "extends_clause", "implements_clause", "type_annotation"):
                return True
            if current.type in ("program", "statement_block", "class_body") or current.type.endswith(
                ("_statement", "_declaration")
            ):
                return False
            current = current.parent
        return False

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def parse_import(self, node: Any) -> List[Import]:
        source = node.child_by_field_name("source")
        if source is None:
            # ``export const x = ...`` declares; it is walked as a definition
            return []
        specifier = _unquote(node_text(source))
        line = node.start_point[0] + 1
        names: List[ImportedName] = []
        module_alias: Optional[str] = None
        wildcard = False

        for child in node.named_children:
            if child.type == "import_clause":
                for part in child.named_children:
                    if part.type == "identifier":
                        # Default import: bound under the exported name by convention
                        names.append(ImportedName(name=node_text(part)))
                    elif part.type == "namespace_import":
                        for ident in part.named_children:
                            if ident.type == "identifier":
                                module_alias = node_text(ident)
                    elif part.type == "named_imports":
                        names.extend(self._specifiers(part, "import_specifier"))
            elif child.type == "export_clause":
                names.extend(self._specifiers(child, "export_specifier"))
            elif child.type == "namespace_export":
                for ident in child.named_children:
                    module_alias = node_text(ident)
        if node.type == "export_statement" and not names and module_alias is None:
            wildcard = any(child.type == "*" for child in node.children)
        return [Import(
            specifier=specifier,
            line=line,
            names=tuple(names),
            module_alias=module_alias,
            wildcard=wildcard,
        )]

    @staticmethod
    def _specifiers(node: Any, kind: str) -> List[ImportedName]:
        found: List[ImportedName] = []
        for spec in node.named_children:
            if spec.type != kind:
                continue
            name = node_text(spec.child_by_field_name("name"))
            alias = node_text(spec.child_by_field_name("alias")) or None
            if name:
                found.append(ImportedName(name=_unquote(name), alias=alias))
        return found

    # ------------------------------------------------------------------
    # Module resolution
    # ------------------------------------------------------------------

    def is_relative(self, specifier: str) -> bool:
        return specifier.startswith(("./", "../")) or specifier in (".", "..")

    def module_candidates(self, specifier: str, importer: str) -> List[str]:
        if not self.is_relative(specifier):
            return []
        base = posixpath.normpath(posixpath.join(posixpath.dirname(importer), specifier))
        if base == ".":
            base = ""
        elif base == ".." or base.startswith("../"):
            return []
        candidates: List[str] = []
        stem, ext = posixpath.splitext(base)
        if ext in SOURCE_EXTENSIONS:
            candidates.append(base)
            # ESM TypeScript imports name the emitted .js file
            if ext in (".js", ".jsx", ".mjs", ".cjs"):
                candidates.extend(stem + alt for alt in (".ts", ".tsx", ".mts", ".cts"))
        if base:
            candidates.extend(base + alt for alt in SOURCE_EXTENSIONS)
        prefix = f"{base}/" if base else ""
        candidates.extend(f"{prefix}index{alt}" for alt in SOURCE_EXTENSIONS)
        return candidates


class TypeScriptAdapter(JavaScriptAdapter):
    language = "typescript"
    extensions = (".ts", ".mts", ".cts")
    grammar_module = "tree_sitter_typescript"
    grammar_function = "language_typescript"


class TsxAdapter(JavaScriptAdapter):
    language = "tsx"
    extensions = (".tsx",)
    grammar_module = "tree_sitter_typescript"
    grammar_function = "language_tsx"
