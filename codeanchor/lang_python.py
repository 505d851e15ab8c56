"""Python adapter (``.py`` / ``.pyi``)."""

from __future__ import annotations

import builtins as _builtins
import posixpath
from typing import Any, List, Optional

from .models import Import, ImportedName
from .parser import DefinitionSpec, TreeSitterAdapter, node_text

_TARGET_CONTAINERS = frozenset({
    "pattern_list", "tuple_pattern", "list_pattern", "list_splat_pattern",
    "parenthesized_expression", "tuple", "list", "expression_list",
})

_STATEMENT_BOUNDARIES = frozenset({
    "module", "block", "expression_statement", "function_definition",
    "class_definition", "decorated_definition",
})


def _targets(node: Optional[Any]) -> List[Any]:
    """Plain names bound by an assignment target (attributes/subscripts excluded)."""
    if node is None:
        return []
    if node.type == "identifier":
        return [node]
    if node.type in _TARGET_CONTAINERS:
        found: List[Any] = []
        for child in node.named_children:
            found.extend(_targets(child))
        return found
    return []


def _in_class_body(node: Any) -> bool:
    parent = node.parent
    if parent is not None and parent.type == "decorated_definition":
        parent = parent.parent
    return (
        parent is not None
        and parent.type == "block"
        and parent.parent is not None
        and parent.parent.type == "class_definition"
    )


def _outer(node: Any) -> Any:
    parent = node.parent
    if parent is not None and parent.type == "decorated_definition":
        return parent
    return node


def _string_literal(raw: str) -> str:
    text = raw.lstrip("rRbBuUfF")
    for q in ('"""', "'''"):
        if text.startswith(q) and text.endswith(q) and len(text) >= 6:
            return text[3:-3].strip()
    for q in ('"', "'"):
        if text.startswith(q) and text.endswith(q) and len(text) >= 2:
            return text[1:-1].strip()
    return text.strip()


class PythonAdapter(TreeSitterAdapter):
    language = "python"
    extensions = (".py", ".pyi")
    grammar_module = "tree_sitter_python"

    import_types = frozenset({"import_statement", "import_from_statement"})
    anonymous_scope_types = frozenset({
        "lambda", "list_comprehension", "set_comprehension",
        "dictionary_comprehension", "generator_expression",
    })
    call_types = frozenset({"call"})
    member_types = frozenset({"attribute"})
    type_identifier_types = frozenset()
    opaque_types = frozenset({
        "comment", "future_import_statement", "global_statement",
        "nonlocal_statement",
    })
    builtins = frozenset(dir(_builtins))

    # ------------------------------------------------------------------
    # Definitions and bindings
    # ------------------------------------------------------------------

    def definitions(self, node: Any, local: bool) -> List[DefinitionSpec]:
        if node.type == "function_definition":
            name = node.child_by_field_name("name")
            if name is None:
                return []
            return [DefinitionSpec(
                kind="method" if _in_class_body(node) else "function",
                name_node=name,
                node=_outer(node),
                opens_scope=True,
                local=True,
                signature=self.signature(node),
                docstring=self.docstring(node),
            )]
        if node.type == "class_definition":
            name = node.child_by_field_name("name")
            if name is None:
                return []
            return [DefinitionSpec(
                kind="class",
                name_node=name,
                node=_outer(node),
                opens_scope=True,
                signature=self.signature(node),
                docstring=self.docstring(node),
            )]
        if node.type == "assignment" and not local:
            # Module and class attributes; function locals are bindings
            signature = " ".join(node_text(node).split())[:120]
            targets = _targets(node.child_by_field_name("left"))
            return [
                DefinitionSpec(kind="variable", name_node=target, node=node,
                               opens_scope=len(targets) == 1, signature=signature)
                for target in targets
            ]
        return []

    def binding_targets(self, node: Any, local: bool) -> List[Any]:
        kind = node.type
        if kind in ("assignment", "augmented_assignment"):
            return _targets(node.child_by_field_name("left")) if local else []
        if kind in ("for_statement", "for_in_clause"):
            return _targets(node.child_by_field_name("left"))
        if kind == "named_expression":
            name = node.child_by_field_name("name")
            return [name] if name is not None else []
        if kind == "as_pattern":
            alias = node.child_by_field_name("alias")
            if alias is None:
                return []
            return [n for child in [alias] + list(alias.named_children) for n in _targets(child)]
        if kind == "except_clause":
            bound: List[Any] = []
            children = node.children
            for i, child in enumerate(children[:-1]):
                if child.type == "as" and children[i + 1].type == "identifier":
                    bound.append(children[i + 1])
            return bound
        if kind in ("parameters", "lambda_parameters"):
            return self._parameter_names(node)
        return []

    @staticmethod
    def _parameter_names(node: Any) -> List[Any]:
        names: List[Any] = []
        for param in node.named_children:
            if param.type == "identifier":
                names.append(param)
            elif param.type in ("default_parameter", "typed_default_parameter"):
                name = param.child_by_field_name("name")
                if name is not None and name.type == "identifier":
                    names.append(name)
            elif param.type in ("typed_parameter", "list_splat_pattern", "dictionary_splat_pattern"):
                for child in param.named_children:
                    if child.type == "identifier":
                        names.append(child)
                        break
                    if child.type in ("list_splat_pattern", "dictionary_splat_pattern"):
                        names.extend(c for c in child.named_children if c.type == "identifier")
                        break
        return names

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def member_parts(self, node: Any):
        obj = node.child_by_field_name("object")
        attr = node.child_by_field_name("attribute")
        if obj is None or attr is None:
            return None
        return obj, attr

    def is_reference(self, node: Any) -> bool:
        parent = node.parent
        if parent is not None and parent.type == "keyword_argument":
            name = parent.child_by_field_name("name")
            return name is None or name.start_byte != node.start_byte
        return True

    def is_type_context(self, node: Any) -> bool:
        current = node.parent
        while current is not None and current.type not in _STATEMENT_BOUNDARIES:
            if current.type == "type":
                return True
            if current.type == "argument_list":
                owner = current.parent
                return owner is not None and owner.type == "class_definition"
            current = current.parent
        return False

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def parse_import(self, node: Any) -> List[Import]:
        line = node.start_point[0] + 1
        if node.type == "import_statement":
            imports: List[Import] = []
            for item in node.children_by_field_name("name"):
                if item.type == "aliased_import":
                    dotted = node_text(item.child_by_field_name("name"))
                    alias = node_text(item.child_by_field_name("alias"))
                    imports.append(Import(specifier=dotted, line=line, module_alias=alias or dotted))
                else:
                    dotted = node_text(item)
                    imports.append(Import(specifier=dotted, line=line, module_alias=dotted))
            return imports

        module = node.child_by_field_name("module_name")
        if module is None:
            return []
        names: List[ImportedName] = []
        for item in node.children_by_field_name("name"):
            if item.type == "aliased_import":
                names.append(ImportedName(
                    name=node_text(item.child_by_field_name("name")),
                    alias=node_text(item.child_by_field_name("alias")) or None,
                ))
            else:
                names.append(ImportedName(name=node_text(item)))
        wildcard = any(child.type == "wildcard_import" for child in node.children)
        return [Import(
            specifier=node_text(module),
            line=line,
            names=tuple(names),
            wildcard=wildcard,
        )]

    # ------------------------------------------------------------------
    # Docstrings
    # ------------------------------------------------------------------

    def docstring(self, node: Any) -> str:
        body = node.child_by_field_name("body")
        if body is None:
            return ""
        for child in body.children:
            if child.type == "expression_statement":
                for expr in child.children:
                    if expr.type == "string":
                        return _string_literal(node_text(expr))
                break
            elif child.type != "comment":
                break
        return ""

    # ------------------------------------------------------------------
    # Module resolution
    # ------------------------------------------------------------------

    def is_relative(self, specifier: str) -> bool:
        return specifier.startswith(".")

    def module_candidates(self, specifier: str, importer: str) -> List[str]:
        if self.is_relative(specifier):
            dots = len(specifier) - len(specifier.lstrip("."))
            rest = specifier[dots:]
            base = posixpath.dirname(importer)
            for _ in range(dots - 1):
                base = posixpath.dirname(base)
            parts = [base] if base else []
        else:
            rest = specifier
            parts = []
        if rest:
            parts.extend(rest.split("."))
        stem = "/".join(parts)
        if not rest:
            prefix = f"{stem}/" if stem else ""
            return [f"{prefix}__init__.py", f"{prefix}__init__.pyi"]
        return [f"{stem}.py", f"{stem}/__init__.py", f"{stem}.pyi", f"{stem}/__init__.pyi"]

    def submodule_specifier(self, specifier: str, name: str) -> Optional[str]:
        if specifier.endswith("."):
            return specifier + name
        return f"{specifier}.{name}"
