"""Symbol extraction: one syntax tree in, one language-neutral SymbolTable out.

The walker is generic. Everything language specific (which nodes define
symbols, which bind locals, what a call looks like) is asked of the
:class:`~codeanchor.parser.LanguageAdapter`, so adding a language never
touches this module.

Extraction is a pure function of the tree: nodes are visited in document
order and nothing outside the walk is consulted, so identical bytes always
produce an identical table.
"""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Set, Tuple

from .models import (
    CLASS_LIKE_KINDS,
    REF_CALL,
    REF_TYPE,
    REF_USE,
    Definition,
    Reference,
    SymbolTable,
    scope_key,
)
from .parser import LanguageAdapter, ParseOutcome, node_text, span_key

logger = logging.getLogger(__name__)

_PATH_QUALIFIER = re.compile(r"^[\w$.:]+$")

SELF_QUALIFIER = "self"
UNKNOWN_QUALIFIER = "?"


class _Scope:
    """One lexical scope during the walk; keyed scopes are definitions."""

    __slots__ = ("key", "qualname", "local", "owner", "aliases", "binds", "parent", "chain")

    def __init__(
        self,
        key: Optional[str],
        qualname: str,
        local: bool,
        owner: Optional[str],
        aliases: Tuple[str, ...],
        parent: Optional["_Scope"],
    ) -> None:
        self.key = key
        self.qualname = qualname
        self.local = local
        self.owner = owner
        self.aliases = aliases
        self.binds: Set[str] = set()
        self.parent = parent
        parent_chain = parent.chain if parent is not None else ()
        self.chain: Tuple[str, ...] = ((key,) + parent_chain) if key else parent_chain

    def is_bound(self, name: str) -> bool:
        scope: Optional[_Scope] = self
        while scope is not None:
            if name in scope.binds:
                return True
            scope = scope.parent
        return False

    def is_self_alias(self, name: str) -> bool:
        scope: Optional[_Scope] = self
        while scope is not None:
            if name in scope.aliases:
                return True
            scope = scope.parent
        return False


class SymbolExtractor:
    """Walk a syntax tree into definitions, references and imports."""

    def __init__(self, adapter: LanguageAdapter) -> None:
        self.adapter = adapter

    def extract(self, tree: Any) -> SymbolTable:
        adapter = self.adapter
        table = SymbolTable()
        pending: List[Tuple[Reference, _Scope]] = []
        skip: Set[Tuple[int, int, str]] = set()
        leaf_types = adapter.identifier_types | adapter.type_identifier_types

        file_scope = _Scope(None, "", False, None, (), None)
        stack: List[Tuple[Any, _Scope]] = [(tree.root_node, file_scope)]
        while stack:
            node, scope = stack.pop()
            kind = node.type
            if kind in adapter.opaque_types:
                continue
            if kind in adapter.import_types:
                found = adapter.parse_import(node)
                if found:
                    table.imports.extend(found)
                    continue

            inner = scope
            for spec in adapter.definitions(node, scope.local):
                name = spec.name if spec.name is not None else node_text(spec.name_node)
                if not name:
                    continue
                if spec.name_node is not None:
                    skip.add(span_key(spec.name_node))
                prefix = spec.owner or scope.qualname
                qualname = f"{prefix}.{name}" if prefix else name
                rng = spec.node
                definition = Definition(
                    kind=spec.kind,
                    name=name,
                    qualname=qualname,
                    scope=scope.chain,
                    start_line=rng.start_point[0] + 1,
                    start_col=rng.start_point[1],
                    end_line=rng.end_point[0] + 1,
                    end_col=rng.end_point[1],
                    start_byte=rng.start_byte,
                    end_byte=rng.end_byte,
                    signature=spec.signature,
                    docstring=spec.docstring,
                )
                table.definitions.append(definition)
                if spec.opens_scope:
                    owner = qualname if spec.kind in CLASS_LIKE_KINDS else (spec.owner or scope.owner)
                    inner = _Scope(
                        scope_key(spec.kind, qualname), qualname, spec.local, owner,
                        spec.self_aliases, scope,
                    )
            if kind in adapter.anonymous_scope_types and inner is scope:
                inner = _Scope(None, scope.qualname, True, scope.owner, (), scope)

            for target in adapter.binding_targets(node, scope.local):
                inner.binds.add(node_text(target))
                skip.add(span_key(target))

            if kind in adapter.call_types:
                function = adapter.call_function(node)
                if function is not None:
                    self._callee(function, scope, pending, skip)
            elif kind in adapter.member_types:
                if span_key(node) not in skip:
                    self._member(node, REF_USE, scope, pending, skip)
            elif kind in leaf_types:
                if span_key(node) not in skip and adapter.is_reference(node):
                    is_type = kind in adapter.type_identifier_types or adapter.is_type_context(node)
                    pending.append((self._reference(
                        node, node_text(node), REF_TYPE if is_type else REF_USE, scope,
                    ), scope))

            for child in reversed(node.children):
                stack.append((child, inner))

        table.references = self._filter(table, pending)
        return table

    # ------------------------------------------------------------------
    # Reference helpers
    # ------------------------------------------------------------------

    def _callee(self, function: Any, scope: _Scope, pending: list, skip: set) -> None:
        adapter = self.adapter
        if function.type in adapter.identifier_types | adapter.type_identifier_types:
            skip.add(span_key(function))
            if adapter.is_reference(function):
                pending.append((self._reference(function, node_text(function), REF_CALL, scope), scope))
        elif function.type in adapter.member_types:
            self._member(function, REF_CALL, scope, pending, skip)

    def _member(self, node: Any, ref_kind: str, scope: _Scope, pending: list, skip: set) -> None:
        parts = self.adapter.member_parts(node)
        if parts is None:
            return
        receiver, member = parts
        skip.add(span_key(node))
        skip.add(span_key(member))
        name = node_text(member)
        if not name:
            return
        qualifier = self._consume_path(receiver, skip)
        owner: Optional[str] = None
        if qualifier in self.adapter.self_names or scope.is_self_alias(qualifier):
            qualifier, owner = SELF_QUALIFIER, scope.owner
            if ref_kind == REF_USE:
                # Attribute reads through self name fields, not symbols
                return
        elif qualifier == UNKNOWN_QUALIFIER and ref_kind == REF_USE:
            return
        if ref_kind == REF_USE and (
            member.type in self.adapter.type_identifier_types or self.adapter.is_type_context(node)
        ):
            ref_kind = REF_TYPE
        pending.append((self._reference(member, name, ref_kind, scope, qualifier, owner), scope))

    def _consume_path(self, receiver: Any, skip: set) -> str:
        """Qualifier text of a dotted receiver; inner path nodes are consumed.

        The root identifier stays unconsumed so it is still recorded as a
        plain use (or dropped later as a local or module binding).
        """
        adapter = self.adapter
        text = "".join(node_text(receiver).split())
        if not _PATH_QUALIFIER.match(text):
            return UNKNOWN_QUALIFIER
        node = receiver
        while node is not None and node.type in adapter.member_types:
            parts = adapter.member_parts(node)
            if parts is None:
                break
            skip.add(span_key(node))
            skip.add(span_key(parts[1]))
            node = parts[0]
        return text

    @staticmethod
    def _reference(
        node: Any,
        name: str,
        kind: str,
        scope: _Scope,
        qualifier: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Reference:
        return Reference(
            name=name,
            kind=kind,
            scope=scope.chain,
            line=node.start_point[0] + 1,
            col=node.start_point[1],
            qualifier=qualifier,
            owner=owner,
        )

    def _filter(self, table: SymbolTable, pending: List[Tuple[Reference, _Scope]]) -> List[Reference]:
        """Drop locals, module bindings and unshadowed builtins."""
        module_bindings: Set[str] = set()
        import_bindings: Set[str] = set()
        for imp in table.imports:
            if imp.module_alias:
                module_bindings.add(imp.module_alias)
                module_bindings.add(re.split(r"[.:]", imp.module_alias, maxsplit=1)[0])
            for item in imp.names:
                import_bindings.add(item.binding)
        defined = table.defined_names()
        builtins = self.adapter.builtins

        kept: List[Reference] = []
        for ref, scope in pending:
            if ref.qualifier is None:
                if scope.is_bound(ref.name):
                    continue
                if ref.name in module_bindings and ref.name not in import_bindings:
                    continue
                if ref.name in builtins and ref.name not in defined and ref.name not in import_bindings:
                    continue
            kept.append(ref)
        return kept


def extract_file(adapter: LanguageAdapter, content: bytes) -> Tuple[ParseOutcome, SymbolTable]:
    """Parse *content* with *adapter* and extract its symbol table."""
    outcome = adapter.parse(content)
    table = SymbolExtractor(adapter).extract(outcome.tree)
    logger.debug(
        "Extracted %d definitions, %d references, %d imports (%s)",
        len(table.definitions), len(table.references), len(table.imports), outcome.status,
    )
    return outcome, table
