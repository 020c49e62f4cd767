"""Ordering a session's change tree into commit transactions.

Nodes with an explicit priority are pulled out of the configuration tree
and become transactions of their own, sorted by priority. What remains of
the tree is committed as a final transaction. Nodes whose extended priority
is ``PARENT`` are then placed next to the nearest ancestor transaction.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, TextIO

from .defs import LOWEST_PRIORITY, ActionType, NodeOperation, VtwType
from .nodes import ConfigNode

log = logging.getLogger(__name__)

_PARENT_ANCHOR = "PARENT"


def _flip_enclosing_ancestors(node: ConfigNode) -> None:
    """Mark untouched ancestors active up to the nearest begin/end node.

    This only happens for a changed node whose parent is unchanged, and
    only if some ancestor wraps its subtree in begin/end actions.
    """
    parent = node.parent
    if parent is None:
        return
    op = node.operation
    if not ((op.is_set_or_create or op.is_delete) and parent.operation.is_noop):
        return

    enclosing = False
    current = node
    while current.parent is not None:
        current = current.parent
        if current.definition.is_enclosing():
            enclosing = True
            break
    if not enclosing:
        return

    current = node
    while current.parent is not None:
        current = current.parent
        if current.operation == NodeOperation.NO_OP:
            current.operation = current.operation | NodeOperation.ACTIVE
        if current.definition.is_enclosing():
            break


def _insert_by_priority(root: ConfigNode, node: ConfigNode) -> None:
    priority = node.priority
    sibling = next(
        (candidate for candidate in root.children if priority <= candidate.priority),
        None,
    )
    log.debug("inserting %s into transactions with priority %d", node.name, priority)
    root.insert_before(sibling, node)


def _place_extended(root: ConfigNode, node: ConfigNode) -> None:
    extended = node.priority_extended
    if not extended or not extended.startswith(_PARENT_ANCHOR):
        return
    anchor = node.parent
    while anchor is not None:
        if anchor.priority != LOWEST_PRIORITY:
            node.unlink()
            if anchor.parent is not root:
                log.warning("anchor of %s is not a transaction; node dropped", node.path)
                return
            if node.operation.is_delete:
                root.insert_before(anchor, node)
            else:
                root.insert_after(anchor, node)
            return
        anchor = anchor.parent


def get_transactions(config: Optional[ConfigNode],
                     priority_mode: bool = True) -> Optional[ConfigNode]:
    """Arrange ``config`` into a root whose children are the transactions.

    In priority mode the tree given is taken apart: prioritised subtrees
    are moved under the returned root, followed by ``config`` itself when
    anything is left in it. Otherwise each top-level subtree is copied
    into a flat list of transactions and ``config`` keeps its shape.
    """
    if config is None:
        return None

    trans_root = replace(config)
    if priority_mode:
        for node in config.post_order():
            _flip_enclosing_ancestors(node)
            if node.parent is not None and node.priority < LOWEST_PRIORITY:
                node.unlink()
                _insert_by_priority(trans_root, node)
        if config.children:
            trans_root.append(config)
        for node in trans_root.post_order():
            _place_extended(trans_root, node)
    else:
        top_level = []
        for node in config.in_order():
            _flip_enclosing_ancestors(node)
            if node.depth() == 2:
                top_level.append(node)
        for node in top_level:
            log.debug("inserting %s into transactions", node.name)
            trans_root.append(node.copy())
    return trans_root


def _operation_mark(op: NodeOperation) -> str:
    if op.is_active:
        return "*"
    if op.is_delete:
        return "-"
    if op.is_create:
        return "+"
    if op.is_set:
        return ">"
    return " "


def format_node(node: ConfigNode) -> Optional[str]:
    """One line describing ``node`` in a transaction dump, None if unnamed."""
    if node.name is None:
        return None
    definition = node.definition
    parts = [_operation_mark(node.operation), "  " * node.depth()]
    if definition.def_type2 != VtwType.ERROR_TYPE:
        parts.append(f"{node.name} (t: {int(definition.def_type)}-"
                     f"{int(definition.def_type2)}, ")
    else:
        parts.append(f"{node.name} (t: {int(definition.def_type)}, ")
    if node.priority_extended:
        parts.append(f"p: {node.priority_extended})")
    else:
        parts.append(f"p: {node.priority})")

    if node.value:
        parts.append(" [VALUE]")
    if node.multi:
        parts.append(f" [MULTI({node.limit})]")
    syntax = definition.actions.get(ActionType.SYNTAX)
    if syntax and not syntax.commit_check:
        parts.append(" [SYNTAX]")
    for action in (ActionType.CREATE, ActionType.ACTIVATE,
                   ActionType.UPDATE, ActionType.DELETE):
        if definition.has_action(action):
            parts.append(f" [{action.name}]")
    if syntax and syntax.commit_check:
        parts.append(" [COMMIT]")
    for action in (ActionType.BEGIN, ActionType.END):
        if definition.has_action(action):
            parts.append(f" [{action.name}]")
    return "".join(parts)


def dump_transactions(root: ConfigNode, out: TextIO) -> None:
    """Write every node under ``root``, marking where each transaction starts."""
    for node in root.pre_order():
        if node.depth() == 2:
            out.write("NEW TRANS\n")
        line = format_node(node)
        if line is not None:
            out.write(line + "\n")