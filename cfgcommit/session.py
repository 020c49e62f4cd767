"""Building the change tree of a configuration session from its directories.

A session keeps its changes in a copy-on-write layer on top of the active
configuration. Walking the changes layer, and the active configuration
where whiteouts hide or remove entries, gives a tree of configuration nodes
marked with what happened to each one.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from typing import Callable, Optional

from .defs import (
    DEF_FILE,
    DEF_NAME,
    DELETED_NODE,
    LOWEST_PRIORITY,
    MOD_NAME,
    TAG_NAME,
    UNSAVED_FILE,
    VAL_NAME,
    WHITEOUT_FILE,
    Definition,
    NodeOperation,
)
from .nodes import ConfigNode
from .paths import escape_slashes

log = logging.getLogger(__name__)

TemplateParser = Callable[[str], Optional[Definition]]

_SKIPPED_ENTRIES = frozenset(
    {".", "..", MOD_NAME, UNSAVED_FILE, DEF_FILE, WHITEOUT_FILE, VAL_NAME}
)


@dataclass(frozen=True)
class SessionDirs:
    """Directories that make up a configuration session.

    ``changes`` is the writable layer holding only the session's changes,
    ``active`` the running configuration, ``merged`` the union of both,
    ``templates`` the template tree and ``tmp`` the scratch area used
    while copying a committed subtree into the active configuration.
    """

    changes: str
    active: str
    merged: str
    templates: str
    tmp: str


def value_exists(path: str) -> bool:
    """Whether the node directory ``path`` holds a value file."""
    return os.path.exists(os.path.join(path, VAL_NAME))


def read_values(path: str) -> Optional[list[str]]:
    """The lines of the value file in ``path``, or None if it cannot be read."""
    try:
        with open(os.path.join(path, VAL_NAME), encoding="utf-8") as handle:
            text = handle.read()
    except OSError:
        return None
    if text.endswith("\n"):
        text = text[:-1]
    return text.split("\n") if text else []


def config_path_of(node: ConfigNode) -> str:
    """The template path of ``node``, relative to the template root.

    Children of multi or tag nodes map to the shared ``node.tag`` template.
    The root maps to ``"/"``; other nodes give a path ending in ``/``.
    """
    comps: list[str] = []
    current = node
    while current.parent is not None:
        if current.name is not None:
            parent = current.parent
            if parent.parent is not None and parent.multi:
                comps.append(TAG_NAME)
            else:
                comps.append(current.name)
        current = current.parent
    if not comps:
        return "/"
    return "/".join(reversed(comps)) + "/"


def insert_sibling_in_order(parent: ConfigNode, child: ConfigNode) -> ConfigNode:
    """Insert ``child`` after the first child whose name sorts before it.

    When no such child exists, ``child`` becomes the first child.
    """
    anchor = next(
        (sibling for sibling in parent.children if (child.name or "") > (sibling.name or "")),
        None,
    )
    return parent.insert_after(anchor, child)


def _is_regular_file(path: str) -> bool:
    try:
        return stat.S_ISREG(os.lstat(path).st_mode)
    except OSError:
        return False


def _copy_value_node(source: ConfigNode) -> ConfigNode:
    return ConfigNode(
        name=source.name,
        value=source.value,
        path=source.path,
        operation=source.operation,
        multi=source.multi,
        priority=source.priority,
        priority_extended=source.priority_extended,
        default=source.default,
        config_path=source.config_path,
        definition=source.definition,
    )


class _SessionLoader:
    def __init__(self, dirs: SessionDirs, parse_template: Optional[TemplateParser]) -> None:
        self.dirs = dirs
        self.parse_template = parse_template

    def retrieve(self, rel: str, node: ConfigNode, root: str, op: NodeOperation) -> None:
        full = root + rel
        log.debug("retrieving %s", full)

        final = False
        values = read_values(full) if value_exists(full) else None
        if values is not None:
            leaf = ConfigNode(name="\n".join(values), value=False, operation=op,
                              priority=LOWEST_PRIORITY, path=rel)
            insert_sibling_in_order(node, leaf)
            final = True

        self._attach_template(rel, node, final)

        if node.parent is not None:
            definition = node.definition
            tagged_multi = bool(definition.tag and node.multi)
            if tagged_multi or definition.priority == 0:
                node.priority = LOWEST_PRIORITY
            else:
                node.priority = definition.priority
            node.priority_extended = None if tagged_multi else definition.priority_ext

        if final:
            self._term_values(node)
            if not os.path.lexists(f"{self.dirs.active}/{rel}"):
                node.operation = NodeOperation.CREATE
            return

        try:
            entries = sorted(os.listdir(full))
        except OSError:
            log.debug("cannot open directory %s", full)
            return

        processed = False
        whiteout_found = False
        for entry in entries:
            if entry == WHITEOUT_FILE:
                whiteout_found = True
            if entry in _SKIPPED_ENTRIES:
                continue
            processed = True
            if entry.startswith(DELETED_NODE):
                name = entry[len(DELETED_NODE):]
                child = ConfigNode(name=name, operation=NodeOperation.DELETE,
                                   priority=LOWEST_PRIORITY)
                insert_sibling_in_order(node, child)
                self.retrieve(f"{rel}/{name}", child, self.dirs.active, NodeOperation.DELETE)
                continue

            child = ConfigNode(name=entry, priority=LOWEST_PRIORITY)
            if os.path.lexists(self.dirs.active + rel):
                child.operation = NodeOperation.NO_OP
            else:
                child.operation = NodeOperation.CREATE
                node.operation = NodeOperation.CREATE
            if op == NodeOperation.DELETE:
                child.operation = NodeOperation.DELETE
            insert_sibling_in_order(node, child)
            next_root = self.dirs.active if op == NodeOperation.DELETE else root
            self.retrieve(f"{rel}/{entry}", child, next_root, child.operation)

        if not processed and not os.path.lexists(f"{self.dirs.active}/{rel}"):
            node.operation = NodeOperation.CREATE

        if whiteout_found and op != NodeOperation.DELETE:
            self._hidden_deletions(rel, node)

    def _attach_template(self, rel: str, node: ConfigNode, final: bool) -> None:
        config_path = config_path_of(node)
        def_file = os.path.join(self.dirs.templates, config_path.strip("/"), DEF_NAME)
        log.debug("template path %s", def_file)

        definition = Definition()
        if self.parse_template is not None and _is_regular_file(def_file):
            parsed = self.parse_template(def_file)
            if parsed is not None:
                definition = parsed
                node.multi = bool(parsed.tag or parsed.multi)
                node.limit = parsed.tag_limit or parsed.multi_limit or 0
        node.definition = definition
        node.config_path = config_path
        node.path = f"{rel}/"

        parent = node.parent
        if parent is None or not parent.multi:
            return
        node.value = True
        if final:
            return
        if len(parent.children) == 1:
            node.definition = parent.definition
            parent.definition = Definition()
        else:
            donor = next(child for child in parent.children[:2] if child is not node)
            node.definition = donor.definition

    def _hidden_deletions(self, rel: str, node: ConfigNode) -> None:
        try:
            entries = sorted(os.listdir(self.dirs.active + rel))
        except OSError:
            return
        for entry in entries:
            if os.path.lexists(f"{self.dirs.changes}/{rel}/{entry}"):
                continue
            child = ConfigNode(name=entry, operation=NodeOperation.DELETE,
                               priority=LOWEST_PRIORITY)
            insert_sibling_in_order(node, child)
            self.retrieve(f"{rel}/{entry}", child, self.dirs.active, NodeOperation.DELETE)

    def _term_values(self, node: ConfigNode) -> None:
        active = read_values(f"{self.dirs.active}/{node.path}") or []
        new = read_values(f"{self.dirs.merged}/{node.path}") or []

        states: dict[str, NodeOperation] = {}
        if node.multi:
            for value in active:
                states[value] = NodeOperation.DELETE
            for value in new:
                states[value] = NodeOperation.NO_OP if value in states else NodeOperation.CREATE
        elif not active and not new:
            owner = node.parent if node.parent is not None else node
            states[""] = owner.operation
        elif not active:
            states[new[0]] = NodeOperation.CREATE
        elif not new:
            states[active[0]] = NodeOperation.DELETE
        elif active[0] != new[0]:
            states[new[0]] = NodeOperation.SET
        else:
            states[new[0]] = NodeOperation.NO_OP

        for key, state in states.items():
            self._apply_value(node, key, state)
        node.definition = Definition()

    @staticmethod
    def _apply_value(node: ConfigNode, key: str, state: NodeOperation) -> None:
        first = node.children[0]
        if first.value:
            target = _copy_value_node(first)
            node.insert_after(None, target)
        else:
            target = first
            suffix = "" if node.definition.multi else escape_slashes(key)
            target.path = f"{first.path}/value:{suffix}"
        target.value = True
        target.name = key
        target.config_path = (node.config_path or "").rstrip("/") + "/" + TAG_NAME
        target.operation = state
        target.definition = node.definition


def load_session(dirs: SessionDirs,
                 parse_template: Optional[TemplateParser] = None) -> ConfigNode:
    """Build the tree of changes made in the session described by ``dirs``.

    ``parse_template`` turns a template definition file into a
    :class:`Definition`, returning None when the file cannot be parsed.
    Without it every node gets an empty definition.
    """
    root = ConfigNode(name=None, operation=NodeOperation.NO_OP, priority=LOWEST_PRIORITY)
    _SessionLoader(dirs, parse_template).retrieve("", root, dirs.changes, NodeOperation.SET)
    return root