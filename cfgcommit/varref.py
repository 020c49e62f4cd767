"""Resolution of variable references such as ``$VAR(../address/@)``."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from .defs import VtwType
from .template import Template

Path = tuple[str, ...]


class ConfigStore(ABC):
    """The configuration store that references are resolved against.

    ``cfg_path`` is the store's current configuration path. Resolving a
    reference resets it to the root; callers save and restore it if needed.
    """

    def __init__(self) -> None:
        self.cfg_path: list[str] = []

    def reset_paths(self) -> None:
        """Move the current configuration path back to the root."""
        self.cfg_path = []

    @abstractmethod
    def parse_template(self, path: Sequence[str]) -> Optional[Template]:
        """The template for ``path``, or None if the path is not valid."""

    @abstractmethod
    def child_nodes(self, path: Sequence[str], active: bool) -> list[str]:
        """Names of the configured children of ``path``."""

    @abstractmethod
    def get_values(self, path: Sequence[str], active: bool) -> Optional[list[str]]:
        """Values of a multi-value leaf, or None if they cannot be read."""

    @abstractmethod
    def get_value(self, path: Sequence[str], active: bool) -> Optional[str]:
        """Value of a single-value leaf, or None if it cannot be read."""

    @abstractmethod
    def path_exists(self, path: Sequence[str], active: bool) -> bool:
        """Whether ``path`` exists in the configuration."""


def _split_reference(ref_str: str, absolute: bool) -> list[str]:
    body = ref_str[1:] if absolute else ref_str
    comps = body.split("/")
    # A single trailing slash is ignored.
    if comps and comps[-1] == "":
        comps.pop()
    return comps


class VarRef:
    """A parsed variable reference relative to the store's current path."""

    def __init__(self, store: ConfigStore, ref_str: str, active: bool,
                 at_string: str) -> None:
        self._store = store
        self._active = active
        self._at_string = at_string
        self._absolute = ref_str.startswith("/")
        self._orig_path: Path = () if self._absolute else tuple(store.cfg_path)
        store.reset_paths()
        self._paths: list[tuple[Path, VtwType]] = []
        self._process(_split_reference(ref_str, self._absolute),
                      self._orig_path, VtwType.ERROR_TYPE)

    @property
    def paths(self) -> list[tuple[Path, VtwType]]:
        """The resolved paths with their value types."""
        return list(self._paths)

    def _process(self, ref_comps: Sequence[str], cur_path: Path,
                 def_type: VtwType) -> None:
        if not ref_comps:
            self._paths.append((cur_path, def_type))
            return

        comp, rest = ref_comps[0], ref_comps[1:]
        pcomps = list(cur_path)
        orig = self._orig_path
        tmpl = self._store.parse_template(pcomps)

        if comp == "@":
            if tmpl is None:
                return
            if tmpl.is_typeless():
                # Kept for compatibility: the node name stands in for a value.
                self._process(rest, tuple(pcomps), VtwType.ERROR_TYPE)
                return
            if len(pcomps) == len(orig) and (not pcomps or tuple(pcomps) == orig):
                self._process(rest, (*pcomps, self._at_string), tmpl.get_type(1))
                return
            if not tmpl.is_single_leaf_node and not tmpl.is_multi_leaf_node:
                if len(pcomps) < len(orig):
                    self._process(rest, (*pcomps, orig[len(pcomps)]),
                                  tmpl.get_type(1))
                return
            self._resolve_leaf(tmpl, pcomps)
        elif comp == ".":
            self._process(rest, tuple(pcomps), VtwType.ERROR_TYPE)
        elif comp == "..":
            if tmpl is None or not pcomps:
                return
            pcomps.pop()
            if pcomps:
                parent = self._store.parse_template(pcomps)
                if parent is None:
                    return
                if parent.is_tag_value:
                    pcomps.pop()
            self._process(rest, tuple(pcomps), VtwType.ERROR_TYPE)
        elif comp == "@@":
            if tmpl is None or tmpl.is_typeless() or tmpl.is_value:
                return
            if tmpl.is_tag:
                for child in self._store.child_nodes(pcomps, self._active):
                    self._process(rest, (*pcomps, child), tmpl.get_type(1))
            else:
                self._resolve_leaf(tmpl, pcomps)
        else:
            if tmpl is not None and tmpl.is_tag_node:
                if len(pcomps) > len(orig):
                    return
                if len(pcomps) == len(orig):
                    pcomps.append(self._at_string)
                else:
                    pcomps.append(orig[len(pcomps)])
            pcomps.append(comp)
            self._process(rest, tuple(pcomps), VtwType.ERROR_TYPE)

    def _resolve_leaf(self, tmpl: Template, pcomps: list[str]) -> None:
        if tmpl.is_multi:
            values = self._store.get_values(pcomps, self._active)
            if values is None:
                return
            joined = " ".join(value for value in values if value)
            self._paths.append(((*pcomps, joined), VtwType.TEXT_TYPE))
            return
        value = self._store.get_value(pcomps, self._active)
        value_type = tmpl.get_type(1)
        if value is None:
            value, value_type = "", VtwType.ERROR_TYPE
        self._paths.append(((*pcomps, value), value_type))

    def get_value(self) -> Optional[tuple[str, VtwType]]:
        """The referenced value and its type, or None if nothing resolved.

        Several values are joined with spaces and reported as text.
        """
        result: list[str] = []
        added: set[str] = set()
        def_type = VtwType.ERROR_TYPE
        for path, path_type in self._paths:
            if not path:
                continue
            last = path[-1]
            if last in added:
                continue
            if (path_type == VtwType.ERROR_TYPE
                    and not self._store.path_exists(path, self._active)):
                added.add("")
                result.append("")
                continue
            if path_type != VtwType.ERROR_TYPE:
                def_type = path_type
            added.add(last)
            result.append(last)
        if not result:
            return None
        if len(result) > 1 or def_type == VtwType.ERROR_TYPE:
            def_type = VtwType.TEXT_TYPE
        return " ".join(result), def_type

    def get_set_path(self) -> Optional[list[str]]:
        """The path of the single leaf node the reference sets, if any."""
        if len(self._paths) != 1:
            return None
        return list(self._paths[0][0][:-1])