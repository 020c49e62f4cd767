"""Read-only view of a parsed template node."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .defs import ActionList, ActionType, Definition, VtwType


@dataclass
class Template:
    """A template definition plus whether the path ends at a value."""

    definition: Definition
    is_value: bool = False

    @property
    def is_multi(self) -> bool:
        return bool(self.definition.multi)

    @property
    def is_tag(self) -> bool:
        return bool(self.definition.tag)

    @property
    def is_tag_node(self) -> bool:
        return self.is_tag and not self.is_value

    @property
    def is_tag_value(self) -> bool:
        return self.is_tag and self.is_value

    @property
    def is_leaf_value(self) -> bool:
        return not self.is_tag and self.is_value

    @property
    def is_single_leaf_node(self) -> bool:
        return (not self.is_value and not self.is_multi
                and not self.is_tag and not self.is_typeless())

    @property
    def is_single_leaf_value(self) -> bool:
        return self.is_value and not self.is_multi and not self.is_tag

    @property
    def is_multi_leaf_node(self) -> bool:
        return not self.is_value and self.is_multi

    @property
    def is_multi_leaf_value(self) -> bool:
        return self.is_value and self.is_multi

    def is_typeless(self, tnum: int = 1) -> bool:
        """Whether type number ``tnum`` (and every later one) is absent."""
        return self.get_type(tnum) == VtwType.ERROR_TYPE

    @property
    def num_types(self) -> int:
        if self.is_typeless(1):
            return 0
        return 1 if self.is_typeless(2) else 2

    def get_type(self, tnum: int = 1) -> VtwType:
        """The first type, or the second for any other ``tnum``."""
        return self.definition.def_type if tnum == 1 else self.definition.def_type2

    def get_actions(self, action: ActionType) -> Optional[ActionList]:
        """The action list for ``action``, or None when none is defined."""
        actions = self.definition.actions.get(action)
        return actions if actions else None

    @property
    def default(self) -> Optional[str]:
        return self.definition.default

    @property
    def node_help(self) -> Optional[str]:
        return self.definition.node_help

    @property
    def enumeration(self) -> Optional[str]:
        return self.definition.enumeration

    @property
    def allowed(self) -> Optional[str]:
        return self.definition.allowed

    @property
    def comp_help(self) -> Optional[str]:
        return self.definition.comp_help

    @property
    def val_help(self) -> Optional[str]:
        return self.definition.val_help

    @property
    def tag_limit(self) -> int:
        return self.definition.tag_limit

    @property
    def multi_limit(self) -> int:
        return self.definition.multi_limit

    @property
    def priority(self) -> int:
        return self.definition.priority

    def set_priority(self, priority: int) -> None:
        """Change the priority in the underlying definition."""
        self.definition.priority = priority