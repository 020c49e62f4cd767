"""An n-ary tree of configuration nodes."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterator, Optional

from .defs import LOWEST_PRIORITY, Definition, NodeOperation


@dataclass(eq=False)
class ConfigNode:
    """A configuration node holding data, template information and children.

    Traversals fetch the next sibling before descending, so the node just
    visited may be unlinked or moved while a traversal is in progress.
    """

    name: Optional[str] = None
    value: bool = False
    path: Optional[str] = None
    operation: NodeOperation = NodeOperation.NO_OP
    multi: bool = False
    priority: int = LOWEST_PRIORITY
    priority_extended: Optional[str] = None
    limit: int = 0
    definition: Definition = field(default_factory=Definition)
    help_text: Optional[str] = None
    default: Optional[str] = None
    config_path: Optional[str] = None
    first: bool = False
    last: bool = False
    parent: Optional[ConfigNode] = field(default=None, init=False, repr=False)
    children: list[ConfigNode] = field(default_factory=list, init=False, repr=False)

    def _index_of(self, child: ConfigNode) -> int:
        for index, candidate in enumerate(self.children):
            if candidate is child:
                return index
        raise ValueError("node is not a child of this node")

    def _attach(self, index: int, child: ConfigNode) -> ConfigNode:
        if child.parent is not None:
            raise ValueError("node already has a parent")
        child.parent = self
        self.children.insert(index, child)
        return child

    def _next_sibling(self) -> Optional[ConfigNode]:
        if self.parent is None:
            return None
        siblings = self.parent.children
        index = self.parent._index_of(self) + 1
        return siblings[index] if index < len(siblings) else None

    def append(self, child: ConfigNode) -> ConfigNode:
        """Add ``child`` as the last child."""
        return self._attach(len(self.children), child)

    def insert(self, position: int, child: ConfigNode) -> ConfigNode:
        """Insert ``child`` at ``position``; negative or too large appends."""
        if position < 0 or position > len(self.children):
            position = len(self.children)
        return self._attach(position, child)

    def insert_before(self, sibling: Optional[ConfigNode], child: ConfigNode) -> ConfigNode:
        """Insert ``child`` before ``sibling``, or last when it is None."""
        if sibling is None:
            return self.append(child)
        return self._attach(self._index_of(sibling), child)

    def insert_after(self, sibling: Optional[ConfigNode], child: ConfigNode) -> ConfigNode:
        """Insert ``child`` after ``sibling``, or first when it is None."""
        if sibling is None:
            return self._attach(0, child)
        return self._attach(self._index_of(sibling) + 1, child)

    def unlink(self) -> None:
        """Detach this node and its subtree from its parent."""
        if self.parent is not None:
            del self.parent.children[self.parent._index_of(self)]
            self.parent = None

    def copy(self) -> ConfigNode:
        """Copy the subtree; the template definition objects are shared."""
        clone = replace(self)
        for child in self.children:
            clone.append(child.copy())
        return clone

    def depth(self) -> int:
        """Depth in the tree, the root being 1."""
        depth = 1
        node = self.parent
        while node is not None:
            depth += 1
            node = node.parent
        return depth

    def is_root(self) -> bool:
        return self.parent is None

    def siblings(self) -> list[ConfigNode]:
        """All children of the parent, this node included, in order."""
        if self.parent is None:
            return [self]
        return list(self.parent.children)

    def pre_order(self) -> Iterator[ConfigNode]:
        """Yield this node, then each child subtree."""
        yield self
        child = self.children[0] if self.children else None
        while child is not None:
            following = child._next_sibling()
            yield from child.pre_order()
            child = following

    def post_order(self) -> Iterator[ConfigNode]:
        """Yield each child subtree, then this node."""
        child = self.children[0] if self.children else None
        while child is not None:
            following = child._next_sibling()
            yield from child.post_order()
            child = following
        yield self

    def in_order(self) -> Iterator[ConfigNode]:
        """Yield the first child subtree, this node, then the other subtrees."""
        if not self.children:
            yield self
            return
        first = self.children[0]
        following = first._next_sibling()
        yield from first.in_order()
        yield self
        child = following
        while child is not None:
            following = child._next_sibling()
            yield from child.in_order()
            child = following