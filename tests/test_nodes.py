import pytest

from cfgcommit.defs import NodeOperation
from cfgcommit.nodes import ConfigNode


def names(nodes):
    return [node.name for node in nodes]


@pytest.fixture
def tree():
    root = ConfigNode(name="r")
    a = root.append(ConfigNode(name="a"))
    a.append(ConfigNode(name="a1"))
    a.append(ConfigNode(name="a2"))
    root.append(ConfigNode(name="b"))
    return root


def test_append_sets_parent_and_depth():
    root = ConfigNode(name="r")
    child = root.append(ConfigNode(name="c"))
    grandchild = child.append(ConfigNode(name="g"))
    assert child.parent is root
    assert root.depth() == 1
    assert grandchild.depth() == 3
    assert root.is_root() and not child.is_root()


def test_insert_positions():
    root = ConfigNode(name="r")
    root.insert(-1, ConfigNode(name="x"))
    root.insert(0, ConfigNode(name="w"))
    root.insert(99, ConfigNode(name="z"))
    root.insert(2, ConfigNode(name="y"))
    assert names(root.children) == ["w", "x", "y", "z"]


def test_insert_before():
    root = ConfigNode(name="r")
    c = root.append(ConfigNode(name="c"))
    root.insert_before(None, ConfigNode(name="d"))
    root.insert_before(c, ConfigNode(name="b"))
    assert names(root.children) == ["b", "c", "d"]


def test_insert_after():
    root = ConfigNode(name="r")
    b = root.append(ConfigNode(name="b"))
    root.insert_after(None, ConfigNode(name="a"))
    root.insert_after(b, ConfigNode(name="c"))
    assert names(root.children) == ["a", "b", "c"]


def test_insert_node_with_parent_rejected(tree):
    with pytest.raises(ValueError):
        ConfigNode(name="other").append(tree.children[0])


def test_insert_before_foreign_sibling_rejected(tree):
    with pytest.raises(ValueError):
        tree.insert_before(ConfigNode(name="stray"), ConfigNode(name="n"))


def test_unlink(tree):
    a = tree.children[0]
    a.unlink()
    assert a.is_root()
    assert names(tree.children) == ["b"]
    assert names(a.pre_order()) == ["a", "a1", "a2"]


def test_pre_order(tree):
    assert names(tree.pre_order()) == ["r", "a", "a1", "a2", "b"]


def test_post_order(tree):
    assert names(tree.post_order()) == ["a1", "a2", "a", "b", "r"]


def test_in_order(tree):
    assert names(tree.in_order()) == ["a1", "a", "a2", "r", "b"]


def test_post_order_survives_unlinking_visited(tree):
    visited = []
    for node in tree.post_order():
        visited.append(node.name)
        if node is not tree:
            node.unlink()
    assert sorted(visited) == sorted(["r", "a", "a1", "a2", "b"])
    assert tree.children == []


def test_copy_is_independent(tree):
    tree.children[0].operation = NodeOperation.DELETE
    clone = tree.copy()
    assert names(clone.pre_order()) == names(tree.pre_order())
    assert clone.children[0].operation is NodeOperation.DELETE
    assert clone.children[0] is not tree.children[0]
    assert clone.children[0].parent is clone
    clone.children[0].unlink()
    assert len(tree.children) == 2


def test_siblings(tree):
    a, b = tree.children
    assert b.siblings() == [a, b]
    assert tree.siblings() == [tree]