import os

import pytest

from cfgcommit.defs import LOWEST_PRIORITY, TAG_NAME, VAL_NAME, Definition, NodeOperation
from cfgcommit.nodes import ConfigNode
from cfgcommit.session import (
    SessionDirs,
    config_path_of,
    insert_sibling_in_order,
    load_session,
    read_values,
    value_exists,
)


@pytest.fixture
def dirs(tmp_path):
    result = SessionDirs(
        changes=str(tmp_path / "changes"),
        active=str(tmp_path / "active"),
        merged=str(tmp_path / "merged"),
        templates=str(tmp_path / "templates"),
        tmp=str(tmp_path / "tmp"),
    )
    for path in (result.changes, result.active, result.merged, result.templates, result.tmp):
        os.makedirs(path)
    return result


def _write_value(base, rel, text):
    directory = os.path.join(base, *rel.split("/"))
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, VAL_NAME), "w", encoding="utf-8") as handle:
        handle.write(text)


def _touch(base, rel):
    path = os.path.join(base, *rel.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8"):
        pass


def _child(node, name):
    matches = [child for child in node.children if child.name == name]
    assert len(matches) == 1
    return matches[0]


def test_value_exists(tmp_path):
    assert not value_exists(str(tmp_path))
    _write_value(str(tmp_path), "leaf", "x\n")
    assert value_exists(str(tmp_path / "leaf"))


def test_read_values_splits_lines(tmp_path):
    _write_value(str(tmp_path), "leaf", "a\nb\n")
    assert read_values(str(tmp_path / "leaf")) == ["a", "b"]


def test_read_values_missing_and_empty(tmp_path):
    assert read_values(str(tmp_path)) is None
    _write_value(str(tmp_path), "leaf", "")
    assert read_values(str(tmp_path / "leaf")) == []


def test_config_path_of_root_and_plain_nodes():
    root = ConfigNode()
    system = root.append(ConfigNode(name="system"))
    host = system.append(ConfigNode(name="host-name"))
    assert config_path_of(root) == "/"
    assert config_path_of(host) == "system/host-name/"


def test_config_path_of_uses_tag_under_multi_node():
    root = ConfigNode()
    interfaces = root.append(ConfigNode(name="interfaces"))
    ethernet = interfaces.append(ConfigNode(name="ethernet", multi=True))
    eth0 = ethernet.append(ConfigNode(name="eth0"))
    path = config_path_of(eth0)
    assert path.split("/")[:3] == ["interfaces", "ethernet", TAG_NAME]
    assert "eth0" not in path


def test_insert_sibling_in_order_into_empty_parent():
    parent = ConfigNode()
    child = ConfigNode(name="b")
    assert insert_sibling_in_order(parent, child) is child
    assert parent.children == [child]
    assert child.parent is parent


def test_insert_sibling_smaller_name_goes_first():
    parent = ConfigNode()
    insert_sibling_in_order(parent, ConfigNode(name="m"))
    smaller = insert_sibling_in_order(parent, ConfigNode(name="a"))
    assert parent.children[0] is smaller
    assert len(parent.children) == 2


def test_insert_sibling_larger_name_goes_after_smaller():
    parent = ConfigNode()
    small = insert_sibling_in_order(parent, ConfigNode(name="a"))
    large = insert_sibling_in_order(parent, ConfigNode(name="z"))
    assert parent.children.index(large) == parent.children.index(small) + 1


def test_empty_session_has_no_children(dirs):
    root = load_session(dirs)
    assert root.children == []
    assert root.name is None
    assert root.path == "/"


def test_new_leaf_is_created(dirs):
    _write_value(dirs.changes, "system/host-name", "router\n")
    _write_value(dirs.merged, "system/host-name", "router\n")
    root = load_session(dirs)
    system = _child(root, "system")
    host = _child(system, "host-name")
    assert system.operation == NodeOperation.CREATE
    assert host.operation == NodeOperation.CREATE
    assert host.path == "/system/host-name/"
    assert len(host.children) == 1
    value = host.children[0]
    assert value.value
    assert value.name == "router"
    assert value.operation == NodeOperation.CREATE
    assert value.path == "/system/host-name/value:router"
    assert value.config_path.endswith(TAG_NAME)


def test_changed_leaf_is_set(dirs):
    _write_value(dirs.active, "system/host-name", "old\n")
    _write_value(dirs.changes, "system/host-name", "new\n")
    _write_value(dirs.merged, "system/host-name", "new\n")
    root = load_session(dirs)
    host = _child(_child(root, "system"), "host-name")
    value = host.children[0]
    assert value.name == "new"
    assert value.operation == NodeOperation.SET
    assert host.operation == NodeOperation.NO_OP


def test_unchanged_leaf_is_noop(dirs):
    _write_value(dirs.active, "system/host-name", "same\n")
    _write_value(dirs.changes, "system/host-name", "same\n")
    _write_value(dirs.merged, "system/host-name", "same\n")
    root = load_session(dirs)
    value = _child(_child(root, "system"), "host-name").children[0]
    assert value.operation == NodeOperation.NO_OP


def test_value_with_slash_is_escaped_in_path(dirs):
    _write_value(dirs.changes, "system/url", "a/b\n")
    _write_value(dirs.merged, "system/url", "a/b\n")
    root = load_session(dirs)
    value = _child(_child(root, "system"), "url").children[0]
    assert value.name == "a/b"
    assert value.path.endswith("value:a%2Fb")


def test_whiteout_entry_marks_deletion(dirs):
    _write_value(dirs.active, "system/host-name", "router\n")
    _touch(dirs.changes, "system/.wh.host-name")
    root = load_session(dirs)
    system = _child(root, "system")
    host = _child(system, "host-name")
    assert host.operation == NodeOperation.DELETE
    value = host.children[0]
    assert value.name == "router"
    assert value.operation == NodeOperation.DELETE
    assert system.operation == NodeOperation.NO_OP


def test_opaque_directory_reveals_hidden_deletions(dirs):
    _write_value(dirs.active, "system/dns", "ns\n")
    _write_value(dirs.active, "system/ntp", "clock\n")
    _write_value(dirs.changes, "system/ntp", "clock\n")
    _write_value(dirs.merged, "system/ntp", "clock\n")
    _touch(dirs.changes, "system/.wh.__dir_opaque")
    root = load_session(dirs)
    system = _child(root, "system")
    dns = _child(system, "dns")
    ntp = _child(system, "ntp")
    assert dns.operation == NodeOperation.DELETE
    assert dns.children[0].operation == NodeOperation.DELETE
    assert not ntp.operation.is_delete


def test_multi_values_are_compared(dirs):
    _touch(dirs.templates, "system/name-server/node.def")
    multi_def = Definition(multi=True, multi_limit=3)

    def parse(path):
        return multi_def if path.endswith(os.path.join("name-server", "node.def")) else None

    _write_value(dirs.active, "system/name-server", "a\nb\n")
    _write_value(dirs.changes, "system/name-server", "b\nc\n")
    _write_value(dirs.merged, "system/name-server", "b\nc\n")
    root = load_session(dirs, parse)
    servers = _child(_child(root, "system"), "name-server")
    states = {child.name: child.operation for child in servers.children}
    assert states == {
        "a": NodeOperation.DELETE,
        "b": NodeOperation.NO_OP,
        "c": NodeOperation.CREATE,
    }
    assert servers.multi
    assert servers.limit == 3
    assert all(child.value for child in servers.children)
    assert all(child.definition is multi_def for child in servers.children)
    assert servers.definition == Definition()
    assert {child.path for child in servers.children} == {"/system/name-server/value:"}


def test_template_priority_is_applied(dirs):
    _touch(dirs.templates, "system/node.def")
    system_def = Definition(priority=400)

    def parse(path):
        return system_def if path == os.path.join(dirs.templates, "system", "node.def") else None

    _write_value(dirs.changes, "system/host-name", "router\n")
    _write_value(dirs.merged, "system/host-name", "router\n")
    root = load_session(dirs, parse)
    system = _child(root, "system")
    assert system.priority == 400
    assert system.definition is system_def
    assert _child(system, "host-name").priority == LOWEST_PRIORITY


def test_tag_node_definition_moves_to_tag_value(dirs):
    _touch(dirs.templates, "interfaces/ethernet/node.def")
    tag_def = Definition(tag=True, priority=300)

    def parse(path):
        if path == os.path.join(dirs.templates, "interfaces", "ethernet", "node.def"):
            return tag_def
        return None

    os.makedirs(os.path.join(dirs.changes, "interfaces", "ethernet", "eth0"))
    root = load_session(dirs, parse)
    ethernet = _child(_child(root, "interfaces"), "ethernet")
    eth0 = _child(ethernet, "eth0")
    assert ethernet.multi
    assert ethernet.priority == LOWEST_PRIORITY
    assert ethernet.definition == Definition()
    assert eth0.value
    assert eth0.definition is tag_def
    assert eth0.operation == NodeOperation.CREATE
    assert TAG_NAME in eth0.config_path


def test_failed_template_parse_leaves_empty_definition(dirs):
    _touch(dirs.templates, "system/node.def")
    os.makedirs(os.path.join(dirs.changes, "system"))
    root = load_session(dirs, lambda path: None)
    system = _child(root, "system")
    assert system.definition == Definition()
    assert not system.multi
    assert system.priority == LOWEST_PRIORITY