"""Core definitions shared by the configuration commit machinery."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, IntFlag

LOWEST_PRIORITY = 1000
MAX_DEPTH = 128
MAX_LENGTH_DIR_PATH = 4096

ENV_ACTION_NAME = "COMMIT_ACTION"
ENV_ACTION_DELETE = "DELETE"
ENV_ACTION_SET = "SET"
ENV_ACTION_ACTIVE = "ACTIVE"
ENV_SIBLING_POSITION = "COMMIT_SIBLING_POSITION"
ENV_DATA_PATH = "NODE_DATA_PATH"
ENV_COMMIT_STATUS = "COMMIT_STATUS"

COMMIT_CHANGES_FILE = "/tmp/.changes"
POST_COMMIT_HOOK_DIR = "/etc/commit"
PRE_COMMIT_HOOK_DIR = "/etc/pre_commit"

TAG_NAME = "node.tag"
DEF_NAME = "node.def"
VAL_NAME = "node.val"
MOD_NAME = ".modified"
OPQ_NAME = ".wh.__dir_opaque"

UNSAVED_FILE = ".unsaved"
DEF_FILE = "def"
WHITEOUT_FILE = ".wh.__dir_opaque"
DELETED_NODE = ".wh."

LOGFILE_STDOUT = "/var/log/vyatta/cfg-stdout.log"
LOGFILE_STDERR = "/var/log/vyatta/cfg-stderr.log"


class VtwType(IntEnum):
    """Value types a template node may declare."""

    ERROR_TYPE = 0
    INT_TYPE = 1
    IPV4_TYPE = 2
    IPV4NET_TYPE = 3
    IPV6_TYPE = 4
    IPV6NET_TYPE = 5
    MACADDR_TYPE = 6
    DOMAIN_TYPE = 7
    TEXT_TYPE = 8
    BOOL_TYPE = 9
    PRIORITY_TYPE = 10


class ActionType(IntEnum):
    """Kinds of actions a template node may define."""

    DELETE = 0
    CREATE = 1
    ACTIVATE = 2
    UPDATE = 3
    SYNTAX = 4
    COMMIT = 5
    BEGIN = 6
    END = 7

    @property
    def label(self) -> str:
        """Lower-case name used in logs and action dumps."""
        return self.name.lower()


class NodeOperation(IntFlag):
    """Bit set describing what happened to a configuration node."""

    NO_OP = 0x01
    ACTIVE = 0x02
    SET = 0x04
    CREATE = 0x08
    DELETE = 0x10

    @property
    def is_noop(self) -> bool:
        return bool(self & NodeOperation.NO_OP)

    @property
    def is_active(self) -> bool:
        return bool(self & NodeOperation.ACTIVE)

    @property
    def is_set(self) -> bool:
        return bool(self & NodeOperation.SET)

    @property
    def is_create(self) -> bool:
        return bool(self & NodeOperation.CREATE)

    @property
    def is_delete(self) -> bool:
        return bool(self & NodeOperation.DELETE)

    @property
    def is_set_or_create(self) -> bool:
        return bool(self & (NodeOperation.SET | NodeOperation.CREATE))


@dataclass(frozen=True)
class ActionList:
    """Commands attached to one action of a template node.

    ``commit_check`` marks a syntax list that runs at commit time.
    An empty list is false, as if no action were defined.
    """

    commands: tuple[str, ...] = ()
    commit_check: bool = False

    def __bool__(self) -> bool:
        return bool(self.commands)


def _empty_actions() -> dict[ActionType, ActionList]:
    return {action: ActionList() for action in ActionType}


@dataclass
class Definition:
    """Parsed contents of a template node definition."""

    def_type: VtwType = VtwType.ERROR_TYPE
    def_type2: VtwType = VtwType.ERROR_TYPE
    type_help: str | None = None
    node_help: str | None = None
    default: str | None = None
    priority: int = 0
    priority_ext: str | None = None
    enumeration: str | None = None
    comp_help: str | None = None
    allowed: str | None = None
    val_help: str | None = None
    tag_limit: int = 0
    multi_limit: int = 0
    tag: bool = False
    multi: bool = False
    actions: dict[ActionType, ActionList] = field(default_factory=_empty_actions)

    def has_action(self, action: ActionType) -> bool:
        """Whether a non-empty action list is defined for ``action``."""
        return bool(self.actions.get(action))

    def is_enclosing(self) -> bool:
        """Whether the node wraps its subtree in begin/end actions."""
        return self.has_action(ActionType.BEGIN) or self.has_action(ActionType.END)