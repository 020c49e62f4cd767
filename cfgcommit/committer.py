"""Running the actions of a session's changes and committing them.

Each transaction is validated first (syntax and commit checks), then its
actions run in a fixed order: begin, delete, create, update, end. Subtrees
whose template wraps them in begin/end actions are run on their own before
the rest of their transaction.
"""

from __future__ import annotations

import getopt
import logging
import os
import re
import subprocess
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, TextIO

from .defs import (
    COMMIT_CHANGES_FILE,
    ENV_ACTION_ACTIVE,
    ENV_ACTION_DELETE,
    ENV_ACTION_NAME,
    ENV_ACTION_SET,
    ENV_COMMIT_STATUS,
    ENV_DATA_PATH,
    ENV_SIBLING_POSITION,
    POST_COMMIT_HOOK_DIR,
    PRE_COMMIT_HOOK_DIR,
    ActionList,
    ActionType,
)
from .livecopy import LiveConfigWriter, SessionMount
from .nodes import ConfigNode
from .paths import process_script_path, unescape
from .session import SessionDirs, load_session
from .transactions import dump_transactions, get_transactions

log = logging.getLogger(__name__)

ACTION_ORDER = (
    ActionType.BEGIN,
    ActionType.DELETE,
    ActionType.CREATE,
    ActionType.UPDATE,
    ActionType.END,
)

DEFAULT_LOCK_FILE = "/opt/vyatta/config/.lock"

Executor = Callable[..., bool]

_USAGE = """commit2
\t-d\t\tdebug mode
\t-s\t\tdump sorted transactions and exit
\t-a\t\tdump ordered node actions and exit
\t-p\t\tdisable priority mode
\t-t\t\ttest mode (don't apply directory modifications)
\t-e\t\tprint node where error occurred
\t-c\t\tdump node coverage and execution times
\t-o\t\tdisable partial commit
\t-f\t\tfull iteration over configuration on commit check
\t-b [priority]\tbreak at priority node (debug mode)
\t-r\t\tdisable run hook script on finishing commit
\t-x\t\tdisable new print feature
\t-l\t\tforce commit through removal of commit lock
\t-h\t\thelp
"""

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class CommitStatus(Enum):
    """Outcome of a commit."""

    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILURE = "FAILURE"
    NOTHING_DONE = "NOTHING_DONE"

    @property
    def exit_code(self) -> int:
        return {
            CommitStatus.SUCCESS: 0,
            CommitStatus.NOTHING_DONE: 0,
            CommitStatus.FAILURE: 1,
            CommitStatus.PARTIAL: 2,
        }[self]

    @property
    def env_value(self) -> Optional[str]:
        """Value handed to post-commit hooks, None when nothing was committed."""
        if self is CommitStatus.NOTHING_DONE:
            return None
        return self.value


@dataclass
class CommitOptions:
    """Switches controlling a commit run."""

    priority_mode: bool = True
    test_mode: bool = False
    disable_partial_commit: bool = False
    full_commit_check: bool = False
    break_priority: Optional[int] = None
    disable_hook: bool = False
    comment: Optional[str] = None
    debug: bool = False
    dump_trans: bool = False
    dump_actions: bool = False
    display_error_node: bool = False
    coverage: bool = False
    old_print_output: bool = False
    print_error_location_all: bool = False
    release_lock: bool = False
    changes_file: str = COMMIT_CHANGES_FILE
    lock_file: str = DEFAULT_LOCK_FILE


class _Writer(Protocol):
    def copy_to_live_config(self, node: ConfigNode,
                            suppress_piecewise_copy: bool = False) -> None: ...

    def clean_temp_config(self, root: Optional[ConfigNode] = None) -> None: ...


def _stamp() -> str:
    now = time.time()
    seconds = int(now)
    return f"{seconds}:{int((now - seconds) * 1_000_000)}"


class Committer:
    """Validates and runs the actions of each transaction.

    ``executor`` is called as ``executor(actions, node=..., action=...,
    at_value=..., script_path=..., env=...)`` and returns whether the
    commands succeeded.
    """

    def __init__(self, executor: Executor, options: Optional[CommitOptions] = None,
                 out: Optional[TextIO] = None) -> None:
        self.executor = executor
        self.options = options if options is not None else CommitOptions()
        self.out = out if out is not None else sys.stdout
        self.input: TextIO = sys.stdin
        self.at_string: Optional[str] = None
        self.in_commit = False
        self.in_delete_action = False
        self.changes: list[str] = []

    def should_run(self, node: ConfigNode, action: ActionType) -> bool:
        """Whether ``action`` is to run on ``node`` given its operation."""
        definition = node.definition
        if not definition.has_action(action):
            return False
        op = node.operation
        selected = (
            (op.is_set and not op.is_active
             and action not in (ActionType.DELETE, ActionType.CREATE))
            or (op.is_create and not op.is_active
                and (action in (ActionType.BEGIN, ActionType.END, ActionType.CREATE)
                     or (action == ActionType.UPDATE
                         and not definition.has_action(ActionType.CREATE))))
            or (op.is_active and action in (ActionType.BEGIN, ActionType.END))
            or (op.is_delete and action in (ActionType.DELETE, ActionType.BEGIN,
                                            ActionType.END))
        )
        if not selected:
            return False
        if op.is_delete and op.is_active and action == ActionType.DELETE:
            return False
        if node.multi and not node.children:
            return False
        return True

    def _set_at_value(self, node: ConfigNode) -> None:
        if node.value and node.name:
            value = unescape(node.name) if node.definition.tag else node.name
            log.debug("@ value: %s", value)
            self.at_string = value

    def _run(self, node: ConfigNode, action: ActionType, env: dict[str, str]) -> bool:
        actions: ActionList = node.definition.actions[action]
        script_path = None if self.options.old_print_output else process_script_path(node.path)
        return bool(self.executor(actions, node=node, action=action,
                                  at_value=self.at_string, script_path=script_path,
                                  env=env))

    def _report_failure(self, action: ActionType, node: ConfigNode) -> None:
        path = node.path or ""
        log.error("commit error for %s:[%s]", action.label, path)
        if self.options.display_error_node:
            self.out.write(f"{action.label}@_errloc_:[{path}]\n")

    def _coverage_start(self, action: ActionType, path: str) -> None:
        if self.options.coverage:
            self.out.write(f"[START] {_stamp()}, {action.label}@{path}")

    def _coverage_end(self) -> None:
        if self.options.coverage:
            self.out.write(f"[END] {_stamp()}\n")

    def _execute(self, node: ConfigNode, action: ActionType) -> bool:
        self._set_at_value(node)
        path = node.path or ""
        log.debug("executing %s on %s", action.label, path)
        self._coverage_start(action, path)
        if action == ActionType.DELETE:
            self.in_delete_action = True

        env = {ENV_DATA_PATH: path}
        if node.first and node.last:
            env[ENV_SIBLING_POSITION] = "FIRSTLAST"
        elif node.first:
            env[ENV_SIBLING_POSITION] = "FIRST"
        elif node.last:
            env[ENV_SIBLING_POSITION] = "LAST"
        op = node.operation
        if op.is_active:
            env[ENV_ACTION_NAME] = ENV_ACTION_ACTIVE
        elif op.is_delete:
            env[ENV_ACTION_NAME] = ENV_ACTION_DELETE
        else:
            env[ENV_ACTION_NAME] = ENV_ACTION_SET

        if self.options.dump_actions:
            line = f"{action.label}\t:\t{path}"
            if node.definition.multi:
                line += unescape(node.name or "")
            self.out.write(line + "\n")
            status = True
        else:
            status = self._run(node, action, env)

        if action == ActionType.DELETE:
            self.in_delete_action = False
        self._coverage_end()
        if not status:
            self._report_failure(action, node)
            return False
        return True

    @staticmethod
    def _mark_position(node: ConfigNode) -> None:
        siblings = node.siblings()
        deletes = [s for s in siblings if s.operation.is_delete]
        sets = [s for s in siblings if s.operation.is_set_or_create]
        first = deletes[0] if deletes else (sets[0] if sets else None)
        last = sets[-1] if sets else (deletes[-1] if deletes else None)
        node.first = node is first
        node.last = node is last

    @staticmethod
    def _change_line(node: ConfigNode) -> Optional[str]:
        if node.path is None:
            return None
        op = node.operation
        if op.is_delete:
            prefix = "-"
        elif op.is_set_or_create:
            prefix = "+"
        else:
            return None
        line = f"{prefix} {node.path}"
        if node.definition.multi:
            line += unescape(node.name or "")
        return line

    def _validate_node(self, node: ConfigNode) -> bool:
        definition = node.definition
        op = node.operation
        syntax = definition.actions.get(ActionType.SYNTAX)
        if op.is_noop and syntax and not syntax.commit_check:
            return True
        if op.is_delete and not op.is_active:
            return True
        if not syntax:
            return True
        if definition.multi and op.is_noop:
            return True

        self._set_at_value(node)
        path = node.path or ""
        self._coverage_start(ActionType.SYNTAX, path)
        if self.options.dump_actions:
            kind = "commit" if syntax.commit_check else "syntax"
            line = f"{kind}\t:\t{path}"
            if definition.multi:
                line += unescape(node.name or "")
            self.out.write(line + "\n")
            status = True
        else:
            status = self._run(node, ActionType.SYNTAX, {ENV_DATA_PATH: path})
        self._coverage_end()
        if not status:
            self._report_failure(ActionType.SYNTAX, node)
            return False
        return True

    def validate(self, root: Optional[ConfigNode]) -> tuple[bool, list[str]]:
        """Run syntax and commit checks over ``root``.

        Returns whether the checks passed and, when they did, the change
        lines of the nodes visited. Unless a full check is requested the
        walk stops at the first failure.
        """
        if root is None:
            return False, []
        changes: list[str] = []
        failed = False
        for node in root.pre_order():
            self._mark_position(node)
            line = self._change_line(node)
            if line is not None:
                changes.append(line)
            if not self._validate_node(node):
                failed = True
                if not self.options.full_commit_check:
                    break
        if failed:
            return False, []
        return True, changes

    def _run_passes(self, node: ConfigNode) -> bool:
        for action in ACTION_ORDER:
            walk = node.post_order() if action == ActionType.DELETE else node.pre_order()
            for current in walk:
                if self.should_run(current, action) and not self._execute(current, action):
                    log.debug("failure on %s pass", action.label)
                    return False
        return True

    def process_priority_node(self, node: Optional[ConfigNode]) -> bool:
        """Run every action pass on one transaction."""
        if node is None:
            return False
        if not node.definition.is_enclosing():
            for inner in node.post_order():
                if inner is not node and inner.definition.is_enclosing():
                    inner.unlink()
                    log.debug("enclosing statement found on %s", inner.path)
                    if not self._run_passes(inner):
                        return False
        return self._run_passes(node)

    def _break_at(self, node: ConfigNode) -> None:
        limit = self.options.break_priority
        if limit is None or node.priority < limit:
            return
        dump_transactions(node, self.out)
        self.out.write("Press any key to commit...\n")
        self.input.read(1)

    def commit(self, config: ConfigNode, writer: _Writer) -> CommitStatus:
        """Commit the change tree ``config`` through ``writer``."""
        opts = self.options
        if not config.children:
            writer.clean_temp_config(None)
            self.out.write("No configuration changes to commit\n")
            return CommitStatus.NOTHING_DONE

        original = config.copy()
        transactions = get_transactions(config, opts.priority_mode)
        if transactions is None:
            return CommitStatus.NOTHING_DONE
        if opts.dump_trans:
            self.out.write("Dumping transactions\n")
            dump_transactions(transactions, self.out)
            return CommitStatus.NOTHING_DONE
        if opts.debug:
            dump_transactions(transactions, sys.stdout)
        if not transactions.children:
            log.info("no transactions to process")
            return CommitStatus.NOTHING_DONE

        try:
            changes_file = open(opts.changes_file, "w", encoding="utf-8")
        except OSError as exc:
            log.error("cannot access changes file: %s", exc)
            return CommitStatus.NOTHING_DONE

        self.in_commit = True
        completed: list[ConfigNode] = []
        errors = 0
        with changes_file:
            for trans_node in list(transactions.children):
                log.debug("processing transaction %s", trans_node.name or "")
                self._break_at(trans_node)
                snapshot = trans_node.copy()
                if opts.dump_actions:
                    self.out.write("\n")

                success = False
                valid, changes = self.validate(trans_node)
                if valid:
                    success = self.process_priority_node(trans_node)
                    if (success and trans_node.path != "/"
                            and not opts.disable_partial_commit and not opts.dump_actions):
                        completed.append(snapshot)
                if opts.dump_actions:
                    success = True
                errors |= 2 if success else 1

                for line in changes:
                    changes_file.write(line + "\n")
                changes_file.flush()
                self.changes.extend(changes)

        if errors == 2:
            if not opts.dump_actions:
                writer.copy_to_live_config(original, True)
                writer.clean_temp_config(original)
        else:
            self.out.write("Commit failed\n")
            for node in completed:
                writer.copy_to_live_config(node, False)
        self.in_commit = False

        try:
            os.unlink(opts.changes_file)
        except OSError:
            pass

        if errors == 2:
            return CommitStatus.SUCCESS
        if errors == 3:
            return CommitStatus.PARTIAL
        return CommitStatus.FAILURE


def _leading_int(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def hook_order(names: Iterable[str]) -> list[str]:
    """Hook file names sorted by the number they start with."""
    return sorted(names, key=_leading_int)


def execute_hooks(directory: Optional[str], comment: Optional[str] = None) -> list[str]:
    """Run every hook in ``directory`` with ``comment`` as its argument.

    Returns the command lines run, in order.
    """
    if directory is None:
        return []
    try:
        names = os.listdir(directory)
    except OSError:
        log.debug("could not open hook directory %s", directory)
        return []
    argument = comment if comment is not None else "commit"
    commands = []
    for name in hook_order(names):
        command = f"{directory}/{name} {argument}"
        log.debug("starting commit hook: %s", command)
        try:
            subprocess.run(command, shell=True, check=False)
        except OSError as exc:
            log.warning("error on call to hook %s: %s", command, exc)
        log.debug("finished with commit hook: %s", command)
        commands.append(command)
    return commands


def _shell_executor(actions: ActionList, *, node: ConfigNode, action: ActionType,
                    at_value: Optional[str], script_path: Optional[str],
                    env: dict[str, str]) -> bool:
    full_env = {**os.environ, **env}
    for command in actions.commands:
        try:
            completed = subprocess.run(["/bin/sh", "-c", command], env=full_env, check=False)
        except OSError as exc:
            log.error("cannot run action for %s: %s", node.path, exc)
            return False
        if completed.returncode != 0:
            return False
    return True


class _ConfigLock:
    def __init__(self, path: str) -> None:
        self.path = path
        self._held = False

    def acquire(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            log.warning("cannot create lock file %s: %s", self.path, exc)
            return True
        with os.fdopen(fd, "w") as handle:
            handle.write(str(os.getpid()))
        self._held = True
        return True

    def release(self) -> None:
        try:
            os.unlink(self.path)
        except OSError:
            pass
        self._held = False

    def release_if_held(self) -> None:
        if self._held:
            self.release()


def _dirs_from_env() -> SessionDirs:
    env = os.environ
    return SessionDirs(
        changes=env.get("VYATTA_CHANGES_ONLY_DIR", "/opt/vyatta/config/tmp/changes_only"),
        active=env.get("VYATTA_ACTIVE_CONFIGURATION_DIR", "/opt/vyatta/config/active"),
        merged=env.get("VYATTA_TEMP_CONFIG_DIR", "/opt/vyatta/config/tmp/new_config"),
        templates=env.get("VYATTA_CONFIG_TEMPLATE", "/opt/vyatta/share/vyatta-cfg/templates"),
        tmp=env.get("VYATTA_CONFIG_TMP", "/opt/vyatta/config/tmp/tmp"),
    )


def _parse_args(args: list[str]) -> Optional[CommitOptions]:
    try:
        parsed, _ = getopt.getopt(args, "xdpthsecoafb:rlC:")
    except getopt.GetoptError:
        return None
    options = CommitOptions()
    flags = {
        "-x": "old_print_output", "-d": "debug", "-t": "test_mode",
        "-s": "dump_trans", "-e": "display_error_node", "-c": "coverage",
        "-o": "disable_partial_commit", "-a": "dump_actions",
        "-f": "full_commit_check", "-r": "disable_hook", "-l": "release_lock",
    }
    for flag, value in parsed:
        if flag == "-h":
            return None
        if flag == "-p":
            options.priority_mode = False
        elif flag == "-b":
            options.break_priority = _leading_int(value)
        elif flag == "-C":
            options.comment = value
        else:
            setattr(options, flags[flag], True)
    return options


def main(argv: Optional[list[str]] = None) -> int:
    """Commit the current configuration session."""
    args = sys.argv[1:] if argv is None else list(argv)
    options = _parse_args(args)
    if options is None:
        sys.stdout.write(_USAGE)
        return 0

    logging.basicConfig(level=logging.DEBUG if options.debug else logging.WARNING)
    lock = _ConfigLock(options.lock_file)
    if options.release_lock:
        lock.release()
    if os.environ.get("VYATTA_OUTPUT_ERROR_LOCATION") is not None:
        options.print_error_location_all = True

    if not options.disable_hook:
        execute_hooks(PRE_COMMIT_HOOK_DIR, options.comment)

    out = sys.stdout
    if not lock.acquire():
        out.write("Configuration system temporarily locked "
                  "due to another commit in progress\n")
        return 1

    try:
        dirs = _dirs_from_env()
        config = load_session(dirs)
        writer = LiveConfigWriter(dirs, SessionMount(dirs), options.test_mode)
        committer = Committer(_shell_executor, options, out)
        status = committer.commit(config, writer)
    finally:
        lock.release_if_held()

    if status.env_value is None:
        return status.exit_code
    if not options.disable_hook:
        os.environ[ENV_COMMIT_STATUS] = status.env_value
        try:
            execute_hooks(POST_COMMIT_HOOK_DIR, options.comment)
        finally:
            os.environ.pop(ENV_COMMIT_STATUS, None)
    return status.exit_code