"""Moving a committed session subtree into the active configuration.

The session directory is a union of the session's changes layered over the
active configuration. Before touching the layers underneath it the union is
unmounted, and it is mounted again afterwards.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol

from .defs import DEF_FILE, DELETED_NODE, MAX_LENGTH_DIR_PATH, VAL_NAME
from .nodes import ConfigNode
from .session import SessionDirs

log = logging.getLogger(__name__)

NOTIFY_COMMAND = "/opt/vyatta/sbin/vyatta-cfg-notify"


def _run(command: list[str]) -> bool:
    log.debug("running %s", " ".join(command))
    try:
        completed = subprocess.run(command, check=False)
    except OSError as exc:
        log.warning("cannot run %s: %s", command[0], exc)
        return False
    if completed.returncode != 0:
        log.warning("%s exited with status %d", command[0], completed.returncode)
        return False
    return True


@dataclass(frozen=True)
class SessionMount:
    """Mounts and unmounts the union that forms the session directory."""

    dirs: SessionDirs
    use_fuse: bool = True
    fuse_program: str = "/usr/bin/unionfs-fuse"
    fusermount_program: str = "/usr/bin/fusermount"
    mount_program: str = "mount"
    umount_program: str = "umount"

    def mount_command(self) -> list[str]:
        """The command line that mounts the session union."""
        changes, active, merged = self.dirs.changes, self.dirs.active, self.dirs.merged
        if self.use_fuse:
            return [self.fuse_program, "-o", "cow", "-o", "allow_other",
                    f"{changes}=RW:{active}=RO", merged]
        return [self.mount_program, "-t", "unionfs", "-o",
                f"dirs={changes}=rw:{active}=ro", "unionfs", merged]

    def umount_command(self) -> list[str]:
        """The command line that unmounts the session union."""
        if self.use_fuse:
            return [self.fusermount_program, "-u", self.dirs.merged]
        return [self.umount_program, self.dirs.merged]

    def mount(self) -> bool:
        """Mount the session union; failures are logged and give False."""
        return _run(self.mount_command())

    def umount(self) -> bool:
        """Unmount the session union; failures are logged and give False."""
        return _run(self.umount_command())


class _Mounter(Protocol):
    def mount(self) -> object: ...

    def umount(self) -> object: ...


def _fits(*paths: str) -> bool:
    return all(len(path) < MAX_LENGTH_DIR_PATH for path in paths)


def _entries(path: str, include_hidden: bool) -> list[str]:
    try:
        names = sorted(entry.name for entry in os.scandir(path))
    except OSError:
        return []
    return [name for name in names if include_hidden or not name.startswith(".")]


def _delete_path(path: str) -> None:
    if os.path.islink(path) or os.path.isfile(path):
        os.unlink(path)
    elif os.path.isdir(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.unlink(path)


class LiveConfigWriter:
    """Applies committed subtrees to the active configuration.

    In test mode every step is recorded in :attr:`operations` but nothing
    on disk is changed and the session union is left mounted.
    """

    notify_command: Optional[str] = NOTIFY_COMMAND

    def __init__(self, dirs: SessionDirs, mount: Optional[_Mounter] = None,
                 test_mode: bool = False) -> None:
        self.dirs = dirs
        self.mount = mount
        self.test_mode = test_mode
        self.operations: list[str] = []

    def _step(self, description: str) -> bool:
        self.operations.append(description)
        log.debug("%s", description)
        return not self.test_mode

    def _remove_tree(self, path: str) -> None:
        if self._step(f"rm -fr {path}"):
            try:
                _delete_path(path)
            except OSError as exc:
                log.debug("cannot remove %s: %s", path, exc)

    def _make_dirs(self, path: str) -> None:
        if self._step(f"mkdir -p {path}"):
            try:
                os.makedirs(path, mode=0o775, exist_ok=True)
            except OSError as exc:
                log.debug("cannot create %s: %s", path, exc)

    def _remove_file(self, path: str) -> None:
        if self._step(f"rm {path}"):
            try:
                os.remove(path)
            except OSError:
                pass

    def _copy_file(self, src: str, dst: str) -> None:
        if self._step(f"cp {src} {dst}"):
            try:
                shutil.copyfile(src, dst)
            except OSError:
                pass

    def _copy_entries(self, src: str, dst: str) -> None:
        if not self._step(f"cp -r -f {src}/* {dst}"):
            return
        for name in _entries(src, include_hidden=False):
            source = os.path.join(src, name)
            target = os.path.join(dst, name)
            try:
                if os.path.isdir(source) and not os.path.islink(source):
                    shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
                else:
                    shutil.copy2(source, target, follow_symlinks=False)
            except OSError as exc:
                log.debug("cannot copy %s: %s", source, exc)

    def _remove_entries(self, path: str, include_hidden: bool) -> None:
        pattern = "{.*,*}" if include_hidden else "*"
        if not self._step(f"rm -fr {path}/{pattern}"):
            return
        for name in _entries(path, include_hidden):
            try:
                _delete_path(os.path.join(path, name))
            except OSError as exc:
                log.debug("cannot remove %s: %s", name, exc)

    def _move_entries(self, src: str, dst: str) -> None:
        if not self._step(f"mv -f {src}/* -t {dst}"):
            return
        for name in _entries(src, include_hidden=False):
            target = os.path.join(dst, name)
            try:
                if os.path.lexists(target):
                    _delete_path(target)
                shutil.move(os.path.join(src, name), target)
            except OSError as exc:
                log.debug("cannot move %s: %s", name, exc)

    def _clear_dir(self, path: str) -> None:
        """Remove the files directly in ``path``, then the directory if empty."""
        if not self._step(f"rm -f {path}{{*,.*}}; rmdir {path}"):
            return
        for name in _entries(path, include_hidden=True):
            entry = os.path.join(path, name)
            if os.path.isdir(entry) and not os.path.islink(entry):
                continue
            try:
                os.unlink(entry)
            except OSError:
                pass
        try:
            os.rmdir(path)
        except OSError:
            pass

    def _umount(self) -> None:
        if not self.test_mode and self.mount is not None:
            self.mount.umount()

    def _mount(self) -> None:
        if not self.test_mode and self.mount is not None:
            self.mount.mount()

    def _notify(self) -> None:
        if not self.notify_command:
            return
        try:
            subprocess.run([self.notify_command], check=False)
        except OSError as exc:
            log.debug("cannot notify configuration users: %s", exc)

    def copy_to_live_config(self, node: ConfigNode,
                            suppress_piecewise_copy: bool = False) -> None:
        """Copy the committed subtree at ``node`` into the active configuration.

        With ``suppress_piecewise_copy`` the whole active configuration is
        replaced by the merged view; otherwise only the nodes in the subtree
        are copied and deleted.
        """
        path = node.path or ""
        log.debug("copying %s to the active configuration", path)
        merged_path = self.dirs.merged + path
        tmp_path = self.dirs.tmp + path

        self._remove_tree(tmp_path)
        self._make_dirs(tmp_path)
        self._copy_entries(merged_path, tmp_path)

        self._umount()
        if suppress_piecewise_copy:
            self._remove_entries(self.dirs.active, include_hidden=False)
            self._move_entries(self.dirs.tmp, self.dirs.active)
        else:
            self.piecewise_copy(node)
        self._mount()

    def clean_temp_config(self, root: Optional[ConfigNode] = None) -> None:
        """Drop deleted nodes from the active configuration and empty the changes layer."""
        log.debug("cleaning the session changes")
        self._umount()
        if root is not None:
            for node in root.pre_order():
                op = node.operation
                if not op.is_delete or op.is_active:
                    continue
                if node.parent is not None and node.parent.operation.is_delete:
                    continue
                self._remove_tree(self.dirs.active + (node.path or ""))
        self._remove_entries(self.dirs.changes, include_hidden=True)
        self._mount()
        self._notify()

    def piecewise_copy(self, root: ConfigNode) -> None:
        """Copy the subtree top down, then clear the changes bottom up."""
        for node in root.pre_order():
            self._copy_node(node)
        for node in root.post_order():
            self._delete_node(node)

    def _copy_node(self, node: ConfigNode) -> None:
        src, dst = self.dirs.tmp, self.dirs.active
        if node.value and not node.definition.tag:
            parent_path = (node.parent.path if node.parent is not None else None) or ""
            if not node.multi:
                # A value set by default and later unset must lose its marker.
                stale = f"{dst}{parent_path}{DEF_FILE}"
                if _fits(stale):
                    self._remove_file(stale)
            for name in (VAL_NAME, DEF_FILE):
                source = f"{src}{parent_path}{name}"
                target = f"{dst}{parent_path}{name}"
                if _fits(source, target):
                    self._copy_file(source, target)
        elif not node.operation.is_delete:
            target = f"{dst}{node.path or ''}"
            if _fits(target):
                self._make_dirs(target)

    def _delete_node(self, node: ConfigNode) -> None:
        op = node.operation
        if op.is_noop:
            return
        src, dst = self.dirs.changes, self.dirs.active
        path = node.path or ""
        if not op.is_delete:
            self._clear_dir(src + path)
        if op.is_delete and not op.is_active:
            parent_dir = os.path.dirname(os.path.normpath(src + path))
            self._remove_file(os.path.join(parent_dir, f"{DELETED_NODE}{node.name or ''}"))
            self._clear_dir(dst + path)