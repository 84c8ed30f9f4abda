"""On-disk store of builder instances and the current selection."""

from __future__ import annotations

import contextlib
import hashlib
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterator

from filelock import FileLock

from .nodegroup import NodeGroup, validate_name

__all__ = ["Store", "Txn"]

_LOOKUP_ERRORS = (OSError, ValueError)


def _to_hash(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:20]


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".tmp-{path.name}")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


def _remove_all(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        with contextlib.suppress(FileNotFoundError):
            path.unlink()


class Store:
    """A directory holding builder instances and defaults."""

    def __init__(self, root: str | os.PathLike) -> None:
        self.root = Path(root)
        (self.root / "instances").mkdir(mode=0o700, parents=True, exist_ok=True)
        (self.root / "defaults").mkdir(mode=0o700, parents=True, exist_ok=True)

    @contextlib.contextmanager
    def txn(self) -> Iterator["Txn"]:
        """Hold the store lock and yield a transaction."""
        with FileLock(str(self.root / ".lock")):
            yield Txn(self.root)


class Txn:
    """Operations on a locked store."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def _instances(self) -> Path:
        return self._root / "instances"

    def list(self) -> list[NodeGroup]:
        """Return every stored builder, sorted by name."""
        groups = []
        for entry in sorted(self._instances.iterdir()):
            try:
                groups.append(self.node_group_by_name(entry.name))
            except FileNotFoundError:
                _remove_all(entry)
        groups.sort(key=lambda group: group.name)
        return groups

    def node_group_by_name(self, name: str) -> NodeGroup:
        """Load a builder; ``FileNotFoundError`` when it does not exist."""
        name = validate_name(name)
        data = (self._instances / name).read_bytes()
        return NodeGroup.from_dict(json.loads(data))

    def save(self, group: NodeGroup) -> None:
        """Write a builder, replacing any earlier version."""
        name = validate_name(group.name)
        _atomic_write(self._instances / name, json.dumps(group.to_dict()).encode("utf-8"))

    def remove(self, name: str) -> None:
        """Delete a builder; a missing one is not an error."""
        name = validate_name(name)
        _remove_all(self._instances / name)

    def set_current(self, key: str, name: str, global_: bool, default: bool) -> None:
        """Select the builder for an endpoint key.

        ``global_`` makes the choice apply to every key; ``default`` also
        records it as the fallback for this key.
        """
        record = {"Key": key, "Name": name, "Global": global_}
        _atomic_write(self._root / "current", json.dumps(record).encode("utf-8"))
        default_path = self._root / "defaults" / _to_hash(key)
        if default:
            _atomic_write(default_path, name.encode("utf-8"))
        else:
            with contextlib.suppress(OSError):
                _remove_all(default_path)

    def _reset(self, key: str) -> None:
        record = {"Key": key, "Name": "", "Global": False}
        _atomic_write(self._root / "current", json.dumps(record).encode("utf-8"))

    def current(self, key: str) -> NodeGroup | None:
        """Return the builder selected for an endpoint key, or ``None``."""
        try:
            data = (self._root / "current").read_bytes()
        except FileNotFoundError:
            data = None

        if data is not None:
            record = json.loads(data)
            name = record.get("Name") or ""
            if name:
                if record.get("Global"):
                    try:
                        return self.node_group_by_name(name)
                    except _LOOKUP_ERRORS:
                        pass
                if record.get("Key") == key:
                    try:
                        return self.node_group_by_name(name)
                    except _LOOKUP_ERRORS:
                        return None

        try:
            default_name = (self._root / "defaults" / _to_hash(key)).read_bytes().decode("utf-8")
        except FileNotFoundError:
            with contextlib.suppress(OSError):
                self._reset(key)
            return None

        try:
            group: NodeGroup | None = self.node_group_by_name(default_name)
        except _LOOKUP_ERRORS:
            group = None
            with contextlib.suppress(OSError):
                self._reset(key)
        self.set_current(key, default_name, False, True)
        return group