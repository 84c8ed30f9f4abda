"""Progress reporting: vertices, their statuses and logs, and writers for them."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Callable, Protocol, TypeVar

__all__ = [
    "Vertex",
    "VertexStatus",
    "VertexLog",
    "SolveStatus",
    "Writer",
    "SubLogger",
    "PrefixedWriter",
    "ResetTimeWriter",
    "add_prefix",
    "wrap",
    "write",
    "from_reader",
    "with_prefix",
    "reset_time",
]

T = TypeVar("T")

_CHUNK = 64 * 1024


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_digest() -> str:
    return "sha256:" + hashlib.sha256(uuid.uuid4().hex.encode("ascii")).hexdigest()


@dataclass
class Vertex:
    """A step of a build."""

    digest: str
    name: str
    started: datetime | None = None
    completed: datetime | None = None
    error: str = ""


@dataclass
class VertexStatus:
    """Progress of one sub-task of a vertex."""

    vertex: str
    id: str
    name: str = ""
    total: int = 0
    current: int = 0
    timestamp: datetime = field(default_factory=_now)
    started: datetime | None = None
    completed: datetime | None = None


@dataclass
class VertexLog:
    """Output written by a vertex on a stream (1 for stdout, 2 for stderr)."""

    vertex: str
    stream: int
    data: bytes
    timestamp: datetime = field(default_factory=_now)


@dataclass
class SolveStatus:
    """A batch of progress updates."""

    vertexes: list[Vertex] = field(default_factory=list)
    statuses: list[VertexStatus] = field(default_factory=list)
    logs: list[VertexLog] = field(default_factory=list)


Logger = Callable[[SolveStatus], None]


class Writer(Protocol):
    """Receiver of progress updates."""

    def write(self, status: SolveStatus) -> None: ...

    def validate_log_source(self, digest: str, source: Any) -> bool: ...

    def clear_log_source(self, source: Any) -> None: ...


@dataclass
class SubLogger:
    """Reports sub-tasks and logs of one vertex."""

    digest: str
    logger: Logger

    def wrap(self, name: str, fn: Callable[[], T]) -> T:
        """Run ``fn`` reported as a sub-task named ``name``."""
        started = _now()
        self.logger(SolveStatus(statuses=[VertexStatus(vertex=self.digest, id=name, started=started)]))
        try:
            return fn()
        finally:
            self.logger(
                SolveStatus(
                    statuses=[
                        VertexStatus(vertex=self.digest, id=name, started=started, completed=_now())
                    ]
                )
            )

    def log(self, stream: int, data: bytes) -> None:
        """Report output of the vertex."""
        self.logger(SolveStatus(logs=[VertexLog(vertex=self.digest, stream=stream, data=data)]))

    def set_status(self, status: VertexStatus) -> None:
        """Report a status, attaching it to this vertex."""
        status.vertex = self.digest
        self.logger(SolveStatus(statuses=[status]))


def wrap(name: str, logger: Logger, fn: Callable[[SubLogger], T]) -> T:
    """Run ``fn`` reported as a new vertex; its error, if any, is recorded and re-raised."""
    digest = _new_digest()
    started = _now()
    logger(SolveStatus(vertexes=[Vertex(digest, name, started=started)]))
    error = ""
    try:
        return fn(SubLogger(digest, logger))
    except Exception as exc:
        error = str(exc)
        raise
    finally:
        logger(
            SolveStatus(
                vertexes=[Vertex(digest, name, started=started, completed=_now(), error=error)]
            )
        )


def write(writer: Writer, name: str, fn: Callable[[], Any]) -> None:
    """Run ``fn`` as a vertex on ``writer``; a failure is reported, not raised."""
    vertex = Vertex(_new_digest(), name, started=_now())
    writer.write(SolveStatus(vertexes=[vertex]))
    error = ""
    try:
        fn()
    except Exception as exc:
        error = str(exc)
    writer.write(SolveStatus(vertexes=[replace(vertex, completed=_now(), error=error)]))


def from_reader(writer: Writer, name: str, reader: BinaryIO) -> None:
    """Report a vertex that lasts until ``reader`` is drained."""
    vertex = Vertex(_new_digest(), name, started=_now())
    writer.write(SolveStatus(vertexes=[vertex]))
    error = ""
    try:
        while reader.read(_CHUNK):
            pass
    except OSError as exc:
        error = str(exc)
    writer.write(SolveStatus(vertexes=[replace(vertex, completed=_now(), error=error)]))


def add_prefix(prefix: str, name: str) -> str:
    """Put ``prefix`` in the bracketed tag of a vertex name."""
    if name.startswith("["):
        return "[" + prefix + " " + name[1:]
    return "[" + prefix + "] " + name


class _Delegating:
    def __init__(self, writer: Writer) -> None:
        self._writer = writer

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._writer, name)


class PrefixedWriter(_Delegating):
    """Writer that adds a prefix to vertex names when forced."""

    def __init__(self, writer: Writer, prefix: str, force: bool) -> None:
        super().__init__(writer)
        self.prefix = prefix
        self.force = force

    def write(self, status: SolveStatus) -> None:
        """Forward the status, renaming its vertices when forced."""
        if self.force:
            for vertex in status.vertexes:
                vertex.name = add_prefix(self.prefix, vertex.name)
        self._writer.write(status)


def with_prefix(writer: Writer, prefix: str, force: bool) -> PrefixedWriter:
    """Wrap a writer so vertex names carry ``prefix``."""
    return PrefixedWriter(writer, prefix, force)


def _shift(moment: datetime | None, diff: timedelta) -> datetime | None:
    return None if moment is None else moment - diff


class ResetTimeWriter(_Delegating):
    """Writer that shifts all times so the first started vertex begins now."""

    def __init__(self, writer: Writer) -> None:
        super().__init__(writer)
        self._start = _now()
        self._diff: timedelta | None = None

    def write(self, status: SolveStatus) -> None:
        """Forward the status with its times shifted."""
        if self._diff is None:
            for vertex in status.vertexes:
                if vertex.started is not None:
                    self._diff = vertex.started - self._start
        diff = self._diff
        if diff is not None:
            for vertex in status.vertexes:
                vertex.started = _shift(vertex.started, diff)
                vertex.completed = _shift(vertex.completed, diff)
            for st in status.statuses:
                st.started = _shift(st.started, diff)
                st.completed = _shift(st.completed, diff)
                st.timestamp = st.timestamp - diff
            for log in status.logs:
                log.timestamp = log.timestamp - diff
        self._writer.write(status)


def reset_time(writer: Writer) -> ResetTimeWriter:
    """Wrap a writer so reported times start from the moment of wrapping."""
    return ResetTimeWriter(writer)