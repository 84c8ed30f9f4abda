"""Builder instances: named groups of nodes that share a driver."""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .confutil import load_config_files
from .platform import Platform, format_platform, parse

__all__ = ["Node", "NodeGroup", "validate_name"]

_NAME_PATTERN = re.compile(r"[a-zA-Z][a-zA-Z0-9.\-_]*")


def validate_name(name: str) -> str:
    """Check a builder or node name and return it lower-cased."""
    if not _NAME_PATTERN.fullmatch(name):
        raise ValueError(
            f"invalid name {name}, name needs to start with a letter "
            "and may not contain symbols, except ._-"
        )
    return name.lower()


def _platform_to_dict(platform: Platform) -> dict[str, Any]:
    data: dict[str, Any] = {"architecture": platform.architecture, "os": platform.os}
    if platform.os_version:
        data["os.version"] = platform.os_version
    if platform.os_features:
        data["os.features"] = list(platform.os_features)
    if platform.variant:
        data["variant"] = platform.variant
    return data


def _platform_from_dict(data: Mapping[str, Any]) -> Platform:
    return Platform(
        os=data.get("os") or "",
        architecture=data.get("architecture") or "",
        variant=data.get("variant") or "",
        os_version=data.get("os.version") or "",
        os_features=tuple(data.get("os.features") or ()),
    )


@dataclass
class Node:
    """One BuildKit endpoint of a builder instance."""

    name: str = ""
    endpoint: str = ""
    platforms: list[Platform] = field(default_factory=list)
    flags: list[str] | None = None
    driver_opts: dict[str, str] | None = None
    files: dict[str, bytes] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the node as JSON-ready data."""
        return {
            "Name": self.name,
            "Endpoint": self.endpoint,
            "Platforms": [_platform_to_dict(p) for p in self.platforms] if self.platforms else None,
            "Flags": list(self.flags) if self.flags is not None else None,
            "DriverOpts": dict(self.driver_opts) if self.driver_opts is not None else None,
            "Files": (
                {path: base64.b64encode(data).decode("ascii") for path, data in self.files.items()}
                if self.files is not None
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        """Build a node from data written by :meth:`to_dict`."""
        files = data.get("Files")
        flags = data.get("Flags")
        driver_opts = data.get("DriverOpts")
        return cls(
            name=data.get("Name") or "",
            endpoint=data.get("Endpoint") or "",
            platforms=[_platform_from_dict(p) for p in data.get("Platforms") or ()],
            flags=list(flags) if flags is not None else None,
            driver_opts=dict(driver_opts) if driver_opts is not None else None,
            files=(
                {path: base64.b64decode(value) for path, value in files.items()}
                if files is not None
                else None
            ),
        )


def _filter_platforms(platforms: Iterable[Platform], excluded: set[str]) -> list[Platform]:
    return [p for p in platforms if format_platform(p) not in excluded]


@dataclass
class NodeGroup:
    """A named builder instance and its nodes."""

    name: str = ""
    driver: str = ""
    nodes: list[Node] = field(default_factory=list)
    dynamic: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the group as JSON-ready data."""
        return {
            "Name": self.name,
            "Driver": self.driver,
            "Nodes": [node.to_dict() for node in self.nodes] if self.nodes else None,
            "Dynamic": self.dynamic,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodeGroup":
        """Build a group from data written by :meth:`to_dict`."""
        return cls(
            name=data.get("Name") or "",
            driver=data.get("Driver") or "",
            nodes=[Node.from_dict(n) for n in data.get("Nodes") or ()],
            dynamic=bool(data.get("Dynamic", False)),
        )

    def leave(self, name: str) -> None:
        """Remove a node; the last node of a group cannot leave."""
        if self.dynamic:
            raise ValueError("dynamic node group does not support Leave")
        index = self._find_node(name)
        if index is None:
            raise ValueError(f"node {name!r} not found for {self.name}")
        if len(self.nodes) == 1:
            raise ValueError("can not leave last node, do you want to rm instance instead?")
        del self.nodes[index]

    def update(
        self,
        name: str,
        endpoint: str,
        platforms: list[str] | None,
        endpoints_set: bool,
        action_append: bool,
        flags: list[str] | None = None,
        config_file: str = "",
        driver_opts: dict[str, str] | None = None,
    ) -> None:
        """Change an existing node or add a new one.

        Platforms claimed by the changed node are taken away from every
        other node of the group.
        """
        if self.dynamic:
            raise ValueError("dynamic node group does not support Update")
        index = self._find_node(name)
        if index is None and not action_append:
            if self.nodes:
                raise ValueError(f"node {name} not found, did you mean to append?")
            self.nodes = []

        parsed = parse(platforms)

        if index is not None:
            node = self.nodes[index]
            if endpoints_set:
                node.endpoint = endpoint
            if platforms:
                node.platforms = parsed
            if flags is not None:
                node.flags = flags
            self._validate_duplicates(endpoint, index)
            return

        if not name:
            name = self._next_node_name()
        name = validate_name(name)

        node = Node(
            name=name,
            endpoint=endpoint,
            platforms=parsed,
            flags=flags,
            driver_opts=driver_opts,
        )
        if config_file:
            node.files = load_config_files(config_file)

        self.nodes.append(node)
        self._validate_duplicates(endpoint, len(self.nodes) - 1)

    def _validate_duplicates(self, endpoint: str, index: int) -> None:
        if sum(1 for node in self.nodes if node.endpoint == endpoint) > 1:
            raise ValueError(f"invalid duplicate endpoint {endpoint}")
        claimed = {format_platform(p) for p in self.nodes[index].platforms}
        for position, node in enumerate(self.nodes):
            if position != index:
                node.platforms = _filter_platforms(node.platforms, claimed)

    def _find_node(self, name: str) -> int | None:
        return next((i for i, node in enumerate(self.nodes) if node.name == name), None)

    def _next_node_name(self) -> str:
        counter = 0
        while self._find_node(f"{self.name}{counter}") is not None:
            counter += 1
        return f"{self.name}{counter}"