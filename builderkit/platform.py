"""Platform specifiers such as ``linux/amd64`` or ``linux/arm/v7``."""

from __future__ import annotations

import platform as _host
import re
import sys
from dataclasses import dataclass, replace
from typing import Iterable, Sequence

__all__ = [
    "Platform",
    "default_spec",
    "normalize",
    "format_platform",
    "parse_platform",
    "parse",
    "dedupe",
    "format_in_groups",
    "format_platforms",
]

_SPECIFIER_COMPONENT = re.compile(r"^[A-Za-z0-9_-]+$")

_KNOWN_OS = frozenset(
    {
        "aix", "android", "darwin", "dragonfly", "freebsd", "hurd", "illumos",
        "ios", "js", "linux", "nacl", "netbsd", "openbsd", "plan9", "solaris",
        "windows", "zos",
    }
)

_KNOWN_ARCH = frozenset(
    {
        "386", "amd64", "amd64p32", "arm", "armbe", "arm64", "arm64be",
        "ppc64", "ppc64le", "loong64", "mips", "mipsle", "mips64", "mips64le",
        "mips64p32", "mips64p32le", "ppc", "riscv", "riscv64", "s390", "s390x",
        "sparc", "sparc64", "wasm",
    }
)


@dataclass(frozen=True)
class Platform:
    """An operating system, CPU architecture and optional variant."""

    os: str = ""
    architecture: str = ""
    variant: str = ""
    os_version: str = ""
    os_features: tuple[str, ...] = ()

    def __str__(self) -> str:
        return format_platform(self)


def _normalize_os(os_name: str) -> str:
    if not os_name:
        return os_name
    os_name = os_name.lower()
    if os_name == "macos":
        return "darwin"
    return os_name


def _normalize_arch(arch: str, variant: str) -> tuple[str, str]:
    arch = arch.lower()
    variant = variant.lower()
    if arch == "i386":
        return "386", ""
    if arch in ("x86_64", "x86-64", "amd64"):
        return "amd64", "" if variant == "v1" else variant
    if arch in ("aarch64", "arm64"):
        return "arm64", "" if variant in ("8", "v8") else variant
    if arch == "armhf":
        return "arm", "v7"
    if arch == "armel":
        return "arm", "v6"
    if arch == "arm":
        if variant in ("", "7"):
            return "arm", "v7"
        if variant in ("5", "6", "8"):
            return "arm", "v" + variant
    return arch, variant


def _host_os() -> str:
    name = sys.platform
    if name.startswith("linux"):
        return "linux"
    if name.startswith(("win32", "cygwin", "msys")):
        return "windows"
    return re.sub(r"\d+$", "", name)


def _host_arch() -> tuple[str, str]:
    machine = (_host.machine() or "amd64").lower()
    match = re.match(r"^armv(\d+)", machine)
    if match:
        return _normalize_arch("arm", match.group(1))
    return _normalize_arch(machine, "")


def default_spec() -> Platform:
    """Return the platform of the running host."""
    arch, variant = _host_arch()
    return Platform(os=_host_os(), architecture=arch, variant=variant)


def normalize(platform: Platform) -> Platform:
    """Return the platform with its OS, architecture and variant normalized."""
    arch, variant = _normalize_arch(platform.architecture, platform.variant)
    return replace(platform, os=_normalize_os(platform.os), architecture=arch, variant=variant)


def format_platform(platform: Platform) -> str:
    """Format a platform as ``os/arch[/variant]``."""
    if not platform.os:
        return "unknown"
    return "/".join(part for part in (platform.os, platform.architecture, platform.variant) if part)


def parse_platform(spec: str) -> Platform:
    """Parse one platform specifier; ``local`` means the host platform."""
    if spec.lower() == "local":
        return default_spec()
    if "*" in spec:
        raise ValueError(f"{spec!r}: wildcards not yet supported")

    parts = spec.split("/")
    for part in parts:
        if not _SPECIFIER_COMPONENT.match(part):
            raise ValueError(
                f"{part!r}: is an invalid component of {spec!r}: "
                f"platform specifier component must match {_SPECIFIER_COMPONENT.pattern!r}"
            )

    if len(parts) == 1:
        os_name = _normalize_os(parts[0])
        if os_name in _KNOWN_OS:
            host = default_spec()
            return Platform(os=os_name, architecture=host.architecture, variant=host.variant)
        arch, variant = _normalize_arch(parts[0], "")
        if arch in _KNOWN_ARCH:
            host = default_spec()
            if arch == host.architecture and not variant:
                variant = host.variant
            return Platform(os=host.os, architecture=arch, variant=variant)
        raise ValueError(f"{spec!r}: unknown operating system or architecture")

    if len(parts) == 2:
        arch, variant = _normalize_arch(parts[1], "")
        return Platform(os=_normalize_os(parts[0]), architecture=arch, variant=variant)

    if len(parts) == 3:
        arch, variant = _normalize_arch(parts[1], parts[2])
        if arch == "arm64" and not variant:
            variant = "v8"
        return Platform(os=_normalize_os(parts[0]), architecture=arch, variant=variant)

    raise ValueError(f"{spec!r}: cannot parse platform specifier")


def parse(specs: Iterable[str] | None) -> list[Platform]:
    """Parse platform specifiers; each may hold several separated by commas."""
    out: list[Platform] = []
    for spec in specs or ():
        parts = spec.split(",")
        if len(parts) > 1:
            out.extend(parse(parts))
            continue
        out.append(normalize(parse_platform(spec)))
    return out


def dedupe(platforms: Iterable[Platform]) -> list[Platform]:
    """Normalize platforms and drop repeats, keeping the first of each."""
    seen: set[str] = set()
    out: list[Platform] = []
    for platform in platforms:
        platform = normalize(platform)
        key = format_platform(platform)
        if key in seen:
            continue
        seen.add(key)
        out.append(platform)
    return out


def format_in_groups(*args: Sequence[Platform]) -> list[str]:
    """Format groups of platforms once each; those of the first group get a ``*``."""
    seen: set[str] = set()
    out: list[str] = []
    for index, group in enumerate(args):
        for platform in group:
            key = format_platform(normalize(platform))
            if key in seen:
                continue
            seen.add(key)
            out.append(key + "*" if index == 0 else key)
    return out


def format_platforms(platforms: Iterable[Platform] | None) -> list[str]:
    """Format each platform of a list."""
    return [format_platform(platform) for platform in platforms or ()]