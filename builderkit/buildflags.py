"""Parsing of build command-line flags: cache, outputs, secrets, SSH, entitlements."""

from __future__ import annotations

import csv
import enum
import io
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Iterable

__all__ = [
    "EXPORTER_IMAGE",
    "EXPORTER_LOCAL",
    "EXPORTER_TAR",
    "EXPORTER_OCI",
    "EXPORTER_DOCKER",
    "Entitlement",
    "CacheOptionsEntry",
    "ExportEntry",
    "SecretSource",
    "SSHAgentConfig",
    "parse_cache_entry",
    "parse_entitlements",
    "parse_outputs",
    "parse_secret",
    "parse_secret_specs",
    "parse_ssh",
    "parse_ssh_specs",
]

EXPORTER_IMAGE = "image"
EXPORTER_LOCAL = "local"
EXPORTER_TAR = "tar"
EXPORTER_OCI = "oci"
EXPORTER_DOCKER = "docker"


class Entitlement(str, enum.Enum):
    """Extra privileges a build may be granted."""

    SECURITY_INSECURE = "security.insecure"
    NETWORK_HOST = "network.host"


@dataclass
class CacheOptionsEntry:
    """A cache import or export source."""

    type: str = ""
    attrs: dict[str, str] = field(default_factory=dict)


@dataclass
class ExportEntry:
    """Where and how a build result is exported."""

    type: str = ""
    attrs: dict[str, str] = field(default_factory=dict)
    output_dir: str = ""
    output: Any = None


@dataclass
class SecretSource:
    """A secret exposed to the build, read from a file or an environment variable."""

    id: str = ""
    file_path: str = ""
    env: str = ""


@dataclass
class SSHAgentConfig:
    """An SSH agent socket or key files forwarded to the build."""

    id: str = ""
    paths: list[str] = field(default_factory=list)


def _csv_fields(value: str) -> list[str]:
    try:
        for row in csv.reader(io.StringIO(value), strict=True):
            if row:
                return row
    except csv.Error as exc:
        raise ValueError(f"invalid csv value {value!r}: {exc}") from exc
    raise ValueError(f"empty value {value!r}")


def _split_pair(item: str) -> tuple[str, str]:
    key, sep, value = item.partition("=")
    if not sep:
        raise ValueError(f"invalid value {item}")
    return key, value


def _add_github_token(entry: CacheOptionsEntry) -> bool:
    if entry.type != "gha":
        return True
    if "token" not in entry.attrs and "ACTIONS_RUNTIME_TOKEN" in os.environ:
        entry.attrs["token"] = os.environ["ACTIONS_RUNTIME_TOKEN"]
    if "url" not in entry.attrs and "ACTIONS_CACHE_URL" in os.environ:
        entry.attrs["url"] = os.environ["ACTIONS_CACHE_URL"]
    return bool(entry.attrs.get("token")) and bool(entry.attrs.get("url"))


def parse_cache_entry(specs: Iterable[str]) -> list[CacheOptionsEntry]:
    """Parse ``--cache-from``/``--cache-to`` values.

    A value made only of references becomes one registry entry per
    reference. GitHub Actions entries without a token and URL are dropped.
    """
    entries: list[CacheOptionsEntry] = []
    for spec in specs:
        fields = _csv_fields(spec)
        if all("=" not in item for item in fields):
            entries.extend(CacheOptionsEntry(type="registry", attrs={"ref": item}) for item in fields)
            continue
        entry = CacheOptionsEntry()
        for item in fields:
            key, value = _split_pair(item)
            key = key.lower()
            if key == "type":
                entry.type = value
            else:
                entry.attrs[key] = value
        if not entry.type:
            raise ValueError(f"type required form> {spec!r}")
        if _add_github_token(entry):
            entries.append(entry)
    return entries


def parse_entitlements(specs: Iterable[str]) -> list[Entitlement]:
    """Parse ``--allow`` values."""
    out: list[Entitlement] = []
    for spec in specs:
        try:
            out.append(Entitlement(spec))
        except ValueError:
            raise ValueError(f"invalid entitlement: {spec}") from None
    return out


def _open_destination(entry: ExportEntry, dest: str) -> None:
    if dest == "-":
        stdout = sys.stdout
        if stdout.isatty():
            raise ValueError(
                f"output file is required for {entry.type} exporter. refusing to write to console"
            )
        entry.output = getattr(stdout, "buffer", stdout)
    elif dest:
        try:
            is_dir = os.path.isdir(dest) if os.path.lexists(dest) else False
            os.stat(dest) if os.path.lexists(dest) else None
        except OSError as exc:
            raise OSError(f"invalid destination file: {dest}: {exc}") from exc
        if is_dir:
            raise ValueError(f"destination file {dest} is a directory")
        try:
            entry.output = open(dest, "wb")
        except OSError as exc:
            raise OSError(f"failed to open {exc}") from exc


def parse_outputs(specs: Iterable[str] | None) -> list[ExportEntry]:
    """Parse ``--output`` values.

    A bare path means a local directory export and ``-`` a tarball on
    standard output. Tar, OCI and Docker exports get an open binary
    ``output`` stream when they have a destination.
    """
    outputs: list[ExportEntry] = []
    for spec in specs or ():
        fields = _csv_fields(spec)
        entry = ExportEntry()
        if len(fields) == 1 and fields[0] == spec and not spec.startswith("type="):
            if spec != "-":
                outputs.append(ExportEntry(type=EXPORTER_LOCAL, output_dir=spec))
                continue
            entry = ExportEntry(type=EXPORTER_TAR, attrs={"dest": spec})

        if not entry.type:
            for item in fields:
                key, value = _split_pair(item)
                key = key.lower().strip()
                if key == "type":
                    entry.type = value
                else:
                    entry.attrs[key] = value
        if not entry.type:
            raise ValueError("type is required for output")

        if entry.type == EXPORTER_LOCAL:
            if "dest" not in entry.attrs:
                raise ValueError("dest is required for local output")
            entry.output_dir = entry.attrs.pop("dest")
        elif entry.type in (EXPORTER_OCI, EXPORTER_DOCKER, EXPORTER_TAR):
            dest = entry.attrs.pop("dest", None)
            if dest is None:
                dest = "" if entry.type == EXPORTER_DOCKER else "-"
            _open_destination(entry, dest)
        elif entry.type == "registry":
            entry.type = EXPORTER_IMAGE
            entry.attrs.setdefault("push", "true")

        outputs.append(entry)
    return outputs


def parse_secret(value: str) -> SecretSource:
    """Parse one ``--secret`` value such as ``id=name,src=path``."""
    try:
        fields = _csv_fields(value)
    except ValueError as exc:
        raise ValueError(f"failed to parse csv secret: {exc}") from exc

    source = SecretSource()
    kind = ""
    for item in fields:
        key, sep, val = item.partition("=")
        key = key.lower()
        if not sep:
            raise ValueError(f"invalid field '{item}' must be a key=value pair")
        if key == "type":
            if val not in ("file", "env"):
                raise ValueError(f"unsupported secret type {val!r}")
            kind = val
        elif key == "id":
            source.id = val
        elif key in ("source", "src"):
            source.file_path = val
        elif key == "env":
            source.env = val
        else:
            raise ValueError(f"unexpected key '{key}' in '{item}'")
    if kind == "env" and not source.env:
        source.env = source.file_path
        source.file_path = ""
    return source


def parse_secret_specs(specs: Iterable[str]) -> list[SecretSource]:
    """Parse every ``--secret`` value."""
    return [parse_secret(spec) for spec in specs]


def parse_ssh(value: str) -> SSHAgentConfig:
    """Parse one ``--ssh`` value such as ``default`` or ``id=path1,path2``."""
    ident, sep, paths = value.partition("=")
    return SSHAgentConfig(id=ident, paths=paths.split(",") if sep else [])


def parse_ssh_specs(specs: Iterable[str]) -> list[SSHAgentConfig]:
    """Parse every ``--ssh`` value."""
    return [parse_ssh(spec) for spec in specs]