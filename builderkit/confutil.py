"""Locating the builder config store and preparing BuildKit config files."""

from __future__ import annotations

import logging
import os
import posixpath
from collections.abc import Mapping

import tomlkit
from tomlkit.exceptions import TOMLKitError

__all__ = [
    "DEFAULT_BUILDKIT_STATE_DIR",
    "DEFAULT_BUILDKIT_CONFIG_DIR",
    "config_dir",
    "load_config_files",
]

DEFAULT_BUILDKIT_STATE_DIR = "/var/lib/buildkit"
DEFAULT_BUILDKIT_CONFIG_DIR = "/etc/buildkit"

_MAX_FILE_SIZE = 1024 * 1024

_log = logging.getLogger(__name__)


def config_dir(docker_config_file: str | os.PathLike) -> str:
    """Return the config store path.

    ``$BUILDX_CONFIG`` wins when set; otherwise a ``buildx`` directory next
    to the given Docker config file.
    """
    env_dir = os.environ.get("BUILDX_CONFIG", "")
    if env_dir:
        _log.debug('using config store %r based in "$BUILDX_CONFIG" environment variable', env_dir)
        return env_dir
    path = os.path.join(os.path.dirname(os.fspath(docker_config_file)), "buildx")
    _log.debug("using default config store %r", path)
    return path


def _load_config_tree(path: str):
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except FileNotFoundError:
        return tomlkit.document()
    except OSError as exc:
        raise OSError(f"failed to load config from {path}: {exc}") from exc
    try:
        return tomlkit.parse(text)
    except TOMLKitError as exc:
        raise ValueError(f"failed to parse config: {exc}") from exc


def _read_file(path: str, label: str) -> bytes:
    try:
        with open(path, "rb") as handle:
            return handle.read(_MAX_FILE_SIZE)
    except OSError as exc:
        raise OSError(f"failed to read {label} file: {path}: {exc}") from exc


def load_config_files(bkconfig: str | os.PathLike) -> dict[str, bytes]:
    """Load a BuildKit config and the registry certificates it refers to.

    Returns file contents keyed by their path relative to the BuildKit
    config directory in the container. Certificate paths in the config are
    rewritten to point at those container locations, and the rewritten
    config is returned under ``buildkitd.toml``.
    """
    path = os.fspath(bkconfig)
    try:
        os.stat(path)
    except FileNotFoundError as exc:
        raise FileNotFoundError(exc.errno, f"buildkit configuration file not found: {path}") from exc
    except OSError as exc:
        raise OSError(f"invalid buildkit configuration file: {path}: {exc}") from exc

    document = _load_config_tree(path)
    files: dict[str, bytes] = {}

    registries = document.get("registry")
    if registries is not None:
        if not isinstance(registries, Mapping):
            raise ValueError("invalid registry configuration: expected a table")
        for reg_name, reg_conf in registries.items():
            if not isinstance(reg_conf, Mapping):
                continue
            prefix = posixpath.join("certs", reg_name)

            cas = reg_conf.get("ca")
            if cas:
                mapped = []
                for ca in cas:
                    ca = str(ca)
                    rel = posixpath.join(prefix, posixpath.basename(ca))
                    mapped.append(posixpath.join(DEFAULT_BUILDKIT_CONFIG_DIR, rel))
                    files[rel] = _read_file(ca, "CA")
                reg_conf["ca"] = mapped

            keypairs = reg_conf.get("keypair")
            if not keypairs:
                continue
            for keypair in keypairs:
                if not isinstance(keypair, Mapping):
                    continue
                for field in ("key", "cert"):
                    source = str(keypair.get(field, ""))
                    if not source:
                        continue
                    rel = posixpath.join(prefix, posixpath.basename(source))
                    keypair[field] = posixpath.join(DEFAULT_BUILDKIT_CONFIG_DIR, rel)
                    files[rel] = _read_file(source, field)

    files["buildkitd.toml"] = tomlkit.dumps(document).encode("utf-8")
    return files