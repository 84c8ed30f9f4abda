"""Kubernetes manifests for running BuildKit as a deployment."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .driver import DEFAULT_IMAGE, DEFAULT_ROOTLESS_IMAGE, QEMU_IMAGE
from .platform import Platform, format_platforms

__all__ = [
    "DRIVER_NAME",
    "ANNOTATION_PLATFORM",
    "LOADBALANCE_RANDOM",
    "LOADBALANCE_STICKY",
    "QemuOpt",
    "DeploymentOpt",
    "ConfigGroup",
    "split_config_files",
    "new_deployment",
    "deployment_name",
    "parse_driver_opts",
]

DRIVER_NAME = "kubernetes"
ANNOTATION_PLATFORM = "buildx.docker.com/platform"

LOADBALANCE_RANDOM = "random"
LOADBALANCE_STICKY = "sticky"

_CONTAINER_NAME = "buildkitd"
_NAME_PREFIX = "buildx_buildkit_"

_QUANTITY = re.compile(
    r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[KMGTPE]i|[numkMGTPE]|[eE][+-]?\d+)?"
)

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


@dataclass
class QemuOpt:
    """Whether and with which image to install emulators on the nodes."""

    install: bool = False
    image: str = QEMU_IMAGE


@dataclass
class DeploymentOpt:
    """Settings of a BuildKit deployment."""

    name: str = ""
    namespace: str = ""
    image: str = DEFAULT_IMAGE
    replicas: int = 1
    qemu: QemuOpt = field(default_factory=QemuOpt)
    buildkit_flags: list[str] | None = None
    config_files: dict[str, bytes] | None = None
    rootless: bool = False
    node_selector: dict[str, str] = field(default_factory=dict)
    requests_cpu: str = ""
    requests_memory: str = ""
    limits_cpu: str = ""
    limits_memory: str = ""
    platforms: list[Platform] = field(default_factory=list)


@dataclass
class ConfigGroup:
    """Config files sharing one directory, mounted from one ConfigMap."""

    name: str
    path: str
    files: dict[str, str] = field(default_factory=dict)


def _parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean value {value!r}")


def _parse_quantity(value: str) -> str:
    if not _QUANTITY.fullmatch(value):
        raise ValueError(f"quantities must match the regular expression: {value!r}")
    return value


def split_config_files(files: Mapping[str, bytes] | None) -> list[ConfigGroup]:
    """Group config files by directory; the top directory's group is ``config``."""
    groups: list[ConfigGroup] = []
    by_dir: dict[str, ConfigGroup] = {}
    counter = 0
    for path, data in (files or {}).items():
        directory = posixpath.dirname(path) or "."
        group = by_dir.get(directory)
        if group is None:
            name = "config"
            if directory != ".":
                counter += 1
                name = f"config-{counter}"
            group = ConfigGroup(name=name, path=directory)
            by_dir[directory] = group
            groups.append(group)
        group.files[posixpath.basename(path)] = data.decode("utf-8", errors="surrogateescape")
    return groups


def _metadata(name: str, namespace: str, **extra: Any) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    if namespace:
        meta["namespace"] = namespace
    meta["name"] = name
    meta.update(extra)
    return meta


def _to_rootless(deployment: dict[str, Any]) -> None:
    template = deployment["spec"]["template"]
    container = template["spec"]["containers"][0]
    container["args"] = [*container.get("args", []), "--oci-worker-no-process-sandbox"]
    container.pop("securityContext", None)
    annotations = template["metadata"].setdefault("annotations", {})
    annotations[f"container.apparmor.security.beta.kubernetes.io/{_CONTAINER_NAME}"] = "unconfined"
    annotations[f"container.seccomp.security.alpha.kubernetes.io/{_CONTAINER_NAME}"] = "unconfined"


def new_deployment(opt: DeploymentOpt) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Build the Deployment manifest and the ConfigMaps holding its config files."""
    labels = {"app": opt.name}
    # One annotation map is shared by the deployment, its pod template and
    # its config maps, so later additions show up on all of them.
    annotations: dict[str, str] = {}
    if opt.platforms:
        annotations[ANNOTATION_PLATFORM] = ",".join(format_platforms(opt.platforms))

    container: dict[str, Any] = {"name": _CONTAINER_NAME, "image": opt.image}
    if opt.buildkit_flags:
        container["args"] = list(opt.buildkit_flags)
    container["securityContext"] = {"privileged": True}
    container["readinessProbe"] = {"exec": {"command": ["buildctl", "debug", "workers"]}}
    container["resources"] = {"requests": {}, "limits": {}}

    pod_spec: dict[str, Any] = {"containers": [container]}
    deployment: dict[str, Any] = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(opt.name, opt.namespace, labels=labels, annotations=annotations),
        "spec": {
            "replicas": opt.replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels, "annotations": annotations},
                "spec": pod_spec,
            },
        },
    }

    config_maps: list[dict[str, Any]] = []
    for group in split_config_files(opt.config_files):
        config_map = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": _metadata(
                f"{opt.name}-{group.name}", opt.namespace, annotations=annotations
            ),
            "data": group.files,
        }
        container["volumeMounts"] = [
            {"name": group.name, "mountPath": posixpath.join("/etc/buildkit", group.path)}
        ]
        pod_spec["volumes"] = [
            {"name": "config", "configMap": {"name": config_map["metadata"]["name"]}}
        ]
        config_maps.append(config_map)

    if opt.qemu.install:
        pod_spec["initContainers"] = [
            {
                "name": "qemu",
                "image": opt.qemu.image,
                "args": ["--install", "all"],
                "securityContext": {"privileged": True},
            }
        ]

    if opt.rootless:
        _to_rootless(deployment)

    if opt.node_selector:
        pod_spec["nodeSelector"] = dict(opt.node_selector)

    resources = container["resources"]
    if opt.requests_cpu:
        resources["requests"]["cpu"] = _parse_quantity(opt.requests_cpu)
    if opt.requests_memory:
        resources["requests"]["memory"] = _parse_quantity(opt.requests_memory)
    if opt.limits_cpu:
        resources["limits"]["cpu"] = _parse_quantity(opt.limits_cpu)
    if opt.limits_memory:
        resources["limits"]["memory"] = _parse_quantity(opt.limits_memory)

    return deployment, config_maps


def deployment_name(buildx_name: str) -> str:
    """Turn ``buildx_buildkit_loving_mendeleev0`` into ``loving-mendeleev0``."""
    if not buildx_name.startswith(_NAME_PREFIX):
        raise ValueError(f'expected a string with "{_NAME_PREFIX}", got {buildx_name!r}')
    return buildx_name[len(_NAME_PREFIX):].replace("_", "-")


def parse_driver_opts(
    name: str,
    flags: list[str] | None,
    files: Mapping[str, bytes] | None,
    platforms: Sequence[Platform] | None,
    driver_opts: Mapping[str, str] | None,
) -> tuple[DeploymentOpt, str]:
    """Build deployment settings from driver options.

    Returns the settings and the load-balancing mode for choosing pods.
    """
    opt = DeploymentOpt(
        name=deployment_name(name),
        buildkit_flags=list(flags) if flags is not None else None,
        config_files=dict(files) if files is not None else None,
        platforms=list(platforms or ()),
    )
    loadbalance = LOADBALANCE_STICKY

    for key, value in (driver_opts or {}).items():
        if key == "image":
            if value:
                opt.image = value
        elif key == "namespace":
            opt.namespace = value
        elif key == "replicas":
            try:
                opt.replicas = int(value)
            except ValueError:
                raise ValueError(f"invalid replicas {value!r}") from None
        elif key == "requests.cpu":
            opt.requests_cpu = value
        elif key == "requests.memory":
            opt.requests_memory = value
        elif key == "limits.cpu":
            opt.limits_cpu = value
        elif key == "limits.memory":
            opt.limits_memory = value
        elif key == "rootless":
            opt.rootless = _parse_bool(value)
            opt.image = DEFAULT_ROOTLESS_IMAGE
        elif key == "nodeselector":
            selector: dict[str, str] = {}
            for pair in value.strip('"').split(","):
                parts = pair.split("=")
                if len(parts) == 2:
                    selector[parts[0]] = parts[1]
            opt.node_selector = selector
        elif key == "loadbalance":
            if value not in (LOADBALANCE_STICKY, LOADBALANCE_RANDOM):
                raise ValueError(f"invalid loadbalance {value!r}")
            loadbalance = value
        elif key == "qemu.install":
            opt.qemu.install = _parse_bool(value)
        elif key == "qemu.image":
            if value:
                opt.qemu.image = value
        else:
            raise ValueError(f"invalid driver option {key} for driver {DRIVER_NAME}")

    return opt, loadbalance