import pytest

from builderkit.driver import DEFAULT_IMAGE, DEFAULT_ROOTLESS_IMAGE, QEMU_IMAGE
from builderkit.manifest import (
    ANNOTATION_PLATFORM,
    LOADBALANCE_RANDOM,
    LOADBALANCE_STICKY,
    DeploymentOpt,
    QemuOpt,
    deployment_name,
    new_deployment,
    parse_driver_opts,
    split_config_files,
)
from builderkit.platform import Platform


def _container(deployment):
    return deployment["spec"]["template"]["spec"]["containers"][0]


def test_deployment_name_example():
    assert deployment_name("buildx_buildkit_loving_mendeleev0") == "loving-mendeleev0"


def test_deployment_name_requires_prefix():
    with pytest.raises(ValueError, match="buildx_buildkit_"):
        deployment_name("loving_mendeleev0")


def test_split_config_files_groups_by_directory():
    groups = split_config_files(
        {"buildkitd.toml": b"debug = true", "certs/reg/ca.pem": b"ca", "certs/reg/key.pem": b"k"}
    )
    by_path = {g.path: g for g in groups}
    assert by_path["."].name == "config"
    assert by_path["."].files == {"buildkitd.toml": "debug = true"}
    assert by_path["certs/reg"].name == "config-1"
    assert by_path["certs/reg"].files == {"ca.pem": "ca", "key.pem": "k"}


def test_split_config_files_empty():
    assert split_config_files(None) == []


def test_new_deployment_basic():
    opt = DeploymentOpt(name="builder0", namespace="ns", image="img", replicas=3)
    deployment, config_maps = new_deployment(opt)
    assert deployment["kind"] == "Deployment"
    assert deployment["metadata"]["name"] == "builder0"
    assert deployment["metadata"]["namespace"] == "ns"
    assert deployment["spec"]["replicas"] == 3
    assert deployment["spec"]["selector"]["matchLabels"] == {"app": "builder0"}
    container = _container(deployment)
    assert container["name"] == "buildkitd"
    assert container["image"] == "img"
    assert container["securityContext"] == {"privileged": True}
    assert container["readinessProbe"]["exec"]["command"] == ["buildctl", "debug", "workers"]
    assert config_maps == []


def test_new_deployment_platform_annotation():
    opt = DeploymentOpt(
        name="b",
        platforms=[Platform(os="linux", architecture="amd64"), Platform(os="linux", architecture="arm64")],
    )
    deployment, _ = new_deployment(opt)
    assert deployment["metadata"]["annotations"][ANNOTATION_PLATFORM] == "linux/amd64,linux/arm64"


def test_new_deployment_config_maps():
    opt = DeploymentOpt(name="b", config_files={"buildkitd.toml": b"x"})
    deployment, config_maps = new_deployment(opt)
    assert len(config_maps) == 1
    assert config_maps[0]["metadata"]["name"] == "b-config"
    assert config_maps[0]["data"] == {"buildkitd.toml": "x"}
    assert _container(deployment)["volumeMounts"] == [{"name": "config", "mountPath": "/etc/buildkit"}]
    volumes = deployment["spec"]["template"]["spec"]["volumes"]
    assert volumes[0]["configMap"]["name"] == "b-config"


def test_new_deployment_qemu_and_rootless():
    opt = DeploymentOpt(
        name="b", buildkit_flags=["--debug"], rootless=True, qemu=QemuOpt(install=True)
    )
    deployment, _ = new_deployment(opt)
    spec = deployment["spec"]["template"]["spec"]
    assert spec["initContainers"][0]["image"] == QEMU_IMAGE
    assert spec["initContainers"][0]["args"] == ["--install", "all"]
    container = _container(deployment)
    assert container["args"] == ["--debug", "--oci-worker-no-process-sandbox"]
    assert "securityContext" not in container
    annotations = deployment["spec"]["template"]["metadata"]["annotations"]
    assert annotations["container.apparmor.security.beta.kubernetes.io/buildkitd"] == "unconfined"
    assert opt.buildkit_flags == ["--debug"]


def test_new_deployment_resources_and_selector():
    opt = DeploymentOpt(
        name="b", requests_cpu="500m", limits_memory="2Gi", node_selector={"a": "b"}
    )
    deployment, _ = new_deployment(opt)
    resources = _container(deployment)["resources"]
    assert resources == {"requests": {"cpu": "500m"}, "limits": {"memory": "2Gi"}}
    assert deployment["spec"]["template"]["spec"]["nodeSelector"] == {"a": "b"}


def test_new_deployment_invalid_quantity():
    with pytest.raises(ValueError):
        new_deployment(DeploymentOpt(name="b", limits_cpu="lots"))


def test_parse_driver_opts_defaults():
    opt, loadbalance = parse_driver_opts("buildx_buildkit_my_builder0", None, None, None, None)
    assert opt.name == "my-builder0"
    assert opt.image == DEFAULT_IMAGE
    assert opt.replicas == 1
    assert opt.qemu.image == QEMU_IMAGE
    assert opt.qemu.install is False
    assert loadbalance == LOADBALANCE_STICKY


def test_parse_driver_opts_values():
    opt, loadbalance = parse_driver_opts(
        "buildx_buildkit_b0",
        ["--debug"],
        None,
        None,
        {
            "namespace": "ns",
            "replicas": "4",
            "nodeselector": '"a=b,c=d,bad"',
            "loadbalance": "random",
            "qemu.install": "true",
            "qemu.image": "emu",
            "requests.memory": "1Gi",
        },
    )
    assert opt.namespace == "ns"
    assert opt.replicas == 4
    assert opt.node_selector == {"a": "b", "c": "d"}
    assert loadbalance == LOADBALANCE_RANDOM
    assert opt.qemu.install is True
    assert opt.qemu.image == "emu"
    assert opt.requests_memory == "1Gi"
    assert opt.buildkit_flags == ["--debug"]


def test_parse_driver_opts_rootless_image():
    opt, _ = parse_driver_opts("buildx_buildkit_b0", None, None, None, {"rootless": "true"})
    assert opt.rootless is True
    assert opt.image == DEFAULT_ROOTLESS_IMAGE


@pytest.mark.parametrize(
    "opts",
    [
        {"loadbalance": "roundrobin"},
        {"unknown": "x"},
        {"replicas": "two"},
        {"rootless": "maybe"},
        {"qemu.install": "yes"},
    ],
)
def test_parse_driver_opts_errors(opts):
    with pytest.raises(ValueError):
        parse_driver_opts("buildx_buildkit_b0", None, None, None, opts)


def test_parse_driver_opts_feeds_new_deployment():
    opt, _ = parse_driver_opts(
        "buildx_buildkit_b0", None, {"buildkitd.toml": b"x"}, None, {"image": "custom"}
    )
    deployment, config_maps = new_deployment(opt)
    assert _container(deployment)["image"] == "custom"
    assert config_maps[0]["metadata"]["name"] == "b0-config"