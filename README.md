# builderkit

Building blocks for tools that manage container image builders: an on-disk
store of builder instances, platform strings, build flag parsing, progress
events, a driver registry and Kubernetes deployment manifests.

## Install

```
pip install builderkit
```

## Modules

- `builderkit.store` — `Store(root)` creates `instances/` and `defaults/`
  under `root`. `Store.txn()` is a context manager that holds a file lock on
  `root/.lock` and yields a `Txn` with `list()`, `node_group_by_name(name)`,
  `save(group)`, `remove(name)`, `set_current(key, name, global_, default)`
  and `current(key)`. Builders are stored as JSON; `node_group_by_name`
  raises `FileNotFoundError` for an unknown builder and `ValueError` for an
  invalid name.
- `builderkit.nodegroup` — `NodeGroup` and `Node` dataclasses with
  `to_dict()`/`from_dict()`. `NodeGroup.update(...)` changes or appends a
  node (platforms claimed by it are removed from the other nodes, duplicate
  endpoints raise `ValueError`); `NodeGroup.leave(name)` removes a node but
  never the last one. `validate_name(name)` checks a name and lower-cases it.
- `builderkit.platform` — the frozen `Platform` dataclass; `parse`,
  `parse_platform`, `normalize`, `dedupe`, `format_platform`,
  `format_platforms`, `format_in_groups` and `default_spec` (the host).
  `"local"` parses to the host platform; comma-separated values are split.
- `builderkit.buildflags` — `parse_cache_entry`, `parse_outputs`,
  `parse_secret`/`parse_secret_specs`, `parse_ssh`/`parse_ssh_specs` and
  `parse_entitlements`, returning `CacheOptionsEntry`, `ExportEntry`,
  `SecretSource`, `SSHAgentConfig` and `Entitlement` values. `gha` cache
  entries take `ACTIONS_RUNTIME_TOKEN` and `ACTIONS_CACHE_URL` from the
  environment and are dropped without both. Tar, OCI and Docker outputs
  with a destination get an open binary stream in `ExportEntry.output`;
  `-` means standard output and is refused when it is a terminal.
- `builderkit.progress` — `Vertex`, `VertexStatus`, `VertexLog`,
  `SolveStatus`; `wrap(name, logger, fn)` with a `SubLogger`,
  `write(writer, name, fn)`, `from_reader(writer, name, reader)`,
  `with_prefix` / `PrefixedWriter`, `reset_time` / `ResetTimeWriter` and
  `add_prefix`.
- `builderkit.driver` — `Status`, `Feature`, `Info`, `InitConfig`, the
  abstract `Driver` and `Factory`, `CachedDriver` (creates its client once),
  `DriverRegistry` (lowest `priority()` wins as the default) and
  `boot(driver, logger)`, which bootstraps at most twice. `DriverNotRunning`
  and `DriverNotConnecting` are the driver errors; `DEFAULT_IMAGE`,
  `DEFAULT_ROOTLESS_IMAGE` and `QEMU_IMAGE` name the images.
- `builderkit.manifest` — `parse_driver_opts(...)` turns Kubernetes driver
  options into a `DeploymentOpt` and a load-balancing mode;
  `new_deployment(opt)` returns a Deployment and its ConfigMaps as plain
  dicts; `split_config_files` and `deployment_name` are the helpers.
- `builderkit.waitmap` — `WaitMap.set(key, value)` and
  `WaitMap.get(*keys, timeout=None)`, which waits until every key is set
  and raises `TimeoutError` when the timeout runs out.
- `builderkit.confutil` — `config_dir(docker_config_file)` (honours
  `$BUILDX_CONFIG`) and `load_config_files(path)`, which reads a BuildKit
  TOML config with the registry CA and key-pair files it names and rewrites
  their paths under `/etc/buildkit/certs/<registry>/`.
- `builderkit.logutil` — `LevelFormatter` (`LEVEL: message`),
  `MessageFilter(levels, *filters)` and `pause(logger)`, which buffers the
  logger's stream handlers and returns a function that flushes and resumes.

## Examples

```python
from builderkit.store import Store
from builderkit.nodegroup import NodeGroup

store = Store("/tmp/builders")
with store.txn() as txn:
    group = NodeGroup(name="mybuild", driver="docker-container")
    group.update("node0", "unix:///var/run/docker.sock", ["linux/amd64,linux/arm64"],
                 True, True, None, "", None)
    txn.save(group)
    txn.set_current("default", "mybuild", False, True)
    print(txn.current("default").name)
# mybuild
```

```python
from builderkit.platform import parse, format_platforms

print(format_platforms(parse(["linux/arm64", "linux/arm"])))
# ['linux/arm64', 'linux/arm/v7']
```

```python
from builderkit.manifest import parse_driver_opts, new_deployment

opt, loadbalance = parse_driver_opts("buildx_buildkit_mybuilder0", None, None, None,
                                     {"replicas": "2"})
deployment, config_maps = new_deployment(opt)
print(deployment["metadata"]["name"], deployment["spec"]["replicas"], loadbalance)
# mybuilder0 2 sticky
```

## What it does not do

- There is no command-line program; everything is a library call.
- No concrete drivers are included: `Driver` and `Factory` are abstract,
  and nothing here talks to a Docker engine, a Kubernetes API server or a
  BuildKit daemon. `new_deployment` only builds manifest dicts.
- Secret and SSH parsing produce `SecretSource` and `SSHAgentConfig`
  values; nothing reads the secrets or forwards an agent.
- Progress events are plain data; there is no terminal display of them.
- There is no registry client or image inspection.

## Tests

```
pip install -e .[test]
pytest
```