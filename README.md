# gpu-device-plugin

Node-side tooling for running shared GPUs in a Kubernetes cluster. It covers
three jobs:

- **Config switching**: watch a node label and point a device configuration
  symlink at the file it names, then signal the process that reads it.
- **MPS control daemons**: start and stop `nvidia-cuda-mps-control` for a
  resource, set per-device pinned memory limits and the active thread
  percentage, and tail the daemon's `control.log`.
- **Shared memory**: mount a tmpfs sized to half of the node's memory for the
  MPS daemon to use.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Commands

### `gpu-config-manager`

Watches the node named by `--node-name` through the Kubernetes API and, when
the label given by `--node-label` (default `nvidia.com/device-plugin.config`)
changes, links `--config-file-dst` to the file of that name in
`--config-file-srcdir`. Directories and entries whose names start with `..`
in the source directory are not treated as configs.

```
gpu-config-manager \
    --node-name my-node \
    --config-file-srcdir /available-configs \
    --config-file-dst /config/config.yaml
```

When the label is empty, `--default-config` is used. Without a default, the
`--fallback-strategies` are tried in order (the option may be repeated or
given a comma-separated list):

| strategy | effect |
|----------|--------|
| `named`  | use the config called `default` if present |
| `single` | use the only config if exactly one exists |
| `empty`  | link the destination to `/dev/null` |

An unknown strategy, a missing config, or every fallback failing is an
error. If the destination already resolves to the chosen file, nothing is
changed. After a change, the first process whose `argv[0]` equals
`--process-to-signal` (default `nvidia-device-plugin`) is sent the signal
number `--signal` (default SIGHUP), unless `--send-signal false` is given.
`--oneshot` stops after the first label value has been applied.

The cluster is reached through `--kubeconfig`; without it the in-cluster
service account is used when `KUBERNETES_SERVICE_HOST` is set, otherwise
`~/.kube/config`. Each option may also come from its environment variable:
`ONESHOT`, `KUBECONFIG`, `NODE_NAME`, `NODE_LABEL`, `CONFIG_FILE_SRCDIR`,
`CONFIG_FILE_DST`, `DEFAULT_CONFIG`, `FALLBACK_STRATEGIES`, `SEND_SIGNAL`,
`SIGNAL`, `PROCESS_TO_SIGNAL`.

The command exits with status 1 and logs the reason if `--node-name`,
`--node-label`, `--config-file-srcdir` or `--config-file-dst` is empty, or if
an update fails.

### `gpu-mps-mount-shm`

Unmounts anything mounted at `/mps/shm`, removes and recreates the directory,
and mounts a tmpfs there with `rw,nosuid,nodev,noexec,relatime` and a size of
half of `MemTotal` from `/proc/meminfo` (falling back to `65536k`). It needs
the `mount` executable and the privileges to mount.

```
gpu-mps-mount-shm
```

## Library use

```python
from gpu_device_plugin.mps_device import MpsDevice
from gpu_device_plugin.mps_root import Root

device = MpsDevice(compute_capability="8.0", replicas=10)
device.max_clients()        # 48 for compute capability 7.5 and newer, 16 before
device.assert_replicas()    # raises InvalidDeviceError when over the limit

root = Root("/mps")
root.pipe_dir("nvidia.com/gpu")   # /mps/nvidia.com/gpu/pipe
```

- `gpu_device_plugin.mps_daemon.Daemon` drives one MPS control daemon. It is
  given a resource manager: any object with a `resource` name and a
  `devices` sequence of `MpsDevice`. `start()` sets the devices to
  `EXCLUSIVE_PROCESS` compute mode with `nvidia-smi`, creates the pipe and
  log directories, starts the daemon and applies limits; `stop()` quits it,
  restores `DEFAULT` compute mode and removes its files.
- `gpu_device_plugin.tailer.Tailer` follows a file with `tail -f`.
- `gpu_device_plugin.config_manager.SyncableConfig` is a value whose `get()`
  blocks until a new `set()`.
- `gpu_device_plugin.node_watch.KubeClient` and `NodeLabelSync` list and
  watch a single node and forward label changes.
- `gpu_device_plugin.driver_root.DriverRoot` locates the dev root and
  libraries below a containerised driver root.
- `gpu_device_plugin.cuda_result.Result` names CUDA driver result codes;
  `describe_result()` also handles unknown codes.

## What this package does not do

- It does not run a device plugin server for the kubelet, nor generate node
  feature labels for GPUs.
- It does not discover GPUs or talk to the CUDA or NVML libraries. `Daemon`
  works only from the devices it is handed, and `cuda_result` only names
  result codes.
- There is no command that starts MPS daemons; `Daemon` is a library class.