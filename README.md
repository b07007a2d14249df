# dingofs_csi

This package holds the logic of a Container Storage Interface (CSI) driver
for DingoFS. It covers:

- the driver's capabilities and access modes;
- default identity, controller and node services;
- creating and mounting DingoFS file systems through the `dingo` tool and the
  `dingo-fuse` client;
- resolving kubelet target paths against `/proc/self/mountinfo`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `dingofs_csi.csi` holds the shared types:
  - `StatusCode` and `RpcError`;
  - the capability enums `ControllerServiceCapabilityType`, `AccessMode`,
    `NodeServiceCapabilityType` and `PluginCapabilityType`;
  - `VersionInfo`;
  - the records `VolumeCapability`, `Volume`, `CreateVolumeRequest`,
    `DeleteVolumeRequest`, `ValidateVolumeCapabilitiesRequest`,
    `NodePublishVolumeRequest` and `NodeUnpublishVolumeRequest`;
  - `parse_endpoint`, which splits a `unix://` or `tcp://` endpoint into its
    scheme and address and raises `ValueError` on anything else.
- `dingofs_csi.driver` holds `CSIDriver` and `new_csi_driver`.
  - Building a driver raises `ValueError` when the name or node id is missing,
    or when the version is empty.
  - `validate_controller_service_request` raises `RpcError` with
    `INVALID_ARGUMENT` for a capability that was not enabled.
- `dingofs_csi.servers` holds `DefaultIdentityServer`,
  `DefaultControllerServer`, `DefaultNodeServer` and `PluginInfo`.
  - Calls that these servers do not support raise `RpcError` with
    `UNIMPLEMENTED`.
- `dingofs_csi.fstool` drives the command-line tools.
  - `DingoTool` runs `dingo list fs`, `create fs`, `query fs`, `config fs`,
    `quota set` and `delete-fs`.
  - `DingoMounter` starts `dingo-fuse`, writes a per-mount copy of the client
    configuration with mount flags applied, and unmounts with `umount`.
  - `parse_fs_list` and `merge_mount_flags` are helpers with no side effects.
- `dingofs_csi.controller_server` holds `ControllerServer`.
  - It records created volumes in memory, keyed by name.
  - It checks requested capabilities against the driver's access modes.
- `dingofs_csi.node_server` holds `NodeServer`. On publish it:
  - creates the file system if it is missing;
  - mounts it under a fresh directory in `/dfs`;
  - bind-mounts the volume's subdirectory onto the target path;
  - sets a quota when the volume context has a `capacity`.

  On unpublish it unmounts both mounts and kills the fuse client. The mounter,
  the tool and mounter factories, the uuid source and the process killer can
  all be passed in.
- `dingofs_csi.plugin` holds `new_driver`, which builds a `DingoFSDriver`
  named `csi.dingofs.com`. The driver hands out its controller, node and
  identity servers.
- `dingofs_csi.mountinfo` holds `parse_mount_info`, `MountInfoTable`,
  `TargetItem`, `MountItem`, `TargetStatus`, `get_pod_uid` and `get_pv_name`.
  Together they tell whether a pod's target is mounted, not mounted, missing,
  corrupt or in an unexpected state. A target's subPath mounts are resolved as
  well.

## Example

```python
from dingofs_csi.csi import parse_endpoint
from dingofs_csi.plugin import new_driver

proto, addr = parse_endpoint("unix:///csi/csi.sock")   # ("unix", "/csi/csi.sock")
driver = new_driver("unix:///csi/csi.sock", "node-1")
info = driver.identity_server().get_plugin_info(None)
print(info.name)  # csi.dingofs.com
```

A failed request raises `dingofs_csi.csi.RpcError`. Its `code` attribute
holds a `StatusCode`, such as `INVALID_ARGUMENT` or `UNIMPLEMENTED`.

## What this package does not do

- There is no gRPC server. The services are plain Python objects, and the
  endpoint on a `DingoFSDriver` is only stored. Nothing listens on it.
- There is no command-line program and no script entry point.
- There are no Kubernetes controllers or API clients. `MountInfoTable` is told
  which pods exist through `set_pod_status` and `set_pods_status`. It never
  asks a cluster.
- Publishing and unpublishing volumes need the real environment:
  - the `dingo` and `dingo-fuse` binaries at their `/dingofs/...` paths;
  - root rights for mounting;
  - a Linux mount table.