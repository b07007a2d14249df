"""Core CSI types: status codes, capability enums, request and volume records."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields


class StatusCode(enum.IntEnum):
    """RPC status codes reported by the CSI services."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class RpcError(Exception):
    """An RPC failure carrying a status code and a description."""

    def __init__(self, code: StatusCode, message: str = "") -> None:
        super().__init__(f"rpc error: code = {code.name} desc = {message}")
        self.code = code
        self.message = message


class ControllerServiceCapabilityType(enum.IntEnum):
    UNKNOWN = 0
    CREATE_DELETE_VOLUME = 1
    PUBLISH_UNPUBLISH_VOLUME = 2
    LIST_VOLUMES = 3
    GET_CAPACITY = 4
    CREATE_DELETE_SNAPSHOT = 5
    LIST_SNAPSHOTS = 6
    CLONE_VOLUME = 7
    PUBLISH_READONLY = 8
    EXPAND_VOLUME = 9
    LIST_VOLUMES_PUBLISHED_NODES = 10
    VOLUME_CONDITION = 11
    GET_VOLUME = 12
    SINGLE_NODE_MULTI_WRITER = 13


class AccessMode(enum.IntEnum):
    UNKNOWN = 0
    SINGLE_NODE_WRITER = 1
    SINGLE_NODE_READER_ONLY = 2
    MULTI_NODE_READER_ONLY = 3
    MULTI_NODE_SINGLE_WRITER = 4
    MULTI_NODE_MULTI_WRITER = 5
    SINGLE_NODE_SINGLE_WRITER = 6
    SINGLE_NODE_MULTI_WRITER = 7


class NodeServiceCapabilityType(enum.IntEnum):
    UNKNOWN = 0
    STAGE_UNSTAGE_VOLUME = 1
    GET_VOLUME_STATS = 2
    EXPAND_VOLUME = 3
    VOLUME_CONDITION = 4
    SINGLE_NODE_MULTI_WRITER = 5
    VOLUME_MOUNT_GROUP = 6


class PluginCapabilityType(enum.IntEnum):
    UNKNOWN = 0
    CONTROLLER_SERVICE = 1
    VOLUME_ACCESSIBILITY_CONSTRAINTS = 2


@dataclass(frozen=True)
class VersionInfo:
    """Build and version information of the driver."""

    driver_version: str = ""
    git_commit: str = ""
    build_date: str = ""
    runtime_version: str = ""
    compiler: str = ""
    platform: str = ""

    def is_empty(self) -> bool:
        """True when no field carries a value."""
        return all(not getattr(self, f.name) for f in fields(self))


@dataclass
class VolumeCapability:
    """How a volume is accessed: as a block device or as a mounted filesystem."""

    access_mode: AccessMode = AccessMode.UNKNOWN
    block: bool = False
    fs_type: str = ""
    mount_flags: list[str] = field(default_factory=list)

    @property
    def is_mount(self) -> bool:
        return not self.block


@dataclass
class Volume:
    volume_id: str
    capacity_bytes: int = 0
    volume_context: dict[str, str] = field(default_factory=dict)


@dataclass
class CreateVolumeRequest:
    name: str = ""
    required_bytes: int = 0
    volume_capabilities: list[VolumeCapability] = field(default_factory=list)
    parameters: dict[str, str] = field(default_factory=dict)
    secrets: dict[str, str] = field(default_factory=dict)


@dataclass
class DeleteVolumeRequest:
    volume_id: str = ""
    secrets: dict[str, str] = field(default_factory=dict)


@dataclass
class ValidateVolumeCapabilitiesRequest:
    volume_id: str = ""
    volume_capabilities: list[VolumeCapability] = field(default_factory=list)
    volume_context: dict[str, str] = field(default_factory=dict)
    parameters: dict[str, str] = field(default_factory=dict)


@dataclass
class NodePublishVolumeRequest:
    volume_id: str = ""
    target_path: str = ""
    staging_target_path: str = ""
    volume_capability: VolumeCapability | None = None
    readonly: bool = False
    volume_context: dict[str, str] = field(default_factory=dict)
    secrets: dict[str, str] = field(default_factory=dict)


@dataclass
class NodeUnpublishVolumeRequest:
    volume_id: str = ""
    target_path: str = ""


_SCHEMES = ("unix://", "tcp://")


def parse_endpoint(ep: str) -> tuple[str, str]:
    """Split an endpoint such as ``unix:///csi/csi.sock`` into (scheme, address)."""
    if ep.lower().startswith(_SCHEMES):
        scheme, address = ep.split("://", 1)
        if address:
            return scheme, address
    raise ValueError(f"Invalid endpoint: {ep}")