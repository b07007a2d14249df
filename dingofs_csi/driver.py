"""The CSI driver description: identity, capabilities and access modes."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from dingofs_csi.csi import (
    AccessMode,
    ControllerServiceCapabilityType,
    RpcError,
    StatusCode,
    VersionInfo,
)

log = logging.getLogger(__name__)


@dataclass
class CSIDriver:
    """Name, node and version of a driver together with what it supports."""

    name: str
    version: VersionInfo
    node_id: str
    _capabilities: list[ControllerServiceCapabilityType] = field(
        default_factory=list, repr=False
    )
    _access_modes: list[AccessMode] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Driver name missing")
        if not self.node_id:
            raise ValueError("NodeID missing")
        if self.version.is_empty():
            raise ValueError("Version argument missing")

    def validate_controller_service_request(
        self, capability: ControllerServiceCapabilityType
    ) -> None:
        """Raise RpcError(INVALID_ARGUMENT) unless the capability is supported."""
        if capability == ControllerServiceCapabilityType.UNKNOWN:
            return
        if capability in self._capabilities:
            return
        raise RpcError(StatusCode.INVALID_ARGUMENT, capability.name)

    def add_controller_service_capabilities(
        self, capabilities: Iterable[ControllerServiceCapabilityType]
    ) -> None:
        """Replace the set of controller capabilities."""
        enabled = []
        for capability in capabilities:
            log.info("Enabling controller service capability: %s", capability.name)
            enabled.append(capability)
        self._capabilities = enabled

    def add_volume_capability_access_modes(
        self, modes: Iterable[AccessMode]
    ) -> list[AccessMode]:
        """Replace the supported access modes and return them."""
        enabled = []
        for mode in modes:
            log.info("Enabling volume access mode: %s", mode.name)
            enabled.append(mode)
        self._access_modes = enabled
        return list(enabled)

    def volume_capability_access_modes(self) -> list[AccessMode]:
        return list(self._access_modes)

    def controller_capabilities(self) -> list[ControllerServiceCapabilityType]:
        return list(self._capabilities)


def new_csi_driver(name: str, version: VersionInfo, node_id: str) -> CSIDriver:
    """Create a driver; raise ValueError when a required argument is missing."""
    log.info("Driver: %s version info %s nodeId %s", name, version, node_id)
    return CSIDriver(name=name, version=version, node_id=node_id)