"""Controller service of the DingoFS CSI driver."""

from __future__ import annotations

import logging

from dingofs_csi.csi import (
    CreateVolumeRequest,
    DeleteVolumeRequest,
    RpcError,
    StatusCode,
    ValidateVolumeCapabilitiesRequest,
    Volume,
    VolumeCapability,
)
from dingofs_csi.driver import CSIDriver
from dingofs_csi.servers import DefaultControllerServer

log = logging.getLogger(__name__)


class ControllerServer(DefaultControllerServer):
    """Provisions volumes by recording their parameters and capacity."""

    def __init__(self, driver: CSIDriver) -> None:
        super().__init__(driver)
        self.volumes: dict[str, Volume] = {}

    def create_volume(self, request: CreateVolumeRequest) -> Volume:
        """Create a volume, or return the one already created under this name."""
        log.debug("create_volume called with %r", request)
        if not request.name:
            raise RpcError(StatusCode.INVALID_ARGUMENT, "Volume Name is missing")
        if not request.volume_capabilities:
            raise RpcError(StatusCode.INVALID_ARGUMENT, "Volume capabilities is missing")

        volume_id = request.name
        existing = self.volumes.get(volume_id)
        if existing is not None:
            log.info("%s has been already created: %s", volume_id, existing)
            return existing

        context = dict(request.parameters)
        context["capacity"] = str(request.required_bytes)
        volume = Volume(
            volume_id=volume_id,
            capacity_bytes=request.required_bytes,
            volume_context=context,
        )
        self.volumes[volume_id] = volume
        return volume

    def delete_volume(self, request: DeleteVolumeRequest) -> None:
        """Accept the deletion; the filesystem itself is left in place."""
        log.debug("delete_volume called with %r", request)
        if not request.volume_id:
            raise RpcError(StatusCode.INVALID_ARGUMENT, "Volume ID is missing")

    def validate_volume_capabilities(
        self, request: ValidateVolumeCapabilitiesRequest
    ) -> list[VolumeCapability] | None:
        """Return the confirmed capabilities, or None when any is unsupported."""
        log.debug("validate_volume_capabilities called with %r", request)
        if not request.volume_id:
            raise RpcError(StatusCode.INVALID_ARGUMENT, "Volume ID is missing")
        if not request.volume_capabilities:
            raise RpcError(StatusCode.INVALID_ARGUMENT, "Volume capabilities is missing")
        if self.is_valid_volume_capabilities(request.volume_capabilities):
            return list(request.volume_capabilities)
        return None

    def is_valid_volume_capabilities(self, capabilities: list[VolumeCapability]) -> bool:
        """True when every capability is a mount with a supported access mode."""
        supported = set(self.driver.volume_capability_access_modes())
        return all(
            not capability.block and capability.access_mode in supported
            for capability in capabilities
        )