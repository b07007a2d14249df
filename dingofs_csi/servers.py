"""Default identity, controller and node services of a CSI driver."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, NoReturn

from dingofs_csi.csi import (
    ControllerServiceCapabilityType,
    NodeServiceCapabilityType,
    PluginCapabilityType,
    RpcError,
    StatusCode,
)
from dingofs_csi.driver import CSIDriver

log = logging.getLogger(__name__)


def _unimplemented() -> NoReturn:
    raise RpcError(StatusCode.UNIMPLEMENTED, "")


@dataclass(frozen=True)
class PluginInfo:
    name: str
    vendor_version: str


class DefaultControllerServer:
    """Controller service that supports nothing beyond reporting capabilities."""

    def __init__(self, driver: CSIDriver) -> None:
        self.driver = driver

    def create_volume(self, request: Any) -> Any:
        _unimplemented()

    def delete_volume(self, request: Any) -> Any:
        _unimplemented()

    def controller_publish_volume(self, request: Any) -> Any:
        _unimplemented()

    def controller_unpublish_volume(self, request: Any) -> Any:
        _unimplemented()

    def validate_volume_capabilities(self, request: Any) -> Any:
        _unimplemented()

    def list_volumes(self, request: Any) -> Any:
        _unimplemented()

    def get_capacity(self, request: Any) -> Any:
        _unimplemented()

    def controller_get_capabilities(
        self, request: Any
    ) -> list[ControllerServiceCapabilityType]:
        log.debug("Using default ControllerGetCapabilities")
        return self.driver.controller_capabilities()

    def create_snapshot(self, request: Any) -> Any:
        _unimplemented()

    def delete_snapshot(self, request: Any) -> Any:
        _unimplemented()

    def list_snapshots(self, request: Any) -> Any:
        _unimplemented()

    def controller_expand_volume(self, request: Any) -> Any:
        _unimplemented()

    def controller_get_volume(self, request: Any) -> Any:
        _unimplemented()


class DefaultIdentityServer:
    """Identity service reporting the driver's name, version and capabilities."""

    def __init__(self, driver: CSIDriver) -> None:
        self.driver = driver

    def get_plugin_info(self, request: Any) -> PluginInfo:
        log.debug("get_plugin_info called with %r", request)
        if not self.driver.name:
            raise RpcError(StatusCode.UNAVAILABLE, "Driver name not configured")
        if self.driver.version.is_empty():
            raise RpcError(StatusCode.UNAVAILABLE, "Driver is missing version")
        return PluginInfo(
            name=self.driver.name,
            vendor_version=self.driver.version.driver_version,
        )

    def probe(self, request: Any) -> None:
        log.debug("probe called with %r", request)

    def get_plugin_capabilities(self, request: Any) -> list[PluginCapabilityType]:
        log.debug("get_plugin_capabilities called with %r", request)
        return [PluginCapabilityType.CONTROLLER_SERVICE]


class DefaultNodeServer:
    """Node service that reports node identity and nothing else."""

    def __init__(self, driver: CSIDriver) -> None:
        self.driver = driver

    def node_publish_volume(self, request: Any) -> Any:
        _unimplemented()

    def node_unpublish_volume(self, request: Any) -> Any:
        _unimplemented()

    def node_get_info(self, request: Any) -> str:
        log.debug("Using default NodeGetInfo")
        return self.driver.node_id

    def node_get_capabilities(self, request: Any) -> list[NodeServiceCapabilityType]:
        log.debug("Using default NodeGetCapabilities")
        return [NodeServiceCapabilityType.UNKNOWN]

    def node_get_volume_stats(self, request: Any) -> Any:
        _unimplemented()

    def node_stage_volume(self, request: Any) -> Any:
        _unimplemented()

    def node_unstage_volume(self, request: Any) -> Any:
        _unimplemented()

    def node_expand_volume(self, request: Any) -> Any:
        _unimplemented()