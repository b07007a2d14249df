"""The DingoFS CSI driver: its identity and the services it offers."""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass

from dingofs_csi.controller_server import ControllerServer
from dingofs_csi.csi import AccessMode, ControllerServiceCapabilityType, VersionInfo
from dingofs_csi.driver import CSIDriver, new_csi_driver
from dingofs_csi.node_server import NodeServer
from dingofs_csi.servers import DefaultIdentityServer

DRIVER_NAME = "csi.dingofs.com"
DRIVER_VERSION = "v1.0.0"

SUPPORTED_ACCESS_MODES = (
    AccessMode.SINGLE_NODE_WRITER,
    AccessMode.SINGLE_NODE_READER_ONLY,
    AccessMode.MULTI_NODE_READER_ONLY,
    AccessMode.MULTI_NODE_MULTI_WRITER,
)


def _version() -> VersionInfo:
    return VersionInfo(
        driver_version=DRIVER_VERSION,
        runtime_version=platform.python_version(),
        compiler=platform.python_implementation(),
        platform=f"{sys.platform}/{platform.machine()}",
    )


@dataclass
class DingoFSDriver:
    """A configured driver bound to the endpoint it serves on."""

    csi_driver: CSIDriver
    endpoint: str

    def controller_server(self) -> ControllerServer:
        return ControllerServer(self.csi_driver)

    def node_server(self) -> NodeServer:
        return NodeServer(self.csi_driver)

    def identity_server(self) -> DefaultIdentityServer:
        return DefaultIdentityServer(self.csi_driver)


def new_driver(endpoint: str, node_id: str) -> DingoFSDriver:
    """Create the driver with its controller capabilities and access modes."""
    csi_driver = new_csi_driver(DRIVER_NAME, _version(), node_id)
    csi_driver.add_controller_service_capabilities(
        [ControllerServiceCapabilityType.CREATE_DELETE_VOLUME]
    )
    csi_driver.add_volume_capability_access_modes(SUPPORTED_ACCESS_MODES)
    return DingoFSDriver(csi_driver=csi_driver, endpoint=endpoint)