import pytest

from dingofs_csi.csi import (
    ControllerServiceCapabilityType as Cap,
    NodePublishVolumeRequest,
    NodeServiceCapabilityType,
    NodeUnpublishVolumeRequest,
    PluginCapabilityType,
    RpcError,
    StatusCode,
    VersionInfo,
)
from dingofs_csi.driver import new_csi_driver
from dingofs_csi.servers import (
    DefaultControllerServer,
    DefaultIdentityServer,
    DefaultNodeServer,
    PluginInfo,
)

FAKE_DRIVER_NAME = "fake"
FAKE_NODE_ID = "fakeNodeID"
VENDOR_VERSION = VersionInfo(
    driver_version="1.0.0",
    git_commit="abcdef",
    build_date="2024-01-01T00:00:00Z",
    runtime_version="1.23.1",
    compiler="gc",
    platform="linux/amd64",
)


@pytest.fixture
def driver():
    return new_csi_driver(FAKE_DRIVER_NAME, VENDOR_VERSION, FAKE_NODE_ID)


def test_get_plugin_info(driver):
    info = DefaultIdentityServer(driver).get_plugin_info(None)
    assert info == PluginInfo(name=FAKE_DRIVER_NAME, vendor_version="1.0.0")


def test_get_plugin_info_without_name(driver):
    driver.name = ""
    with pytest.raises(RpcError) as info:
        DefaultIdentityServer(driver).get_plugin_info(None)
    assert info.value.code is StatusCode.UNAVAILABLE


def test_get_plugin_info_without_version(driver):
    driver.version = VersionInfo()
    with pytest.raises(RpcError) as info:
        DefaultIdentityServer(driver).get_plugin_info(None)
    assert info.value.code is StatusCode.UNAVAILABLE
    assert info.value.message == "Driver is missing version"


def test_get_plugin_capabilities(driver):
    caps = DefaultIdentityServer(driver).get_plugin_capabilities(None)
    assert caps == [PluginCapabilityType.CONTROLLER_SERVICE]


def test_node_get_info(driver):
    assert DefaultNodeServer(driver).node_get_info(None) == FAKE_NODE_ID


def test_node_get_capabilities(driver):
    caps = DefaultNodeServer(driver).node_get_capabilities(None)
    assert caps == [NodeServiceCapabilityType.UNKNOWN]


def test_node_publish_volume_unimplemented(driver):
    with pytest.raises(RpcError) as info:
        DefaultNodeServer(driver).node_publish_volume(NodePublishVolumeRequest())
    assert info.value.code is StatusCode.UNIMPLEMENTED


def test_node_unpublish_volume_unimplemented(driver):
    with pytest.raises(RpcError) as info:
        DefaultNodeServer(driver).node_unpublish_volume(NodeUnpublishVolumeRequest())
    assert info.value.code is StatusCode.UNIMPLEMENTED


@pytest.mark.parametrize(
    "method",
    [
        "node_get_volume_stats",
        "node_stage_volume",
        "node_unstage_volume",
        "node_expand_volume",
    ],
)
def test_other_node_calls_unimplemented(driver, method):
    with pytest.raises(RpcError) as info:
        getattr(DefaultNodeServer(driver), method)(None)
    assert info.value.code is StatusCode.UNIMPLEMENTED


@pytest.mark.parametrize(
    "method",
    [
        "create_volume",
        "delete_volume",
        "controller_publish_volume",
        "controller_unpublish_volume",
        "validate_volume_capabilities",
        "list_volumes",
        "get_capacity",
        "create_snapshot",
        "delete_snapshot",
        "list_snapshots",
        "controller_expand_volume",
        "controller_get_volume",
    ],
)
def test_controller_calls_unimplemented(driver, method):
    with pytest.raises(RpcError) as info:
        getattr(DefaultControllerServer(driver), method)(None)
    assert info.value.code is StatusCode.UNIMPLEMENTED


def test_controller_get_capabilities(driver):
    driver.add_controller_service_capabilities([Cap.CREATE_DELETE_VOLUME])
    caps = DefaultControllerServer(driver).controller_get_capabilities(None)
    assert caps == [Cap.CREATE_DELETE_VOLUME]