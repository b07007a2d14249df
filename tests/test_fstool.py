import os
import stat

import pytest

from dingofs_csi.csi import RpcError, StatusCode
from dingofs_csi.fstool import (
    DingoMounter,
    DingoTool,
    FsInfo,
    merge_mount_flags,
    parse_fs_list,
)

TABLE = "\n".join(
    [
        "+----+----------+--------+",
        "| ID | NAME     | STATUS |",
        "+----+----------+--------+",
        "| 1  | existing | INITED |",
        "| 2  | other    | INITED |",
        "+----+----------+--------+",
        "",
    ]
)


def _script(path, body):
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IEXEC | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def fake_tool(tmp_path):
    log_file = tmp_path / "tool.log"
    table_file = tmp_path / "table.txt"
    table_file.write_text(TABLE)
    body = (
        f'echo "$@" >> "{log_file}"\n'
        'case "$1" in\n'
        f'  list) cat "{table_file}" ;;\n'
        '  query) echo "${QUERY_OUT:-fs ok}" ;;\n'
        "esac\n"
        "exit 0\n"
    )
    return _script(tmp_path / "dingo", body), log_file


def _calls(log_file):
    return log_file.read_text().splitlines()


def test_parse_fs_list_reads_rows():
    assert parse_fs_list(TABLE) == [
        FsInfo(id=1, name="existing", status="INITED"),
        FsInfo(id=2, name="other", status="INITED"),
    ]


def test_parse_fs_list_short_output_is_empty():
    assert parse_fs_list("no filesystems\n") == []


def test_merge_mount_flags_overrides_and_appends():
    text = "# comment\na=1\ndisk_cache.cache_dir=/cache1:100;/cache2\nb=2\n"
    flags = ["a=5", "diskCache.diskCacheType=2", "new=x", "bad"]
    new_text, cache_dirs, enabled = merge_mount_flags(text, flags, "u1")
    assert new_text == (
        "# comment\na=5\ndisk_cache.cache_dir=/cache1/u1:100;/cache2/u1\nb=2\n\n"
        "diskCache.diskCacheType=2\nnew=x\n"
    )
    assert cache_dirs == "/cache1/u1;/cache2/u1"
    assert enabled is True


def test_merge_mount_flags_without_cache():
    new_text, cache_dirs, enabled = merge_mount_flags("a=1", ["diskCache.diskCacheType=0"], "u")
    assert new_text == "a=1\ndiskCache.diskCacheType=0\n"
    assert cache_dirs is None
    assert enabled is False


def test_validate_common_params_requires_mds_addr():
    tool = DingoTool()
    with pytest.raises(RpcError) as info:
        tool.validate_common_params({})
    assert info.value.code == StatusCode.INVALID_ARGUMENT


def test_validate_common_params_defaults_conf_path():
    tool = DingoTool()
    tool.validate_common_params({"mdsAddr": "10.0.0.1:6700"})
    assert tool.tool_params == {
        "mdsAddr": "10.0.0.1:6700",
        "confPath": "/dingofs/conf/tools.conf",
    }


def test_validate_create_fs_params_v2_s3_and_quota():
    tool = DingoTool()
    tool.validate_create_fs_params_v2(
        {
            "fsType": "s3",
            "s3Endpoint": "http://s3.example.com",
            "s3AccessKey": "placeholder",
            "s3SecretKey": "secret",
            "s3Bucket": "bucket",
            "quotaCapacity": "100",
            "quotaInodes": "1000",
        }
    )
    assert tool.tool_params["fstype"] == "s3"
    assert tool.tool_params["s3.endpoint"] == "http://s3.example.com"
    assert tool.tool_params["s3.sk"] == "secret"
    assert tool.quota_params == {"capacity": "100", "inodes": "1000"}


def test_validate_create_fs_params_incomplete_s3():
    tool = DingoTool()
    with pytest.raises(RpcError, match="s3Info is incomplete"):
        tool.validate_create_fs_params({"fsType": "s3", "s3Endpoint": "x"})


@pytest.mark.parametrize(
    "size, message",
    [("abc", "not integer"), ("5", "must larger than 10GB"), ("010", "must larger than 10GB")],
)
def test_validate_volume_size_errors(size, message):
    tool = DingoTool()
    params = {"fsType": "volume", "backendVolName": "vol", "backendVolSizeGB": size}
    with pytest.raises(RpcError, match=message) as info:
        tool.validate_create_fs_params_v2(params)
    assert info.value.code == StatusCode.INVALID_ARGUMENT


def test_validate_volume_size_hex_accepted():
    tool = DingoTool()
    tool.validate_create_fs_params(
        {"fsType": "volume", "backendVolName": "vol", "backendVolSizeGB": "0x10"}
    )
    assert tool.tool_params["volumeSize"] == "0x10"
    assert tool.tool_params["enableSumInDir"] == "0"


def test_unsupported_and_missing_fs_type():
    tool = DingoTool()
    with pytest.raises(RpcError, match="unsupported fsType nfs"):
        tool.validate_create_fs_params_v2({"fsType": "nfs"})
    with pytest.raises(RpcError, match="fsType is missing"):
        tool.validate_create_fs_params_v2({})


def test_check_fs_existed(fake_tool):
    path, log_file = fake_tool
    tool = DingoTool(tool_path=path)
    assert tool.check_fs_existed("existing", "addr") is True
    assert tool.check_fs_existed("missing", "addr") is False
    assert _calls(log_file)[0] == "list fs --mdsaddr=addr"


def test_create_fs_skips_existing(fake_tool):
    path, log_file = fake_tool
    tool = DingoTool(tool_path=path)
    result = tool.create_fs({}, {"name": "existing", "mdsAddr": "addr"})
    assert result is None
    assert tool.tool_params == {"mdsaddr": "addr"}
    assert tool.quota_params == {}
    assert _calls(log_file) == ["list fs --mdsaddr=addr"]


def test_create_fs_creates_queries_and_sets_quota(fake_tool):
    path, log_file = fake_tool
    tool = DingoTool(tool_path=path)
    secrets = {
        "name": "newfs",
        "mdsAddr": "addr",
        "fsType": "volume",
        "backendVolName": "vol",
        "backendVolSizeGB": "20",
        "quotaCapacity": "50",
    }
    tool.create_fs({}, secrets)
    assert tool.tool_params == {
        "mdsaddr": "addr",
        "fstype": "volume",
        "volumeName": "vol",
        "volumeSize": "20",
        "fsname": "newfs",
    }
    assert tool.quota_params == {"capacity": "50"}
    calls = _calls(log_file)
    assert calls[1].startswith("create fs ")
    assert "--fsname=newfs" in calls[1].split()
    assert "--volumeSize=20" in calls[1].split()
    assert calls[2] == "query fs --fsname=newfs --mdsaddr=addr"
    assert calls[3] == "config fs --fsname=newfs --mdsaddr=addr --capacity=50"


def test_create_fs_query_error_raises(fake_tool, monkeypatch):
    path, _ = fake_tool
    monkeypatch.setenv("QUERY_OUT", "Error: not found")
    tool = DingoTool(tool_path=path)
    secrets = {
        "name": "newfs",
        "mdsAddr": "addr",
        "fsType": "volume",
        "backendVolName": "vol",
        "backendVolSizeGB": "20",
    }
    with pytest.raises(RpcError, match="dingo query fs failed") as info:
        tool.create_fs({}, secrets)
    assert info.value.code == StatusCode.INTERNAL


def test_failing_tool_raises_internal(tmp_path):
    path = _script(tmp_path / "dingo", "echo boom\nexit 3\n")
    tool = DingoTool(tool_path=path)
    with pytest.raises(RpcError, match="boom") as info:
        tool.set_volume_quota("addr", "/vol", "fs", "10", "")
    assert info.value.code == StatusCode.INTERNAL


def test_delete_fs_passes_single_dash_args(fake_tool):
    path, log_file = fake_tool
    tool = DingoTool(tool_path=path)
    tool.delete_fs("vol1", {"mdsAddr": "addr"})
    assert tool.tool_params == {
        "mdsAddr": "addr",
        "confPath": "/dingofs/conf/tools.conf",
        "fsname": "vol1",
        "noconfirm": "1",
    }
    args = _calls(log_file)[0].split()
    assert args[0] == "delete-fs"
    assert "-fsname=vol1" in args
    assert "-noconfirm=1" in args


def test_get_dfs_id_is_empty():
    assert DingoTool().get_dfs_id("fs") == ""


def test_validate_mount_fs_params():
    mounter = DingoMounter(client_conf_path="/conf/client.conf")
    mounter.validate_mount_fs_params({"mdsAddr": "addr", "fsType": "s3"})
    assert mounter.mounter_params == {
        "mdsaddr": "addr",
        "conf": "/conf/client.conf",
        "fstype": "s3",
    }
    with pytest.raises(RpcError, match="fsType is missing"):
        DingoMounter().validate_mount_fs_params({"mdsAddr": "addr"})


def test_apply_mount_flags_writes_copy_and_creates_cache(tmp_path):
    conf = tmp_path / "client.conf"
    cache_root = tmp_path / "cache"
    conf.write_text(f"disk_cache.cache_dir={cache_root}\nx=1")
    mounter = DingoMounter(client_conf_path=str(conf))
    new_path = mounter.apply_mount_flags(str(conf), ["diskCache.diskCacheType=2"], "u1")
    assert new_path == f"{conf}.u1"
    content = (tmp_path / "client.conf.u1").read_text()
    assert f"disk_cache.cache_dir={cache_root}/u1\n" in content
    assert mounter.mounter_params["cache_dir"] == f"{cache_root}/u1"
    assert (cache_root / "u1").is_dir()


def test_apply_mount_flags_missing_conf(tmp_path):
    mounter = DingoMounter(client_conf_path=str(tmp_path / "client.conf"))
    with pytest.raises(RpcError, match="failed to read conf") as info:
        mounter.apply_mount_flags(str(tmp_path / "absent.conf"), [], "u1")
    assert info.value.code == StatusCode.INTERNAL


def test_mount_fs_runs_client(tmp_path):
    log_file = tmp_path / "client.log"
    client = _script(tmp_path / "fuse", f'echo "$@" >> "{log_file}"\nexit 0\n')
    conf = tmp_path / "client.conf"
    conf.write_text("a=1\n")
    mount_path = tmp_path / "mnt" / "u1"
    mounter = DingoMounter(client_path=client, client_conf_path=str(conf))
    pid = mounter.mount_fs(
        str(mount_path), {}, ["a=2"], "u1", {"name": "fs1", "mdsAddr": "addr", "fsType": "s3"}
    )
    assert pid > 2
    assert mount_path.is_dir()
    args = log_file.read_text().split()
    assert args[:4] == ["-o", "default_permissions", "-o", "allow_other"]
    assert "--mdsaddr=addr" in args
    assert "fsname=fs1" in args
    assert f"conf={conf}.u1" in args
    assert args[-1] == str(mount_path)


def test_mount_fs_client_failure(tmp_path):
    client = _script(tmp_path / "fuse", "echo fail\nexit 1\n")
    mounter = DingoMounter(client_path=client)
    with pytest.raises(RpcError, match="curve-fuse mount failed"):
        mounter.mount_fs(
            str(tmp_path / "m"), {}, None, "u1", {"name": "fs", "mdsAddr": "a", "fsType": "s3"}
        )


def test_umount_fs_cleans_up(tmp_path):
    log_file = tmp_path / "umount.log"
    umount = _script(tmp_path / "umount", f'echo "$@" >> "{log_file}"\nexit 0\n')
    base = tmp_path / "dfs"
    (base / "u1").mkdir(parents=True)
    cache = tmp_path / "cache" / "u1"
    cache.mkdir(parents=True)
    conf = tmp_path / "client.conf"
    (tmp_path / "client.conf.u1").write_text("a=1\n")
    mounter = DingoMounter(
        umount_path=umount, client_conf_path=str(conf), pod_mount_base=str(base)
    )
    mounter.umount_fs("/target", "u1", str(cache))
    assert log_file.read_text().splitlines() == ["/target", f"{base}/u1"]
    assert not (base / "u1").exists()
    assert not cache.exists()
    assert not os.path.exists(f"{conf}.u1")


def test_umount_fs_failure(tmp_path):
    umount = _script(tmp_path / "umount", "echo 'not mounted'\nexit 32\n")
    mounter = DingoMounter(umount_path=umount)
    with pytest.raises(RpcError, match="umount /target failed") as info:
        mounter.umount_fs("/target", "u1", "")
    assert info.value.code == StatusCode.INTERNAL