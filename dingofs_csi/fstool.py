"""Drive the dingo command-line tools: create and query filesystems, mount them."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import NamedTuple

from dingofs_csi.csi import RpcError, StatusCode

log = logging.getLogger(__name__)

DEFAULT_TOOL_CONF_PATH = "/dingofs/conf/tools.conf"
DEFAULT_CLIENT_CONF_PATH = "/dingofs/conf/client.conf"
TOOL_PATH = "/dingofs/tools-v2/sbin/dingo"
CLIENT_PATH = "/dingofs/client/sbin/dingo-fuse"
CACHE_DIR_PREFIX = "/dingofs/client/data/cache/"
POD_MOUNT_BASE = "/dfs"
MOUNT_BASE = "/var/lib/dfs"

_CACHE_DIR_KEY = "disk_cache.cache_dir"
_CACHE_TYPE_KEY = "diskCache.diskCacheType"


class _Outcome(NamedTuple):
    output: str
    error: str | None
    pid: int | None


def _run(args: list[str]) -> _Outcome:
    """Run a command and collect its combined stdout and stderr."""
    try:
        proc = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    except OSError as exc:
        return _Outcome("", str(exc), None)
    out, _ = proc.communicate()
    text = out.decode(errors="replace")
    error = None if proc.returncode == 0 else f"exit status {proc.returncode}"
    return _Outcome(text, error, proc.pid)


def _parse_int_auto_base(text: str) -> int:
    """Parse an integer whose base follows from its prefix (0x, 0o, 0b, 0)."""
    sign = 1
    body = text
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if not body or not body.isascii() or not body.isalnum():
        raise ValueError(f"invalid integer: {text!r}")
    lowered = body.lower()
    if lowered.startswith("0x"):
        value = int(body[2:], 16)
    elif lowered.startswith("0o"):
        value = int(body[2:], 8)
    elif lowered.startswith("0b"):
        value = int(body[2:], 2)
    elif len(body) > 1 and body[0] == "0":
        value = int(body[1:], 8)
    else:
        value = int(body, 10)
    return sign * value


def _to_int(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        return 0


@dataclass(frozen=True)
class FsInfo:
    id: int
    name: str
    status: str


def parse_fs_list(output: str) -> list[FsInfo]:
    """Read the table printed by ``dingo list fs``."""
    lines = output.split("\n")
    if len(lines) < 3:
        return []
    infos = []
    for line in lines:
        if line.startswith("+") or line.startswith("| ID") or line == "":
            continue
        columns = line.split()
        if len(columns) < 6:
            continue
        infos.append(FsInfo(id=_to_int(columns[1]), name=columns[3], status=columns[5]))
    return infos


def _is_setting(line: str) -> bool:
    return not line.startswith("#") and "=" in line


def merge_mount_flags(
    text: str, mount_flags: list[str], mount_uuid: str
) -> tuple[str, str | None, bool]:
    """Override a client configuration with ``key=value`` mount flags.

    Returns the new text, the per-mount cache directories (joined by ``;``)
    when the configuration names any, and whether disk caching is enabled.
    """
    lines = text.split("\n")
    settings: dict[str, str] = {}
    for line in lines:
        if _is_setting(line):
            key, value = line.split("=", 1)
            settings[key] = value

    cache_enabled = False
    for flag in mount_flags:
        parts = flag.split("=", 1)
        if len(parts) == 2:
            key, value = parts
            settings[key] = value
            if key == _CACHE_TYPE_KEY and value in ("1", "2"):
                cache_enabled = True

    cache_dirs: str | None = None
    out: list[str] = []
    for line in lines:
        if not _is_setting(line):
            out.append(line + "\n")
            continue
        key = line.split("=", 1)[0]
        if key not in settings:
            out.append(line + "\n")
            continue
        value = settings.pop(key)
        if key == _CACHE_DIR_KEY:
            with_capacity = []
            paths = []
            for cache_dir in value.split(";"):
                dir_parts = cache_dir.split(":", 1)
                path = f"{dir_parts[0]}/{mount_uuid}"
                if len(dir_parts) == 2:
                    with_capacity.append(f"{path}:{dir_parts[1]}")
                else:
                    with_capacity.append(path)
                paths.append(path)
            value = ";".join(with_capacity)
            cache_dirs = ";".join(paths)
        out.append(f"{key}={value}\n")

    out.extend(f"{key}={value}\n" for key, value in settings.items())
    return "".join(out), cache_dirs, cache_enabled


def _require(params: dict[str, str], key: str, message: str) -> str:
    if key not in params:
        raise RpcError(StatusCode.INVALID_ARGUMENT, message)
    return params[key]


@dataclass
class DingoTool:
    """Filesystem management through the ``dingo`` tool."""

    tool_path: str = TOOL_PATH
    tool_params: dict[str, str] = field(default_factory=dict)
    quota_params: dict[str, str] = field(default_factory=dict)

    def _fail(self, what: str, args: list[str], outcome: _Outcome) -> RpcError:
        return RpcError(
            StatusCode.INTERNAL,
            f"{what} failed. cmd: {self.tool_path} {args}, "
            f"output: {outcome.output}, err: {outcome.error}",
        )

    def create_fs(self, params: dict[str, str], secrets: dict[str, str]) -> None:
        """Create the filesystem named in the secrets unless it already exists."""
        fs_name = secrets.get("name", "")
        self.validate_common_params_v2(secrets)
        mds_addr = self.tool_params["mdsaddr"]
        if self.check_fs_existed(fs_name, mds_addr):
            log.info("file system: %s has been already created", fs_name)
            return

        log.info("check fs [%s] not existed, begin create fs [%s]", fs_name, fs_name)
        self.validate_create_fs_params_v2(secrets)
        self.tool_params["fsname"] = fs_name
        create_args = ["create", "fs"] + [
            f"--{key}={value}" for key, value in self.tool_params.items()
        ]
        outcome = _run([self.tool_path, *create_args])
        log.info("'create fs' args: %s, output: %s", create_args, outcome.output)
        if outcome.error is not None:
            raise self._fail("dingo create fs", create_args, outcome)

        query_args = ["query", "fs", f"--fsname={fs_name}", f"--mdsaddr={mds_addr}"]
        outcome = _run([self.tool_path, *query_args])
        log.info("'query fs' args: %s, output: %s", query_args, outcome.output)
        if outcome.error is not None or "Error" in outcome.output:
            raise self._fail("dingo query fs", query_args, outcome)

        if self.quota_params:
            quota_args = ["config", "fs", f"--fsname={fs_name}", f"--mdsaddr={mds_addr}"]
            quota_args += [f"--{key}={value}" for key, value in self.quota_params.items()]
            log.info("config fs, args: %s", quota_args)
            outcome = _run([self.tool_path, *quota_args])
            if outcome.error is not None:
                raise self._fail("dingo config fs quota", quota_args, outcome)

        log.info("create fs success, fsName: %s, quota: %s", fs_name, self.quota_params)

    def delete_fs(self, volume_id: str, params: dict[str, str]) -> None:
        self.validate_common_params(params)
        self.tool_params["fsname"] = volume_id
        self.tool_params["noconfirm"] = "1"
        delete_args = ["delete-fs"] + [
            f"-{key}={value}" for key, value in self.tool_params.items()
        ]
        outcome = _run([self.tool_path, *delete_args])
        if outcome.error is not None:
            raise self._fail("curvefs_tool delete-fs", delete_args, outcome)

    def check_fs_existed(self, fs_name: str, mds_addr: str) -> bool:
        """True when ``dingo list fs`` reports a filesystem with this name."""
        list_args = ["list", "fs", f"--mdsaddr={mds_addr}"]
        outcome = _run([self.tool_path, *list_args])
        if outcome.error is not None:
            raise self._fail("dingo list fs", list_args, outcome)
        log.debug("current fs reported by 'dingo list fs':\n%s", outcome.output)
        for info in parse_fs_list(outcome.output):
            if info.name == fs_name:
                log.info("find ID: %d, Name: %s, Status: %s", info.id, info.name, info.status)
                return True
        return False

    def set_volume_quota(
        self, mds_addr: str, path: str, fs_name: str, capacity: str, inodes: str
    ) -> None:
        log.info(
            "set volume quota, mdsaddr: %s, path: %s, fsname: %s, capacity: %s, inodes: %s",
            mds_addr, path, fs_name, capacity, inodes,
        )
        quota_args = [
            "quota", "set", f"--mdsaddr={mds_addr}", f"--path={path}",
            f"--fsname={fs_name}", f"--capacity={capacity}",
        ]
        if inodes.strip():
            quota_args.append(f"--inodes={inodes}")
        outcome = _run([self.tool_path, *quota_args])
        if outcome.error is not None:
            raise self._fail("dingofs config volume quota", quota_args, outcome)

    def validate_common_params(self, params: dict[str, str]) -> None:
        self.tool_params["mdsAddr"] = _require(params, "mdsAddr", "mdsAddr is missing")
        self.tool_params["confPath"] = params.get("toolConfPath", DEFAULT_TOOL_CONF_PATH)

    def validate_common_params_v2(self, params: dict[str, str]) -> None:
        self.tool_params["mdsaddr"] = _require(params, "mdsAddr", "mdsAddr is missing")

    def _validate_backend(self, params: dict[str, str], fs_type: str, s3_keys: tuple[str, ...]) -> None:
        if fs_type == "s3":
            names = ("s3Endpoint", "s3AccessKey", "s3SecretKey", "s3Bucket")
            if not all(name in params for name in names):
                raise RpcError(StatusCode.INVALID_ARGUMENT, "s3Info is incomplete")
            for key, name in zip(s3_keys, names):
                self.tool_params[key] = params[name]
        elif fs_type == "volume":
            self.tool_params["volumeName"] = _require(
                params, "backendVolName", "backendVolName is missing"
            )
            size = _require(params, "backendVolSizeGB", "backendVolSize is missing")
            try:
                size_gb = _parse_int_auto_base(size)
            except ValueError:
                raise RpcError(
                    StatusCode.INVALID_ARGUMENT, "backendVolSize is not integer"
                ) from None
            if size_gb < 10:
                raise RpcError(
                    StatusCode.INVALID_ARGUMENT, "backendVolSize must larger than 10GB"
                )
            self.tool_params["volumeSize"] = size
        else:
            raise RpcError(StatusCode.INVALID_ARGUMENT, f"unsupported fsType {fs_type}")

    def validate_create_fs_params(self, params: dict[str, str]) -> None:
        fs_type = _require(params, "fsType", "fsType is missing")
        self.tool_params["fsType"] = fs_type
        self.tool_params["enableSumInDir"] = params.get("enableSumInDir", "0")
        self._validate_backend(
            params, fs_type, ("s3_endpoint", "s3_ak", "s3_sk", "s3_bucket_name")
        )

    def validate_create_fs_params_v2(self, params: dict[str, str]) -> None:
        fs_type = _require(params, "fsType", "fsType is missing")
        self.tool_params["fstype"] = fs_type
        self._validate_backend(
            params, fs_type, ("s3.endpoint", "s3.ak", "s3.sk", "s3.bucketname")
        )
        if "quotaCapacity" in params:
            self.quota_params["capacity"] = params["quotaCapacity"]
        if "quotaInodes" in params:
            self.quota_params["inodes"] = params["quotaInodes"]

    def get_dfs_id(self, name: str) -> str:
        """The filesystem id is not yet reported by the tool; always empty."""
        return ""


@dataclass
class DingoMounter:
    """Mounts a filesystem with the fuse client and tears the mount down."""

    client_path: str = CLIENT_PATH
    umount_path: str = "umount"
    client_conf_path: str = DEFAULT_CLIENT_CONF_PATH
    pod_mount_base: str = POD_MOUNT_BASE
    mounter_params: dict[str, str] = field(default_factory=dict)

    def mount_fs(
        self,
        mount_path: str,
        params: dict[str, str],
        mount_flags: list[str] | None,
        mount_uuid: str,
        secrets: dict[str, str],
    ) -> int:
        """Start the fuse client on mount_path and return the client's pid."""
        fs_name = secrets.get("name", "")
        log.debug(
            "mount fs, fsname: %s, mountPath: %s, params: %s, flags: %s, uuid: %s",
            fs_name, mount_path, params, mount_flags, mount_uuid,
        )
        self.validate_mount_fs_params(secrets)
        if mount_flags is not None:
            self.mounter_params["conf"] = self.apply_mount_flags(
                self.mounter_params["conf"], mount_flags, mount_uuid
            )
        self.mounter_params["fsname"] = fs_name

        args: list[str] = []
        for option in ("default_permissions", "allow_other"):
            args += ["-o", option]
        for key, value in self.mounter_params.items():
            if key == "cache_dir":
                continue
            if key == "mdsaddr":
                args.append(f"--{key}={value}")
            else:
                args += ["-o", f"{key}={value}"]
        args.append(mount_path)

        try:
            os.makedirs(mount_path, exist_ok=True)
        except OSError as exc:
            raise RpcError(
                StatusCode.INTERNAL,
                f"Failed to create mount point path {mount_path}, err: {exc}",
            ) from exc

        log.debug("fuse client args: %s", args)
        outcome = _run([self.client_path, *args])
        if outcome.error is not None or outcome.pid is None:
            raise RpcError(
                StatusCode.INTERNAL,
                f"curve-fuse mount failed. cmd: {self.client_path} {args}, "
                f"output: {outcome.output}, err: {outcome.error}",
            )
        pid = outcome.pid + 2
        log.debug("fuse client mount success, pid: %d", pid)
        return pid

    def _umount(self, path: str) -> None:
        outcome = _run([self.umount_path, path])
        if outcome.error is not None:
            raise RpcError(
                StatusCode.INTERNAL,
                f"umount {path} failed. output: {outcome.output}, err: {outcome.error}",
            )

    def umount_fs(self, target_path: str, mount_uuid: str, cache_dirs: str) -> None:
        """Unmount the target and the mount directory, then clean up after them."""
        self._umount(target_path)
        mount_dir = f"{self.pod_mount_base}/{mount_uuid}"
        self._umount(mount_dir)
        if not mount_uuid:
            return
        try:
            os.remove(f"{self.client_conf_path}.{mount_uuid}")
        except OSError:
            pass
        for path in cache_dirs.split(";"):
            if path:
                log.info("remove cache dir: %s", path)
                shutil.rmtree(path, ignore_errors=True)
        shutil.rmtree(mount_dir, ignore_errors=True)

    def apply_mount_flags(
        self, orig_conf_path: str, mount_flags: list[str], mount_uuid: str
    ) -> str:
        """Write a per-mount copy of the configuration with the flags applied."""
        conf_path = f"{self.client_conf_path}.{mount_uuid}"
        try:
            with open(orig_conf_path, encoding="utf-8") as src:
                text = src.read()
        except OSError as exc:
            raise RpcError(
                StatusCode.INTERNAL,
                f"applyMountFlag: failed to read conf {orig_conf_path}, {exc}",
            ) from exc

        new_text, cache_dirs, cache_enabled = merge_mount_flags(text, mount_flags, mount_uuid)
        if cache_dirs is not None:
            self.mounter_params["cache_dir"] = cache_dirs

        try:
            with open(conf_path, "w", encoding="utf-8") as dst:
                dst.write(new_text)
        except OSError as exc:
            raise RpcError(
                StatusCode.INTERNAL,
                f"applyMountFlag: failed to write updated conf {conf_path}, {exc}",
            ) from exc

        if cache_enabled:
            for cache_dir in self.mounter_params.get("cache_dir", "").split(";"):
                os.makedirs(cache_dir, mode=0o777, exist_ok=True)
        return conf_path

    def validate_mount_fs_params(self, params: dict[str, str]) -> None:
        self.mounter_params["mdsaddr"] = _require(params, "mdsAddr", "mdsAddr is missing")
        self.mounter_params["conf"] = params.get("clientConfPath", self.client_conf_path)
        self.mounter_params["fstype"] = _require(params, "fsType", "fsType is missing")