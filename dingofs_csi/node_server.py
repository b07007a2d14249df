"""Node service of the DingoFS CSI driver: mounts filesystems into pods."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from dingofs_csi.csi import (
    NodePublishVolumeRequest,
    NodeServiceCapabilityType,
    NodeUnpublishVolumeRequest,
    RpcError,
    StatusCode,
)
from dingofs_csi.driver import CSIDriver
from dingofs_csi.fstool import POD_MOUNT_BASE, DingoMounter, DingoTool
from dingofs_csi.servers import DefaultNodeServer

log = logging.getLogger(__name__)

_ILLEGAL_PATH_CHARS = frozenset(";|&$`\n")
_BYTES_PER_GB = 1 << 30


def _valid_path(path: str) -> bool:
    return not any(char in _ILLEGAL_PATH_CHARS for char in path)


def _kill(pid: int) -> None:
    os.kill(pid, signal.SIGKILL)


class _SystemMounter:
    """Mount-table queries and bind mounts through the system ``mount`` command."""

    def is_mount_point(self, path: str) -> bool:
        return os.path.ismount(path)

    def mount(self, source: str, target: str, fs_type: str, options: list[str]) -> None:
        args = ["mount", "-t", fs_type]
        if options:
            args += ["-o", ",".join(options)]
        args += [source, target]
        result = subprocess.run(args, capture_output=True, text=True)
        if result.returncode != 0:
            raise OSError(f"mount failed: {result.stderr.strip() or result.stdout.strip()}")


@dataclass
class _MountRecord:
    mount_uuid: str
    pid: int
    cache_dirs: str


class NodeServer(DefaultNodeServer):
    """Publishes volumes by mounting the filesystem and bind-mounting a subdirectory."""

    def __init__(
        self,
        driver: CSIDriver,
        mounter: Any = None,
        tool_factory: Callable[[], Any] = DingoTool,
        fs_mounter_factory: Callable[[], Any] = DingoMounter,
        pod_mount_base: str = POD_MOUNT_BASE,
        new_uuid: Callable[[], str] | None = None,
        kill_process: Callable[[int], None] = _kill,
    ) -> None:
        super().__init__(driver)
        self.mounter = mounter if mounter is not None else _SystemMounter()
        self.tool_factory = tool_factory
        self.fs_mounter_factory = fs_mounter_factory
        self.pod_mount_base = pod_mount_base
        self.new_uuid = new_uuid or (lambda: str(uuid.uuid4()))
        self.kill_process = kill_process
        self.mount_records: dict[str, _MountRecord] = {}

    @staticmethod
    def _check_target(target_path: str) -> None:
        if not target_path:
            raise RpcError(StatusCode.INVALID_ARGUMENT, "Target path is missing")
        if not _valid_path(target_path):
            raise RpcError(StatusCode.INVALID_ARGUMENT, f"Illegal TargetPath: {target_path}")

    def node_publish_volume(self, request: NodePublishVolumeRequest) -> None:
        """Create the filesystem if needed, mount it and bind it to the target."""
        mount_uuid = self.new_uuid()
        log.info("node_publish_volume called with %r", request)
        volume_id = request.volume_id
        target_path = request.target_path
        self._check_target(target_path)

        mount_path = os.path.join(self.pod_mount_base, mount_uuid)
        if self.mounter.is_mount_point(mount_path):
            log.debug("%s is already mounted", mount_path)
            return

        context = request.volume_context
        secrets = request.secrets
        tool = self.tool_factory()
        try:
            tool.create_fs(context, secrets)
        except RpcError as exc:
            raise RpcError(StatusCode.INTERNAL, f"Create fs failed: {exc}") from exc

        fs_mounter = self.fs_mounter_factory()
        capability = request.volume_capability
        mount_flags = (
            list(capability.mount_flags)
            if capability is not None and capability.is_mount
            else None
        )
        log.debug("mountPath: %s", mount_path)
        try:
            pid = fs_mounter.mount_fs(mount_path, context, mount_flags, mount_uuid, secrets)
        except RpcError as exc:
            raise RpcError(
                StatusCode.INTERNAL,
                f"Failed to mount dingofs by mount point [ {volume_id} ], err: {exc}",
            ) from exc

        if not self.mounter.is_mount_point(mount_path):
            raise RpcError(StatusCode.INTERNAL, f"Mount check failed, mountPath: {mount_path}")

        data_path = os.path.join(self.pod_mount_base, mount_uuid, volume_id)
        for what, path in (("data", data_path), ("target", target_path)):
            try:
                os.makedirs(path, exist_ok=True)
            except OSError as exc:
                raise RpcError(
                    StatusCode.INTERNAL, f"Failed to create {what} path {path}, err: {exc}"
                ) from exc

        self.mount_records[target_path] = _MountRecord(
            mount_uuid=mount_uuid,
            pid=pid,
            cache_dirs=fs_mounter.mounter_params.get("cache_dir", ""),
        )

        log.debug("bind %s to %s", data_path, target_path)
        try:
            self.mounter.mount(data_path, target_path, "none", ["bind"])
        except OSError as exc:
            if os.path.isdir(target_path):
                os.rmdir(target_path)
            else:
                os.remove(target_path)
            raise RpcError(
                StatusCode.INTERNAL,
                f"Failed to bind {data_path} to {target_path}, err: {exc}",
            ) from exc

        capacity_text = context.get("capacity")
        if capacity_text is None:
            return
        try:
            capacity_bytes = int(capacity_text, 10)
        except ValueError as exc:
            raise RpcError(
                StatusCode.INTERNAL, f"invalid capacity {capacity_text}: {exc}"
            ) from exc
        capacity_gb = capacity_bytes // _BYTES_PER_GB
        try:
            tool.set_volume_quota(
                tool.tool_params.get("mdsaddr", ""),
                volume_id,
                secrets.get("name", ""),
                str(capacity_gb),
                context.get("inodes", ""),
            )
        except RpcError as exc:
            raise RpcError(StatusCode.INTERNAL, f"Set volume quota failed: {exc}") from exc

    def node_unpublish_volume(self, request: NodeUnpublishVolumeRequest) -> None:
        """Unmount the target and the filesystem, then stop the fuse client."""
        log.debug("node_unpublish_volume called with %r", request)
        target_path = request.target_path
        self._check_target(target_path)

        if not self.mounter.is_mount_point(target_path):
            log.debug("%s is not mounted", target_path)
            return

        record = self.mount_records.get(target_path)
        fs_mounter = self.fs_mounter_factory()
        try:
            fs_mounter.umount_fs(
                target_path,
                record.mount_uuid if record else "",
                record.cache_dirs if record else "",
            )
        except RpcError as exc:
            raise RpcError(
                StatusCode.INTERNAL, f"Failed to umount {target_path}, err: {exc}"
            ) from exc

        if self.mounter.is_mount_point(target_path):
            raise RpcError(
                StatusCode.INTERNAL, f"Umount check failed, targetPath: {target_path}"
            )

        if record is None:
            raise RpcError(
                StatusCode.INTERNAL,
                f"Failed to convert pid to int, err: no mount record for {target_path}",
            )
        try:
            self.kill_process(record.pid)
        except OSError as exc:
            raise RpcError(
                StatusCode.INTERNAL, f"Failed to kill process, err: {exc}"
            ) from exc

        del self.mount_records[target_path]

    def node_get_info(self, request: Any) -> str:
        log.debug("node_get_info called with %r", request)
        return self.driver.node_id

    def node_get_capabilities(self, request: Any) -> list[NodeServiceCapabilityType]:
        log.debug("node_get_capabilities called with %r", request)
        return []