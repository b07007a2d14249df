"""Read the kernel mount table and resolve CSI target paths of pods against it."""

from __future__ import annotations

import enum
import errno
import logging
import os
from collections.abc import Iterable
from concurrent import futures
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

DEFAULT_MOUNTINFO_PATH = "/proc/self/mountinfo"
CHECK_TIMEOUT = 1.0

# place for subpath mounts
CONTAINER_SUBPATH_DIRECTORY = "volume-subpaths"
# place for csi mounts
CONTAINER_CSI_DIRECTORY = "volumes/kubernetes.io~csi"

_MIN_FIELDS = 10
_CORRUPT_ERRNOS = frozenset(
    {errno.ENOTCONN, errno.ESTALE, errno.EIO, errno.EACCES, errno.EHOSTDOWN}
)


@dataclass(frozen=True)
class MountInfo:
    """One line of a mountinfo file."""

    id: int
    parent_id: int
    major: int
    minor: int
    root: str
    mount_point: str
    options: tuple[str, ...]
    optional_fields: tuple[str, ...]
    fs_type: str
    source: str
    super_options: tuple[str, ...]


def _parse_line(line: str) -> MountInfo:
    columns = line.split()
    if len(columns) < _MIN_FIELDS:
        raise ValueError(
            f"wrong number of fields (expected at least {_MIN_FIELDS}, "
            f"got {len(columns)}): {line}"
        )
    try:
        mount_id = int(columns[0])
        parent_id = int(columns[1])
    except ValueError as exc:
        raise ValueError(f"invalid mount id in line: {line}") from exc
    device = columns[2].split(":")
    if len(device) != 2:
        raise ValueError(f"parsing '{columns[2]}' failed: unexpected minor:major pair")
    try:
        major, minor = int(device[0]), int(device[1])
    except ValueError as exc:
        raise ValueError(f"parsing '{columns[2]}' failed: not a number") from exc

    try:
        separator = columns.index("-", 6)
    except ValueError:
        raise ValueError(f"mountinfo line has no separator: {line}") from None
    rest = columns[separator + 1:]
    if len(rest) < 3:
        raise ValueError(f"expect 3 fields after separator, got {len(rest)}: {line}")
    return MountInfo(
        id=mount_id,
        parent_id=parent_id,
        major=major,
        minor=minor,
        root=columns[3],
        mount_point=columns[4],
        options=tuple(columns[5].split(",")),
        optional_fields=tuple(columns[6:separator]),
        fs_type=rest[0],
        source=rest[1],
        super_options=tuple(rest[2].split(",")),
    )


def parse_mount_info(path: str = DEFAULT_MOUNTINFO_PATH) -> list[MountInfo]:
    """Parse a mountinfo file; raise ValueError on a malformed line."""
    with open(path, encoding="utf-8", errors="surrogateescape") as stream:
        return [_parse_line(line) for line in stream if line.strip()]


def _stat_with_timeout(path: str, timeout: float) -> None:
    executor = futures.ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(os.stat, path)
        try:
            future.result(timeout=timeout)
        except futures.TimeoutError:
            raise TimeoutError(f"stat {path} timed out after {timeout}s") from None
    finally:
        executor.shutdown(wait=False)


def _is_corrupted(exc: OSError) -> bool:
    return exc.errno in _CORRUPT_ERRNOS


class TargetStatus(enum.IntEnum):
    NOT_EXIST = 0
    MOUNTED = 1
    NOT_MOUNT = 2
    CORRUPT = 3
    UNEXPECT = 4


@dataclass
class TargetItem:
    """A target path together with what the mount table says about it."""

    target: str
    subpath: str = ""
    count: int = 0
    inconsistent: bool = False
    status: TargetStatus = TargetStatus.NOT_EXIST
    error: OSError | None = None

    def check(self, mounted: bool) -> None:
        """Set status from a stat of the target; mounted tells if it is in the table."""
        try:
            _stat_with_timeout(self.target, CHECK_TIMEOUT)
        except FileNotFoundError:
            self.status = TargetStatus.NOT_EXIST
        except OSError as exc:
            if _is_corrupted(exc):
                self.status = TargetStatus.CORRUPT
            else:
                self.status = TargetStatus.UNEXPECT
                self.error = exc
        else:
            self.status = TargetStatus.MOUNTED if mounted else TargetStatus.NOT_MOUNT


@dataclass
class MountItem:
    """A pod's CSI target and the subPath mounts derived from it."""

    pod_exist: bool
    pod_deleted: bool
    base_target: TargetItem
    sub_path_targets: list[TargetItem] = field(default_factory=list)


def _split_csi(target: str) -> list[str] | None:
    pair = target.split(CONTAINER_CSI_DIRECTORY)
    return pair if len(pair) == 2 else None


def _trim_suffix(text: str, suffix: str) -> str:
    return text[: -len(suffix)] if suffix and text.endswith(suffix) else text


def get_pod_uid(target: str) -> str:
    """The pod UID in a CSI target path, or an empty string."""
    pair = _split_csi(target)
    if pair is None:
        return ""
    pod_dir = _trim_suffix(pair[0], "/")
    index = pod_dir.rfind("/")
    if index <= 0:
        return ""
    return pod_dir[index + 1:]


def get_pv_name(target: str) -> str:
    """The volume name in a CSI target path, or an empty string."""
    pair = _split_csi(target)
    if pair is None:
        return ""
    rest = pair[1][1:] if pair[1].startswith("/") else pair[1]
    index = rest.find("/")
    if index <= 0:
        return ""
    return rest[:index]


class MountInfoTable:
    """The mount table together with which pods exist and which are deleted."""

    def __init__(self) -> None:
        self.mounts: list[MountInfo] = []
        # key is pod UID
        self.deleted_pods: dict[str, bool] = {}

    def parse(self, path: str = DEFAULT_MOUNTINFO_PATH) -> None:
        self.mounts = parse_mount_info(path)

    def set_pod_status(self, uid: str, deleted: bool) -> None:
        self.deleted_pods[uid] = deleted

    def set_pods_status(self, pods: Iterable[tuple[str, bool]] | None) -> None:
        """Replace the known pods with (uid, deleted) pairs."""
        self.deleted_pods = {}
        if pods is None:
            return
        for uid, deleted in pods:
            log.debug("set pod deleted status: %s deleted=%s", uid, deleted)
            self.deleted_pods[uid] = deleted

    def resolve_target(self, target: str) -> MountItem | None:
        """Resolve a CSI target and its subPath mounts; None if not a CSI target."""
        pair = _split_csi(target)
        if pair is None:
            return None
        pod_dir = _trim_suffix(pair[0], "/")
        pod_uid = get_pod_uid(target)
        if not pod_uid:
            return None
        pv_name = get_pv_name(target)
        if not pv_name:
            return None

        pod_exist = pod_uid in self.deleted_pods
        pod_deleted = self.deleted_pods.get(pod_uid, False)

        items = self.resolve_target_items(target, False)
        if len(items) == 1:
            base = items[0]
        else:
            base = TargetItem(target=target)
            base.check(False)
        prefix = "/".join([pod_dir, CONTAINER_SUBPATH_DIRECTORY, pv_name])
        return MountItem(
            pod_exist=pod_exist,
            pod_deleted=pod_deleted,
            base_target=base,
            sub_path_targets=self.resolve_target_items(prefix, True),
        )

    def resolve_target_items(self, path: str, is_prefix: bool) -> list[TargetItem]:
        """Group mount table entries at path (or under the prefix) by mount point."""
        records: dict[str, TargetItem] = {}
        for info in self.mounts:
            matched = (
                info.mount_point.startswith(path) if is_prefix else info.mount_point == path
            )
            if not matched:
                continue
            subpath = _trim_suffix(info.root, "//deleted").strip("/")
            record = records.get(info.mount_point)
            if record is None:
                records[info.mount_point] = TargetItem(
                    target=info.mount_point, subpath=subpath, count=1
                )
            else:
                if record.subpath != subpath:
                    record.inconsistent = True
                record.count += 1
        for record in records.values():
            record.check(True)
        return list(records.values())