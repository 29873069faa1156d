import time
from typing import Any, Callable, List, Optional
from . import wql
from .errors import ProviderUnavailable
from .events import VolumeRecord
from .logger import logger
from .resolver import LookupSource, ObjectSource, coalesce

# Floor for the mount poller sleep; an interval of 0 does not busy-loop WMI
MIN_POLL_INTERVAL_S = 0.01

class VolumeMapper:
    """
    Maps a physical disk to its mounted volumes.
    Chain: DiskDrive -> DiskPartition -> LogicalDisk, then Win32_Volume by drive letter.
    """

    def __init__(self, provider):
        self.provider = provider

    def map_volumes(self, disk_path: str, first_only: bool = False) -> List[VolumeRecord]:
        volumes: List[VolumeRecord] = []
        if not disk_path:
            return volumes

        try:
            partitions = self.provider.query(wql.associators_of(disk_path, wql.DISK_TO_PARTITION))
        except ProviderUnavailable:
            raise
        except Exception as e:
            logger.debug(f"No partitions for {disk_path}: {e}")
            return volumes

        for partition in partitions:
            try:
                part_path = self.provider.path_of(partition)
                logical_disks = self.provider.query(wql.associators_of(part_path, wql.LOGICAL_DISK_TO_PARTITION))
            except ProviderUnavailable:
                raise
            except Exception as e:
                # One bad partition does not abort the walk
                logger.debug(f"Skipping partition on {disk_path}: {e}")
                continue

            for logical_disk in logical_disks:
                record = self._read_volume(logical_disk)
                if record is None:
                    continue
                volumes.append(record)
                if first_only:
                    return volumes

        return volumes

    def _read_volume(self, logical_disk: Any) -> Optional[VolumeRecord]:
        ldk = ObjectSource(self.provider, logical_disk, name="Win32_LogicalDisk")
        mount_point = ldk.try_get_field("DeviceID")  # e.g. "E:"
        if not mount_point:
            return None

        # Win32_Volume carries fresher label / free space than the logical disk
        volume = LookupSource(self.provider, wql.volume_by_drive_letter(mount_point), name="Win32_Volume")
        if volume.row() is not None:
            return VolumeRecord(
                mount_point=mount_point,
                volume_name=coalesce(volume.try_get_field("Label")),
                file_system=coalesce(volume.try_get_field("FileSystem")),
                free_space_in_bytes=volume.try_get_number("FreeSpace") or 0,
            )

        return VolumeRecord(
            mount_point=mount_point,
            volume_name=coalesce(ldk.try_get_field("VolumeName")),
            file_system=coalesce(ldk.try_get_field("FileSystem")),
            free_space_in_bytes=ldk.try_get_number("FreeSpace") or 0,
        )

def poll_for_mount(mapper: VolumeMapper, disk_path: str,
                   ceiling_s: float = 4.0, interval_s: float = 0.25,
                   first_only: bool = False,
                   clock: Callable[[], float] = time.monotonic,
                   sleep: Callable[[float], None] = time.sleep) -> List[VolumeRecord]:
    """
    Re-run the volume mapper until a volume shows up or the ceiling elapses.
    Drive letters are assigned some time after the disk instance is created.
    Intervals below MIN_POLL_INTERVAL_S are raised to it.
    """
    deadline = clock() + max(ceiling_s, 0)
    attempts = 0
    while True:
        volumes = mapper.map_volumes(disk_path, first_only=first_only)
        attempts += 1
        if volumes:
            logger.debug(f"Mount found for {disk_path} after {attempts} attempt(s)")
            return volumes
        remaining = deadline - clock()
        if remaining <= 0:
            logger.debug(f"No mount for {disk_path} within {ceiling_s}s ({attempts} attempts)")
            return []
        sleep(min(max(interval_s, MIN_POLL_INTERVAL_S), remaining))
