from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

class EventType(Enum):
    ATTACHED = "Attached"
    DETACHED = "Detached"

@dataclass
class DeviceRef:
    """Raw device reference captured from the triggering event."""
    path: str
    device_id: str = ""
    properties: Dict[str, Any] = field(default_factory=dict)

@dataclass
class DeviceObservation:
    device_path: str
    device_id: str = ""
    disk_index: Optional[int] = None
    sources: Dict[str, Any] = field(default_factory=dict)

@dataclass
class VolumeRecord:
    mount_point: str
    volume_name: str = ""
    file_system: str = ""
    free_space_in_bytes: int = 0

    def __post_init__(self):
        self.mount_point = _trim(self.mount_point)
        self.volume_name = _trim(self.volume_name)
        self.file_system = _trim(self.file_system)
        self.free_space_in_bytes = int(self.free_space_in_bytes or 0)

@dataclass
class ResolvedDiskRecord:
    event_type: EventType
    disk_number: int = 0
    name: str = ""
    serial_number: str = ""
    model: str = ""
    firmware_version: str = ""
    manufacturer: str = ""
    pnp_device_id: str = ""
    friendly_name: str = ""
    caption: str = ""
    hardware_id: str = ""
    interface_type: str = ""
    size_in_bytes: int = 0
    volumes: List[VolumeRecord] = field(default_factory=list)

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, str) or (f.type is str and value is None):
                setattr(self, f.name, _trim(value))

    @property
    def primary_volume(self) -> VolumeRecord:
        """First discovered volume; an empty record when nothing is mounted."""
        if self.volumes:
            return self.volumes[0]
        return VolumeRecord(mount_point="")

    @property
    def mount_point(self) -> str:
        return self.primary_volume.mount_point

    def to_dict(self) -> Dict[str, Any]:
        """Flat camelCase mapping, single-value volume fields first, then the lists."""
        primary = self.primary_volume
        return {
            "eventType": self.event_type.value,
            "diskNumber": self.disk_number,
            "name": self.name,
            "serialNumber": self.serial_number,
            "model": self.model,
            "firmwareVersion": self.firmware_version,
            "manufacturer": self.manufacturer,
            "pnpDeviceID": self.pnp_device_id,
            "friendlyName": self.friendly_name,
            "caption": self.caption,
            "hardwareID": self.hardware_id,
            "mountPoint": primary.mount_point,
            "volumeName": primary.volume_name,
            "interfaceType": self.interface_type,
            "fileSystem": primary.file_system,
            "sizeInBytes": self.size_in_bytes,
            "freeSpaceInBytes": primary.free_space_in_bytes,
            "mountPoints": [v.mount_point for v in self.volumes],
            "volumeNames": [v.volume_name for v in self.volumes],
            "fileSystems": [v.file_system for v in self.volumes],
            "freeSpacesInBytes": [v.free_space_in_bytes for v in self.volumes],
        }

def _trim(value: Optional[str]) -> str:
    if value is None:
        return ""
    return str(value).strip()
