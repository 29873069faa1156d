"""WQL query text for the disk classes the engine reads.

Every identifier interpolated into a query goes through `escape_wql`.
"""
from typing import Optional

DISK_CLASS = "Win32_DiskDrive"
STRUCTURED_DISK_CLASS = "MSFT_Disk"
DISK_TO_PARTITION = "Win32_DiskDriveToDiskPartition"
LOGICAL_DISK_TO_PARTITION = "Win32_LogicalDiskToPartition"

_CONTROL_CHARS = {chr(i): None for i in range(32)}
_CONTROL_CHARS[chr(127)] = None

def escape_wql(value: Optional[str]) -> str:
    """Escape backslashes and quotes for a quoted WQL literal; drop control characters."""
    if not value:
        return ""
    cleaned = str(value).translate(_CONTROL_CHARS)
    return (cleaned.replace("\\", "\\\\")
                   .replace("'", "\\'")
                   .replace('"', '\\"'))

def event_query(notification: str, within_s: int, wmi_class: str = DISK_CLASS) -> str:
    return (f"SELECT * FROM __Instance{notification}Event WITHIN {int(within_s)} "
            f"WHERE TargetInstance ISA '{wmi_class}'")

def disk_by_device_id(device_id: str) -> str:
    return f"SELECT * FROM {DISK_CLASS} WHERE DeviceID = '{escape_wql(device_id)}'"

def pnp_by_device_id(device_id: str) -> str:
    return f"SELECT PNPDeviceID FROM {DISK_CLASS} WHERE DeviceID = '{escape_wql(device_id)}'"

def structured_disk_by_number(number: int) -> str:
    return f"SELECT * FROM {STRUCTURED_DISK_CLASS} WHERE Number = {int(number)}"

def physical_media_by_tag(device_id: str) -> str:
    return f"SELECT SerialNumber FROM Win32_PhysicalMedia WHERE Tag = '{escape_wql(device_id)}'"

def pnp_entity_by_id(pnp_device_id: str) -> str:
    return f"SELECT HardwareID FROM Win32_PnPEntity WHERE PNPDeviceID = '{escape_wql(pnp_device_id)}'"

def volume_by_drive_letter(drive_letter: str) -> str:
    return ("SELECT Label, FileSystem, FreeSpace, Capacity FROM Win32_Volume "
            f"WHERE DriveLetter = '{escape_wql(drive_letter)}'")

def associators_of(object_path: str, assoc_class: str) -> str:
    return f"ASSOCIATORS OF {{{object_path}}} WHERE AssocClass = {assoc_class}"
