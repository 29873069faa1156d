import json
import unittest
from disk_sentry.core.events import EventType, ResolvedDiskRecord, VolumeRecord

class TestResolvedDiskRecord(unittest.TestCase):
    def test_strings_are_trimmed(self):
        record = ResolvedDiskRecord(EventType.ATTACHED, model="  WD Blue  ", serial_number=None,
                                    caption="\tDisk\n")
        self.assertEqual(record.model, "WD Blue")
        self.assertEqual(record.serial_number, "")
        self.assertEqual(record.caption, "Disk")

    def test_trimming_is_idempotent(self):
        record = ResolvedDiskRecord(EventType.DETACHED, name=" \\\\.\\PHYSICALDRIVE1 ")
        again = ResolvedDiskRecord(EventType.DETACHED, name=record.name)
        self.assertEqual(record.name, again.name)

    def test_empty_record_has_empty_mount(self):
        record = ResolvedDiskRecord(EventType.ATTACHED)
        self.assertEqual(record.mount_point, "")
        data = record.to_dict()
        self.assertEqual(data["mountPoint"], "")
        self.assertEqual(data["freeSpaceInBytes"], 0)
        self.assertEqual(data["mountPoints"], [])

    def test_to_dict_keys_and_order(self):
        record = ResolvedDiskRecord(
            EventType.ATTACHED, disk_number=1, size_in_bytes=500,
            volumes=[VolumeRecord(" E: ", " DATA ", "NTFS", "100"), VolumeRecord("F:", "", "FAT32", 7)],
        )
        data = record.to_dict()
        self.assertEqual(list(data)[:17], [
            "eventType", "diskNumber", "name", "serialNumber", "model", "firmwareVersion",
            "manufacturer", "pnpDeviceID", "friendlyName", "caption", "hardwareID", "mountPoint",
            "volumeName", "interfaceType", "fileSystem", "sizeInBytes", "freeSpaceInBytes",
        ])
        self.assertEqual(data["eventType"], "Attached")
        self.assertEqual(data["mountPoint"], "E:")
        self.assertEqual(data["volumeName"], "DATA")
        self.assertEqual(data["freeSpaceInBytes"], 100)
        self.assertEqual(data["mountPoints"], ["E:", "F:"])
        self.assertEqual(data["fileSystems"], ["NTFS", "FAT32"])
        self.assertEqual(data["freeSpacesInBytes"], [100, 7])

    def test_to_dict_is_json_serializable(self):
        record = ResolvedDiskRecord(EventType.DETACHED, volumes=[VolumeRecord("E:")])
        self.assertEqual(json.loads(json.dumps(record.to_dict()))["eventType"], "Detached")

class TestVolumeRecord(unittest.TestCase):
    def test_free_space_coerced(self):
        self.assertEqual(VolumeRecord("E:", free_space_in_bytes=None).free_space_in_bytes, 0)
        self.assertEqual(VolumeRecord("E:", free_space_in_bytes="42").free_space_in_bytes, 42)

if __name__ == "__main__":
    unittest.main()
