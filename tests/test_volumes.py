import unittest
from disk_sentry.core import wql
from disk_sentry.core.errors import ProviderUnavailable, SourceMiss
from disk_sentry.core.volumes import MIN_POLL_INTERVAL_S, VolumeMapper, poll_for_mount
from fake_provider import FakeObject, FakeProvider

DISK_PATH = 'Win32_DiskDrive.DeviceID="\\\\\\\\.\\\\PHYSICALDRIVE2"'

def partition(index):
    return FakeObject(path=f'Win32_DiskPartition.DeviceID="Disk #2, Partition #{index}"')

def logical_disk(letter, **props):
    return FakeObject(path=f'Win32_LogicalDisk.DeviceID="{letter}"', DeviceID=letter, **props)

class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

class TestVolumeMapper(unittest.TestCase):
    def setUp(self):
        self.provider = FakeProvider()
        self.mapper = VolumeMapper(self.provider)
        self.part0, self.part1 = partition(0), partition(1)
        self.provider.responses[wql.associators_of(DISK_PATH, wql.DISK_TO_PARTITION)] = [self.part0, self.part1]
        self.provider.responses[wql.associators_of(self.part0.path_token, wql.LOGICAL_DISK_TO_PARTITION)] = [
            logical_disk("E:", VolumeName="LD LABEL", FileSystem="FAT32", FreeSpace="1024"),
        ]
        self.provider.responses[wql.associators_of(self.part1.path_token, wql.LOGICAL_DISK_TO_PARTITION)] = [
            logical_disk("F:", VolumeName=" Backup ", FileSystem=" NTFS ", FreeSpace="2048"),
        ]
        self.provider.responses[wql.volume_by_drive_letter("E:")] = [
            FakeObject(Label=" G-DRIVE ", FileSystem="exFAT", FreeSpace="987654321", Capacity="1000"),
        ]

    def test_collects_every_volume_in_discovery_order(self):
        volumes = self.mapper.map_volumes(DISK_PATH)
        self.assertEqual([v.mount_point for v in volumes], ["E:", "F:"])

    def test_volume_query_preferred_over_logical_disk(self):
        e_drive = self.mapper.map_volumes(DISK_PATH)[0]
        self.assertEqual(e_drive.volume_name, "G-DRIVE")
        self.assertEqual(e_drive.file_system, "exFAT")
        self.assertEqual(e_drive.free_space_in_bytes, 987654321)

    def test_logical_disk_fallback_when_no_volume_row(self):
        f_drive = self.mapper.map_volumes(DISK_PATH)[1]
        self.assertEqual(f_drive.volume_name, "Backup")
        self.assertEqual(f_drive.file_system, "NTFS")
        self.assertEqual(f_drive.free_space_in_bytes, 2048)

    def test_first_only_stops_at_first_hit(self):
        volumes = self.mapper.map_volumes(DISK_PATH, first_only=True)
        self.assertEqual([v.mount_point for v in volumes], ["E:"])
        self.assertEqual(self.provider.query_count(
            wql.associators_of(self.part1.path_token, wql.LOGICAL_DISK_TO_PARTITION)), 0)

    def test_failing_partition_is_skipped(self):
        self.provider.responses[wql.associators_of(self.part0.path_token, wql.LOGICAL_DISK_TO_PARTITION)] = \
            SourceMiss("association timed out")
        volumes = self.mapper.map_volumes(DISK_PATH)
        self.assertEqual([v.mount_point for v in volumes], ["F:"])

    def test_logical_disk_without_letter_is_ignored(self):
        self.provider.responses[wql.associators_of(self.part1.path_token, wql.LOGICAL_DISK_TO_PARTITION)] = [
            FakeObject(DeviceID="  "),
        ]
        self.assertEqual(len(self.mapper.map_volumes(DISK_PATH)), 1)

    def test_unformatted_or_vanished_disk_maps_to_empty(self):
        self.assertEqual(self.mapper.map_volumes('Win32_DiskDrive.DeviceID="other"'), [])
        self.provider.responses[wql.associators_of(DISK_PATH, wql.DISK_TO_PARTITION)] = SourceMiss("not found")
        self.assertEqual(self.mapper.map_volumes(DISK_PATH), [])
        self.assertEqual(self.mapper.map_volumes(""), [])

    def test_provider_unavailable_propagates(self):
        self.provider.responses[wql.associators_of(DISK_PATH, wql.DISK_TO_PARTITION)] = ProviderUnavailable("down")
        with self.assertRaises(ProviderUnavailable):
            self.mapper.map_volumes(DISK_PATH)

class CountingMapper:
    def __init__(self, hit_on=None):
        self.calls = 0
        self.hit_on = hit_on

    def map_volumes(self, disk_path, first_only=False):
        self.calls += 1
        if self.hit_on is not None and self.calls >= self.hit_on:
            return ["E:"]
        return []

class TestMountPoller(unittest.TestCase):
    def test_returns_as_soon_as_a_mount_appears(self):
        clock = FakeClock()
        mapper = CountingMapper(hit_on=3)
        result = poll_for_mount(mapper, DISK_PATH, ceiling_s=4.0, interval_s=0.25, clock=clock, sleep=clock.sleep)
        self.assertEqual(result, ["E:"])
        self.assertEqual(mapper.calls, 3)
        self.assertEqual(clock.sleeps, [0.25, 0.25])

    def test_runs_until_the_full_ceiling(self):
        clock = FakeClock()
        mapper = CountingMapper()
        result = poll_for_mount(mapper, DISK_PATH, ceiling_s=1.0, interval_s=0.25, clock=clock, sleep=clock.sleep)
        self.assertEqual(result, [])
        self.assertAlmostEqual(clock.now - 100.0, 1.0)
        self.assertEqual(mapper.calls, 5)

    def test_last_sleep_is_clipped_to_the_ceiling(self):
        clock = FakeClock()
        poll_for_mount(CountingMapper(), DISK_PATH, ceiling_s=0.6, interval_s=0.25, clock=clock, sleep=clock.sleep)
        self.assertAlmostEqual(sum(clock.sleeps), 0.6)
        self.assertAlmostEqual(clock.sleeps[-1], 0.1)

    def test_zero_interval_still_sleeps_between_attempts(self):
        clock = FakeClock()
        mapper = CountingMapper()
        poll_for_mount(mapper, DISK_PATH, ceiling_s=0.05, interval_s=0, clock=clock, sleep=clock.sleep)
        self.assertEqual(clock.sleeps[0], MIN_POLL_INTERVAL_S)
        self.assertTrue(all(s > 0 for s in clock.sleeps))
        self.assertLessEqual(mapper.calls, 7)

    def test_zero_ceiling_still_tries_once(self):
        clock = FakeClock()
        mapper = CountingMapper()
        self.assertEqual(poll_for_mount(mapper, DISK_PATH, ceiling_s=0, clock=clock, sleep=clock.sleep), [])
        self.assertEqual(mapper.calls, 1)
        self.assertEqual(clock.sleeps, [])

if __name__ == "__main__":
    unittest.main()
