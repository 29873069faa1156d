import threading
import time
import unittest
from disk_sentry.core.correlator import EventCorrelator
from disk_sentry.core.errors import ProviderUnavailable
from disk_sentry.core.events import DeviceRef, EventType
from disk_sentry.core.provider import EventKind
from fake_provider import FakeProvider

def ref(n=1):
    device_id = f"\\\\.\\PHYSICALDRIVE{n}"
    return DeviceRef(path=f'Win32_DiskDrive.DeviceID="{device_id}"', device_id=device_id,
                     properties={"DeviceID": device_id, "Index": n})

class TestEventCorrelator(unittest.TestCase):
    def setUp(self):
        self.provider = FakeProvider()
        self.correlator = EventCorrelator(self.provider, within_s=2, slice_ms=20)

    def assert_all_closed(self):
        self.assertEqual(len(self.provider.subscriptions), 2)
        self.assertTrue(all(s.closed for s in self.provider.subscriptions))

    def test_creation_is_classified_attached(self):
        self.provider.emit_when_ready(EventKind.CREATION, ref(2))
        event = self.correlator.wait_for_event(timeout_ms=5000)
        self.assertIsNotNone(event)
        self.assertEqual(event.event_type, EventType.ATTACHED)
        self.assertEqual(event.ref.device_id, "\\\\.\\PHYSICALDRIVE2")
        self.assert_all_closed()

    def test_deletion_is_classified_detached(self):
        self.provider.emit_when_ready(EventKind.DELETION, ref(3))
        event = self.correlator.wait_for_event(timeout_ms=5000)
        self.assertEqual(event.event_type, EventType.DETACHED)
        self.assertEqual(event.ref.properties["Index"], 3)
        self.assert_all_closed()

    def test_opens_one_subscription_per_kind(self):
        self.correlator.wait_for_event(timeout_ms=0)
        kinds = sorted(s.kind.value for s in self.provider.subscriptions)
        self.assertEqual(kinds, ["Creation", "Deletion"])

    def test_timeout_returns_none_not_earlier(self):
        start = time.monotonic()
        event = self.correlator.wait_for_event(timeout_ms=300)
        elapsed = time.monotonic() - start
        self.assertIsNone(event)
        self.assertGreaterEqual(elapsed, 0.29)
        self.assertLess(elapsed, 3.0)
        self.assert_all_closed()

    def test_no_timeout_waits_until_an_event(self):
        self.provider.emit_when_ready(EventKind.CREATION, ref(4), delay=0.2)
        event = self.correlator.wait_for_event(timeout_ms=None)
        self.assertEqual(event.event_type, EventType.ATTACHED)

    def test_only_the_first_event_is_kept(self):
        def emit_both():
            self.provider.wait_for_subscribers(2)
            self.provider.emit(EventKind.CREATION, ref(5))
            self.provider.emit(EventKind.DELETION, ref(6))
        threading.Thread(target=emit_both, daemon=True).start()

        event = self.correlator.wait_for_event(timeout_ms=5000)
        self.assertIn(event.event_type, (EventType.ATTACHED, EventType.DETACHED))
        # The losing event is not replayed to the next call
        self.assertIsNone(self.correlator.wait_for_event(timeout_ms=100))

    def test_subscribe_failure_fails_fast(self):
        self.provider.subscribe_error = RuntimeError("access denied")
        start = time.monotonic()
        with self.assertRaises(ProviderUnavailable):
            self.correlator.wait_for_event(timeout_ms=10000)
        self.assertLess(time.monotonic() - start, 5.0)

    def test_provider_unavailable_is_passed_through(self):
        self.provider.subscribe_error = ProviderUnavailable("WMI service stopped")
        with self.assertRaisesRegex(ProviderUnavailable, "WMI service stopped"):
            self.correlator.wait_for_event(timeout_ms=1000)

    def test_listener_failure_mid_wait_surfaces(self):
        self.provider.poll_error = OSError("RPC server unavailable")
        with self.assertRaises(ProviderUnavailable):
            self.correlator.wait_for_event(timeout_ms=None)
        self.assert_all_closed()

    def test_back_to_back_calls_each_tear_down(self):
        for _ in range(3):
            self.assertIsNone(self.correlator.wait_for_event(timeout_ms=30))
        self.assertEqual(len(self.provider.subscriptions), 6)
        self.assertEqual(self.provider.open_subscriptions(), [])

class TestEventSession(unittest.TestCase):
    def setUp(self):
        self.provider = FakeProvider()
        self.correlator = EventCorrelator(self.provider, within_s=2, slice_ms=20)

    def test_subscriptions_stay_open_across_waits(self):
        with self.correlator.session() as session:
            for _ in range(5):
                self.assertIsNone(session.wait_for_event(timeout_ms=20))
            self.assertEqual(len(self.provider.subscriptions), 2)
            self.assertEqual(len(self.provider.open_subscriptions()), 2)
        self.assertEqual(self.provider.open_subscriptions(), [])

    def test_events_between_waits_are_queued(self):
        with self.correlator.session() as session:
            self.provider.emit(EventKind.CREATION, ref(1))
            self.provider.emit(EventKind.DELETION, ref(2))
            events = [session.wait_for_event(timeout_ms=2000) for _ in range(2)]
        kinds = sorted(e.event_type.value for e in events)
        self.assertEqual(kinds, ["Attached", "Detached"])

    def test_session_failure_surfaces(self):
        self.provider.poll_error = OSError("RPC server unavailable")
        session = self.correlator.session()
        with self.assertRaises(ProviderUnavailable):
            session.open()
            session.wait_for_event(timeout_ms=2000)
        session.close()
        self.assertEqual(self.provider.open_subscriptions(), [])

    def test_subscribe_failure_on_open(self):
        self.provider.subscribe_error = RuntimeError("access denied")
        with self.assertRaises(ProviderUnavailable):
            with self.correlator.session():
                pass

    def test_wait_requires_open_session(self):
        with self.assertRaises(ProviderUnavailable):
            self.correlator.session().wait_for_event(timeout_ms=10)

if __name__ == "__main__":
    unittest.main()
