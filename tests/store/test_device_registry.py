import json
import threading
import pytest
from unittest.mock import patch, MagicMock
from fizhub.core.errors import MalformedMessage
from fizhub.store.device_registry import DeviceRegistry
from fizhub.store.models import OFFLINE, ONLINE


class FakeClock:
    def __init__(self, t=1_700_000_000_000):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, sec):
        self.t += int(sec * 1000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return DeviceRegistry(liveness_timeout_sec=60, sweep_interval_sec=30, clock=clock)


def _register(registry, device_id="reader-1", **extra):
    payload = {"device_id": device_id, "type": "nfc", "firmware": "1.2.0", "ip": "10.0.0.5"}
    payload.update(extra)
    return registry.dispatch("fiz/register", json.dumps(payload).encode())


def test_register_creates_online_device(registry, clock):
    _register(registry)
    d = registry.get_device("reader-1")
    assert d.status == ONLINE
    assert d.device_type == "nfc"
    assert d.firmware == "1.2.0"
    assert d.ip == "10.0.0.5"
    assert d.last_seen == clock.t


def test_reregistration_updates_in_place(registry, clock):
    _register(registry)
    clock.advance(5)
    _register(registry, firmware="1.3.0", ip="10.0.0.9")

    devices = registry.list_devices()
    assert len(devices) == 1
    assert devices[0].firmware == "1.3.0"
    assert devices[0].ip == "10.0.0.9"
    assert devices[0].last_seen == clock.t


def test_silent_device_goes_offline_after_timeout(registry, clock):
    _register(registry)
    clock.advance(61)
    assert registry.sweep_liveness() == ["reader-1"]
    assert registry.get_device("reader-1").status == OFFLINE


def test_exactly_at_timeout_stays_online(registry, clock):
    _register(registry)
    clock.advance(60)
    assert registry.sweep_liveness() == []
    assert registry.get_device("reader-1").status == ONLINE


def test_status_report_keeps_device_alive(registry, clock):
    _register(registry)
    clock.advance(40)
    registry.dispatch("fiz/status", {"device_id": "reader-1", "status": "online", "rssi": -48})
    clock.advance(21)

    registry.sweep_liveness()

    d = registry.get_device("reader-1")
    assert d.status == ONLINE
    assert d.rssi == -48


def test_tap_refreshes_liveness(registry, clock):
    _register(registry)
    clock.advance(50)
    registry.dispatch("fiz/uid", {"device_id": "reader-1", "uid": "04a1"})
    clock.advance(50)
    assert registry.sweep_liveness() == []


def test_offline_device_not_demoted_twice(registry, clock):
    _register(registry)
    clock.advance(61)
    registry.sweep_liveness()
    clock.advance(61)
    assert registry.sweep_liveness() == []


def test_reregister_brings_device_back_online(registry, clock):
    _register(registry)
    clock.advance(61)
    registry.sweep_liveness()
    _register(registry)
    assert registry.get_device("reader-1").status == ONLINE


@patch("fizhub.store.device_registry.metrics")
def test_malformed_register_dropped(mock_metrics, registry):
    registry.dispatch("fiz/register", b"{not json")
    registry.dispatch("fiz/register", {"type": "nfc"})
    assert registry.list_devices() == []
    assert mock_metrics.increment_message_dropped.call_count == 2


def test_status_from_unknown_device_is_ignored(registry):
    assert registry.handle_status("ghost", "online", -40) is False
    registry.dispatch("fiz/status", {"device_id": "ghost", "status": "online"})
    assert registry.get_device("ghost") is None
    assert registry.list_devices() == []


@patch("fizhub.store.device_registry.log")
def test_unknown_topic_logged(mock_log, registry):
    registry.dispatch("fiz/other", {"device_id": "x"})
    assert mock_log.call_args.kwargs["event"] == "message_unknown_topic"


def test_tap_forwarded_with_normalised_timestamp(registry):
    handler = MagicMock()
    registry.set_tap_handler(handler)

    registry.dispatch("fiz/uid", {"device_id": "unregistered", "uid": "04a1", "timestamp": 1700000000})

    handler.assert_called_once_with("unregistered", "04a1", 1_700_000_000_000)
    assert registry.get_device("unregistered") is None


def test_tap_without_uid_not_forwarded(registry):
    handler = MagicMock()
    registry.set_tap_handler(handler)
    registry.dispatch("fiz/uid", {"device_id": "reader-1"})
    handler.assert_not_called()


def test_list_devices_returns_copies(registry):
    _register(registry)
    snapshot = registry.list_devices()
    snapshot[0].status = OFFLINE
    snapshot[0].ip = "tampered"
    d = registry.get_device("reader-1")
    assert d.status == ONLINE
    assert d.ip == "10.0.0.5"


def test_topics_cover_three_message_kinds(registry):
    assert sorted(registry.topics) == ["fiz/register", "fiz/status", "fiz/uid"]


def test_sweeper_returns_after_stop():
    registry = DeviceRegistry(liveness_timeout_sec=60, sweep_interval_sec=0.01)
    stop = threading.Event()
    t = threading.Thread(target=registry.run_sweeper, args=(stop,))
    t.start()
    stop.set()
    t.join(timeout=2)
    assert not t.is_alive()


def test_concurrent_registrations(registry):
    threads = [threading.Thread(target=_register, args=(registry, f"reader-{i}")) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)
    assert len(registry.list_devices()) == 20


@pytest.mark.parametrize("status", ["busy", "ONLINE", "sleeping"])
def test_non_canonical_status_dropped_and_device_still_ages_out(registry, clock, status):
    _register(registry)
    registry.dispatch("fiz/status", {"device_id": "reader-1", "status": status, "rssi": -50})
    assert registry.get_device("reader-1").status == ONLINE

    clock.advance(3600)
    assert registry.sweep_liveness() == ["reader-1"]
    assert registry.get_device("reader-1").status == OFFLINE


def test_handle_status_rejects_unknown_value(registry):
    _register(registry)
    with pytest.raises(MalformedMessage):
        registry.handle_status("reader-1", "busy", -40)


def test_reported_offline_then_register_again(registry, clock):
    _register(registry)
    registry.dispatch("fiz/status", {"device_id": "reader-1", "status": "offline"})
    assert registry.get_device("reader-1").status == OFFLINE
    _register(registry)
    assert registry.get_device("reader-1").status == ONLINE


def test_tap_with_non_finite_timestamp_still_forwarded(registry):
    handler = MagicMock()
    registry.set_tap_handler(handler)

    registry.dispatch("fiz/uid", b'{"device_id": "reader-1", "uid": "04a1", "timestamp": 1e400}')

    handler.assert_called_once()
    assert handler.call_args.args[:2] == ("reader-1", "04a1")
