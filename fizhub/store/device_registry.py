"""
Device Registry
---------------
Authoritative map of reader id -> liveness record, fed by the three inbound
message kinds (register / status / uid). It owns no bonding logic: taps are
forwarded to whatever handler the orchestrator installs.

All writes take the exclusive side of one RWLock; snapshot reads take the
shared side and hand out copies, never the live records.
"""
from __future__ import annotations

import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional

import fizhub.observability.metrics as metrics
from fizhub.core.errors import MalformedMessage
from fizhub.observability.logging import log
from fizhub.settings import settings
from fizhub.store.models import Device, OFFLINE, ONLINE
from fizhub.transport.messages import (
    RawPayload,
    RegisterMessage,
    StatusMessage,
    TapMessage,
    decode,
)
from fizhub.utils.lock import RWLock
from fizhub.utils.time import now_ms, parse_timestamp_ms

TapHandler = Callable[[str, str, int], None]


class DeviceRegistry:
    def __init__(
        self,
        *,
        liveness_timeout_sec: Optional[float] = None,
        sweep_interval_sec: Optional[float] = None,
        clock: Callable[[], int] = now_ms,
    ):
        if liveness_timeout_sec is None:
            liveness_timeout_sec = settings.DEVICE_LIVENESS_TIMEOUT_SEC
        if sweep_interval_sec is None:
            sweep_interval_sec = settings.DEVICE_SWEEP_INTERVAL_SEC
        self.liveness_timeout_ms = int(liveness_timeout_sec * 1000)
        self.sweep_interval_sec = float(sweep_interval_sec)
        self._clock = clock
        self._lock = RWLock()
        self._devices: Dict[str, Device] = {}
        self._tap_handler: Optional[TapHandler] = None
        self._topics: Dict[str, Callable[[RawPayload], None]] = {
            settings.MQTT_TOPIC_REGISTER: self.handle_register,
            settings.MQTT_TOPIC_STATUS: self._dispatch_status,
            settings.MQTT_TOPIC_UID: self._dispatch_tap,
        }

    def set_tap_handler(self, handler: TapHandler) -> None:
        """Install the callback receiving (device_id, uid, timestamp_ms) for every tap."""
        self._tap_handler = handler

    @property
    def topics(self) -> List[str]:
        return list(self._topics.keys())

    # ------------------------------------------------------------------
    # Inbound handlers
    # ------------------------------------------------------------------
    def handle_register(self, payload: RawPayload) -> Device:
        msg = decode(RegisterMessage, payload)
        now = self._clock()
        with self._lock.write_locked():
            device = self._devices.get(msg.device_id)
            created = device is None
            if created:
                device = Device(device_id=msg.device_id)
                self._devices[msg.device_id] = device
            # Re-registration updates the existing record in place
            device.device_type = msg.type
            device.firmware = msg.firmware
            device.ip = msg.ip
            device.status = ONLINE
            device.last_seen = now
            out = replace(device)
        log(
            event="device_registered",
            deviceId=msg.device_id,
            ip=msg.ip,
            firmware=msg.firmware,
            created=created,
        )
        return out

    def handle_status(self, device_id: str, status: str, rssi: int) -> bool:
        """
        Update a known device's status. Unknown devices are ignored: a reader
        must register before its status reports count. Returns True if applied.
        """
        if status not in (ONLINE, OFFLINE):
            raise MalformedMessage(f"status must be online or offline, got {status!r}")
        now = self._clock()
        with self._lock.write_locked():
            device = self._devices.get(device_id)
            if device is not None:
                device.status = status
                device.rssi = int(rssi)
                device.last_seen = now
        if device is None:
            log(event="status_unknown_device", deviceId=device_id)
            return False
        return True

    def handle_tap(self, device_id: str, uid: str, timestamp=None) -> None:
        """
        Refresh liveness of the originating device (if known) and forward the
        uid. The origin is not checked: taps from unregistered readers are
        forwarded too.
        """
        now = self._clock()
        with self._lock.write_locked():
            device = self._devices.get(device_id)
            if device is not None:
                device.last_seen = now
        ts = parse_timestamp_ms(timestamp)
        log(event="tap_received", deviceId=device_id, uid=uid, known=device is not None)
        handler = self._tap_handler
        if handler is not None:
            handler(device_id, uid, ts)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_devices(self) -> List[Device]:
        with self._lock.read_locked():
            return [replace(d) for d in self._devices.values()]

    def get_device(self, device_id: str) -> Optional[Device]:
        with self._lock.read_locked():
            d = self._devices.get(device_id)
            return replace(d) if d is not None else None

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------
    def sweep_liveness(self, now: Optional[int] = None) -> List[str]:
        """Demote online devices silent for longer than the liveness timeout. Returns demoted ids."""
        now = self._clock() if now is None else now
        demoted: List[str] = []
        with self._lock.write_locked():
            for device in self._devices.values():
                if device.status == ONLINE and (now - device.last_seen) > self.liveness_timeout_ms:
                    device.status = OFFLINE
                    demoted.append(device.device_id)
        for device_id in demoted:
            log(event="device_offline", deviceId=device_id)
        metrics.increment_devices_demoted(len(demoted))
        return demoted

    def run_sweeper(self, stop_event: threading.Event) -> None:
        """Periodic liveness sweep; returns within one interval of stop_event being set."""
        log(event="sweeper_started", intervalSec=self.sweep_interval_sec)
        while not stop_event.wait(self.sweep_interval_sec):
            self.sweep_liveness()
        log(event="sweeper_stopped")

    # ------------------------------------------------------------------
    # Transport dispatch
    # ------------------------------------------------------------------
    def dispatch(self, topic: str, payload: RawPayload) -> None:
        """
        Route one raw transport message to its handler. Undecodable payloads
        are logged and dropped; nothing raised here reaches the transport.
        """
        handler = self._topics.get(topic)
        if handler is None:
            log(event="message_unknown_topic", topic=topic)
            return
        try:
            handler(payload)
        except MalformedMessage as e:
            metrics.increment_message_dropped()
            log(event="message_dropped", topic=topic, error=str(e)[:300])

    def _dispatch_status(self, payload: RawPayload) -> None:
        msg = decode(StatusMessage, payload)
        self.handle_status(msg.device_id, msg.status, msg.rssi)

    def _dispatch_tap(self, payload: RawPayload) -> None:
        msg = decode(TapMessage, payload)
        self.handle_tap(msg.device_id, msg.uid, msg.timestamp)
