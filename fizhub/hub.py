"""
Hub
---
Constructs one instance of every component, wires them, runs the periodic
tasks and the transport, and shuts everything down in order:
periodic tasks -> transport -> recorder -> bounded wait on validation calls.
"""
from __future__ import annotations

import threading
import time
from typing import List, Optional

from fizhub.clients.validation import ValidationClient
from fizhub.core.orchestrator import wire_components
from fizhub.core.power import PowerSignal
from fizhub.core.state_machine import BondingStateMachine
from fizhub.devices.indicator import Indicator
from fizhub.devices.recorder import Recorder
from fizhub.observability.logging import log
from fizhub.settings import settings
from fizhub.store.device_registry import DeviceRegistry
from fizhub.transport.mqtt_conn import MQTTTransport
from fizhub.utils.tasks import BackgroundTasks


def _remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())


class Hub:
    def __init__(
        self,
        *,
        registry: Optional[DeviceRegistry] = None,
        machine: Optional[BondingStateMachine] = None,
        power: Optional[PowerSignal] = None,
        validator: Optional[ValidationClient] = None,
        recorder: Optional[Recorder] = None,
        indicator: Optional[Indicator] = None,
        transport: Optional[MQTTTransport] = None,
        enable_transport: Optional[bool] = None,
    ):
        self.registry = registry or DeviceRegistry()
        self.machine = machine or BondingStateMachine()
        self.power = power or PowerSignal()
        self.validator = validator or ValidationClient()
        self.recorder = recorder or Recorder()
        self.indicator = indicator or Indicator()
        self.tasks = BackgroundTasks(max_workers=settings.VALIDATION_WORKERS, name="fizhub-validation")

        if enable_transport is None:
            enable_transport = settings.MQTT_ENABLED
        if transport is None and enable_transport:
            transport = MQTTTransport(self.registry.dispatch, self.registry.topics)
        self.transport = transport

        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._started = False

        wire_components(
            registry=self.registry,
            machine=self.machine,
            power=self.power,
            validator=self.validator,
            recorder=self.recorder,
            indicator=self.indicator,
            tasks=self.tasks,
        )

    @property
    def running(self) -> bool:
        return self._started and not self._stop.is_set()

    def start(self) -> None:
        if self._started:
            return
        log(event="hub_starting")
        self._started = True
        self.machine.start()
        self._spawn("fizhub-liveness-sweeper", self.registry.run_sweeper)
        self._spawn("fizhub-power-ticker", self.power.run_ticker)
        if self.transport is not None:
            self.transport.start()
        log(event="hub_started", transport=self.transport is not None)

    def _spawn(self, name: str, target) -> None:
        t = threading.Thread(target=target, args=(self._stop,), name=name, daemon=True)
        t.start()
        self._threads.append(t)

    def shutdown(self, timeout_sec: Optional[float] = None) -> bool:
        """
        Stop everything within one overall timeout. Returns True if every
        outstanding external call finished before it ran out.
        """
        if timeout_sec is None:
            timeout_sec = settings.SHUTDOWN_TIMEOUT_SEC
        deadline = time.monotonic() + timeout_sec
        log(event="hub_shutting_down")
        self._stop.set()
        for t in self._threads:
            t.join(timeout=_remaining(deadline))
        self._threads = []

        if self.transport is not None:
            self.transport.stop()
        # Shutdown is not a completed recording; observers are not told
        self.recorder.stop_recording(notify=False)

        clean = self.tasks.shutdown(_remaining(deadline))
        self.validator.close()
        log(event="hub_shutdown_complete", clean=clean)
        return clean
