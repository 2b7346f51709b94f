"""
MQTT transport adapter. Subscribes to the reader topics and hands every
inbound message to a dispatcher on a worker pool, so handlers for different
readers may run concurrently and none of them blocks paho's network loop.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

import paho.mqtt.client as mqtt

from fizhub.observability.logging import log
from fizhub.settings import settings

Dispatcher = Callable[[str, bytes], None]


def get_mqtt_client() -> mqtt.Client:
    client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=settings.MQTT_CLIENT_ID,
    )
    if settings.MQTT_USERNAME:
        client.username_pw_set(settings.MQTT_USERNAME, settings.MQTT_PASSWORD or None)
    return client


class MQTTTransport:
    def __init__(
        self,
        dispatcher: Dispatcher,
        topics: List[str],
        *,
        client: Optional[mqtt.Client] = None,
        workers: Optional[int] = None,
    ):
        self._dispatcher = dispatcher
        self._topics = list(topics)
        self._client = client or get_mqtt_client()
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, int(workers or settings.MQTT_HANDLER_WORKERS)),
            thread_name_prefix="fizhub-mqtt",
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    def start(self) -> None:
        log(event="mqtt_connecting", host=settings.MQTT_HOST, port=settings.MQTT_PORT)
        # connect_async lets paho retry in the background if the broker is not up yet
        self._client.connect_async(settings.MQTT_HOST, settings.MQTT_PORT, keepalive=settings.MQTT_KEEPALIVE_SEC)
        self._client.loop_start()

    def stop(self) -> None:
        log(event="mqtt_stopping")
        self._client.disconnect()
        self._client.loop_stop()
        self._pool.shutdown(wait=True)

    # paho callbacks (VERSION2 signatures)
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            log(event="mqtt_connect_failed", reasonCode=str(reason_code))
            return
        log(event="mqtt_connected")
        # Subscribing on every (re)connect restores subscriptions after a broker restart
        client.subscribe([(topic, settings.MQTT_QOS) for topic in self._topics])
        for topic in self._topics:
            log(event="mqtt_subscribed", topic=topic, qos=settings.MQTT_QOS)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        log(event="mqtt_disconnected", reasonCode=str(reason_code))

    def _on_message(self, client, userdata, msg):
        try:
            self._pool.submit(self._handle, msg.topic, bytes(msg.payload))
        except RuntimeError:
            # Pool already shut down during stop()
            log(event="mqtt_message_after_stop", topic=msg.topic)

    def _handle(self, topic: str, payload: bytes) -> None:
        try:
            self._dispatcher(topic, payload)
        except Exception as e:
            log(event="mqtt_handler_failed", topic=topic, errorType=type(e).__name__, error=str(e)[:300])
