"""
Pretend to be a reader on the local broker: register, report status, then
publish one tap per uid given on the command line. Handy for exercising a
running hub end-to-end without hardware.

    python scripts/simulate_reader.py reader-01 04a1b2c3 04d4e5f6 04a7b8c9
"""
import json
import sys
import time

from fizhub.settings import settings
from fizhub.transport.mqtt_conn import get_mqtt_client


def main():
    if len(sys.argv) < 2:
        print("usage: simulate_reader.py DEVICE_ID [UID ...]")
        sys.exit(2)
    device_id, uids = sys.argv[1], sys.argv[2:]

    client = get_mqtt_client()
    client.connect(settings.MQTT_HOST, settings.MQTT_PORT)
    client.loop_start()

    def publish(topic, payload):
        info = client.publish(topic, json.dumps(payload), qos=settings.MQTT_QOS)
        info.wait_for_publish()
        print(f"-> {topic} {payload}")

    publish(settings.MQTT_TOPIC_REGISTER, {
        "device_id": device_id, "type": "fiz-reader", "firmware": "sim-1.0", "ip": "127.0.0.1",
    })
    publish(settings.MQTT_TOPIC_STATUS, {"device_id": device_id, "status": "online", "rssi": -42})
    for uid in uids:
        publish(settings.MQTT_TOPIC_UID, {"device_id": device_id, "uid": uid, "timestamp": int(time.time())})
        time.sleep(0.2)

    client.loop_stop()
    client.disconnect()

if __name__ == "__main__":
    main()
