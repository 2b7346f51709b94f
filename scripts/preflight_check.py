#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    # Keep the check offline: no broker connection during import
    os.environ.setdefault("MQTT_ENABLED", "false")

    import fizhub.main
    print("Import fizhub.main: OK")

    import fizhub.transport.mqtt_conn
    print("Import fizhub.transport.mqtt_conn: OK")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
