import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # MQTT transport (readers publish, hub subscribes)
    MQTT_HOST: str = os.getenv("MQTT_HOST", "localhost")
    MQTT_PORT: int = int(os.getenv("MQTT_PORT", "1883"))
    MQTT_USERNAME: str = os.getenv("MQTT_USERNAME", "fizhub")
    MQTT_PASSWORD: str = os.getenv("MQTT_PASSWORD", "fizpassword")
    MQTT_CLIENT_ID: str = os.getenv("MQTT_CLIENT_ID", "fizhub")
    MQTT_KEEPALIVE_SEC: int = int(os.getenv("MQTT_KEEPALIVE_SEC", "60"))
    MQTT_QOS: int = int(os.getenv("MQTT_QOS", "1"))
    MQTT_TOPIC_REGISTER: str = os.getenv("MQTT_TOPIC_REGISTER", "fiz/register")
    MQTT_TOPIC_STATUS: str = os.getenv("MQTT_TOPIC_STATUS", "fiz/status")
    MQTT_TOPIC_UID: str = os.getenv("MQTT_TOPIC_UID", "fiz/uid")
    # Worker threads for inbound message handlers, off the network loop
    MQTT_HANDLER_WORKERS: int = int(os.getenv("MQTT_HANDLER_WORKERS", "4"))
    MQTT_ENABLED: bool = os.getenv("MQTT_ENABLED", "true").lower() == "true"

    # Device liveness
    DEVICE_LIVENESS_TIMEOUT_SEC: float = float(os.getenv("DEVICE_LIVENESS_TIMEOUT_SEC", "60"))
    DEVICE_SWEEP_INTERVAL_SEC: float = float(os.getenv("DEVICE_SWEEP_INTERVAL_SEC", "30"))

    # Power signal
    POWER_IDLE_TIMEOUT_SEC: float = float(os.getenv("POWER_IDLE_TIMEOUT_SEC", "300"))
    POWER_DEEP_SLEEP_DELAY_SEC: float = float(os.getenv("POWER_DEEP_SLEEP_DELAY_SEC", "600"))
    POWER_CHECK_INTERVAL_SEC: float = float(os.getenv("POWER_CHECK_INTERVAL_SEC", "1"))

    # External validation service
    VALIDATION_URL: str = os.getenv("VALIDATION_URL", "http://nfc.cursive.team")
    VALIDATION_TIMEOUT_SEC: float = float(os.getenv("VALIDATION_TIMEOUT_SEC", "30"))
    VALIDATION_RETRY_COUNT: int = int(os.getenv("VALIDATION_RETRY_COUNT", "0"))
    VALIDATION_RETRY_DELAY_SEC: float = float(os.getenv("VALIDATION_RETRY_DELAY_SEC", "1"))
    VALIDATION_WORKERS: int = int(os.getenv("VALIDATION_WORKERS", "2"))
    # Rendered form of a collected uid, as shown on the status surface
    TAP_URL_BASE: str = os.getenv("TAP_URL_BASE", "https://nfc.cursive.team/tap?uid=")

    # Recorder stand-in: completion is emitted after this long if nobody stops it first
    RECORDING_MAX_DURATION_SEC: float = float(os.getenv("RECORDING_MAX_DURATION_SEC", "180"))

    # Bounded wait for in-flight validation calls on shutdown
    SHUTDOWN_TIMEOUT_SEC: float = float(os.getenv("SHUTDOWN_TIMEOUT_SEC", "10"))

    # Observability
    ENABLE_UID_REDACTION: bool = os.getenv("ENABLE_UID_REDACTION", "false").lower() == "true"
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

settings = Settings()
