from dataclasses import dataclass, field
from typing import List

ONLINE = "online"
OFFLINE = "offline"

@dataclass
class Device:
    # Identity (as sent by the reader on fiz/register)
    device_id: str = ""
    device_type: str = ""
    firmware: str = ""
    ip: str = ""

    # Liveness
    status: str = ONLINE  # online/offline
    rssi: int = 0
    last_seen: int = 0  # epoch ms

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "type": self.device_type,
            "firmware": self.firmware,
            "ip": self.ip,
            "status": self.status,
            "rssi": self.rssi,
            "last_seen": self.last_seen,
        }

@dataclass
class SessionSnapshot:
    """Read-only copy of the bonding session, taken under the machine's lock."""
    phase: str = ""
    collected_uids: List[str] = field(default_factory=list)
    validated_accounts: List[str] = field(default_factory=list)
    bond_id: str = ""
    last_event_at: int = 0  # epoch ms
