from typing import List, Literal
from pydantic import BaseModel, Field

class ReceiveUIDRequest(BaseModel):
    uid: str = Field(min_length=1)

class StatusResponse(BaseModel):
    phase: str
    power_state: str
    uids: List[str] = Field(default_factory=list)
    # Collected uids rendered as verification tap URLs
    tap_urls: List[str] = Field(default_factory=list)
    bond_id: str = ""
    last_activity: int  # epoch ms

class DeviceResponse(BaseModel):
    device_id: str
    type: str = ""
    firmware: str = ""
    ip: str = ""
    status: str
    rssi: int = 0
    last_seen: int  # epoch ms

class ActionResponse(BaseModel):
    status: Literal["success", "error"] = "success"
    phase: str = ""
    detail: str = ""
