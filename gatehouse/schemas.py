from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    name: str
    phone: str
    password: str
    role: str
    apartment_id: Optional[int] = None
    flat_id: Optional[int] = None
    block_id: Optional[int] = None


class LoginRequest(BaseModel):
    phone: str
    password: str


class InviteRequest(BaseModel):
    name: str
    phone: Optional[str] = None
    purpose: str
    expected_arrival: Optional[datetime] = None


class EditInviteRequest(BaseModel):
    name: str
    phone: Optional[str] = None
    purpose: Optional[str] = None
    expected_arrival: Optional[datetime] = None


class ManualSignInRequest(BaseModel):
    name: str
    phone: Optional[str] = None
    flat_id: Optional[int] = None


class CheckInRequest(BaseModel):
    qr_token: Optional[str] = None


class MarkReadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notification_ids: list[int] = Field(default_factory=list, alias='notificationIds')


class PushRegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: Optional[str] = None
    device_type: Optional[str] = Field(None, alias='deviceType')


class PushUnregisterRequest(BaseModel):
    token: Optional[str] = None
