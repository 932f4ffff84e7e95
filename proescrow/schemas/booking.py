from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional

class Location(BaseModel):
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

class BookingCreate(BaseModel):
    clientId: str
    providerId: str
    tier: int = Field(ge=1, le=4)
    scheduledAt: datetime
    price: int = Field(gt=0)  # minor currency units
    scope: str = ""
    location: Location = Field(default_factory=Location)
    paymentMethodRef: str = ""

class CheckInRequest(BaseModel):
    code: str = Field(min_length=1, max_length=12)

class CompleteRequest(BaseModel):
    notes: str = ""

class CancelRequest(BaseModel):
    reason: str = ""

class OTPOut(BaseModel):
    bookingId: str
    code: str
    expiresAt: Optional[str] = None
