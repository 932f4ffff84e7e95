from typing import Literal, Optional
from pydantic import BaseModel, Field

class SOSRequest(BaseModel):
    note: str = ""

class FreezeRequest(BaseModel):
    reason: str = "support"

class ResolveDisputeRequest(BaseModel):
    outcome: Literal["release", "refund", "split"]
    refundAmount: Optional[int] = Field(default=None, gt=0)
    note: str = ""
