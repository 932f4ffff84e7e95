from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional

from proescrow.models.enums import IssueCategory

class ReportIssueRequest(BaseModel):
    description: str = Field(min_length=1, max_length=4000)
    category: IssueCategory = IssueCategory.OTHER

class AcceptFixRequest(BaseModel):
    fixDate: Optional[datetime] = None
    notes: str = ""

class FixCompleteRequest(BaseModel):
    notes: str = ""

class DisputeIssueRequest(BaseModel):
    reason: str = ""

class EscalateIssueRequest(BaseModel):
    reason: str = ""
