from pydantic import BaseModel, Field

class ScopeChangeCreate(BaseModel):
    description: str = Field(min_length=1, max_length=4000)
    amount: int = Field(gt=0)  # minor currency units
