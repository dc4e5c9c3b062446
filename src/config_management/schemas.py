from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

class ConfigKey:
    MAX_TOPUP_AMOUNT_PAISA = "MAX_TOPUP_AMOUNT_PAISA"

class SystemConfigItem(BaseModel):
    key: str
    value: str
    description: Optional[str] = None
    updated_at: datetime

class UpdateConfigRequest(BaseModel):
    value: str = Field(..., min_length=1)

class MaxTopUpResponse(BaseModel):
    max_limit_paisa: int
