from typing import Optional

from pydantic import BaseModel

from app.schemas.subscription import UsageCounters


class UsageSummary(UsageCounters):
    plan_name: str
    subscription_status: str


class UsageIncrementRequest(BaseModel):
    action: str


class UsageIncrementResponse(BaseModel):
    action: str
    usage: Optional[UsageCounters] = None
    recorded: bool
