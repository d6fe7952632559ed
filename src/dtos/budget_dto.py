"""
DTOs for the budget ledger and the credential key pool.
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from src.entities.rate_budget import DEFAULT_CREDENTIAL_ID


class BudgetDecision(BaseModel):
    """Outcome of an admission check against the daily ledger."""

    allowed: bool
    remaining: int = Field(..., ge=0)
    used: int = Field(..., ge=0)


class CredentialInfo(BaseModel):
    """A credential chosen for the next call. ``daily_limit`` is None when unlimited."""

    credential_id: str
    api_key: str = Field(..., repr=False)
    daily_limit: int | None
    remaining: int | None

    @property
    def is_default(self) -> bool:
        return self.credential_id == DEFAULT_CREDENTIAL_ID


class ProfileSlots(BaseModel):
    """Informational concurrent-profile allowance for an owner."""

    used: int
    total: int
    remaining: int


class CredentialCreate(BaseModel):
    api_key: str = Field(..., min_length=4, max_length=255)
    label: str | None = Field(default=None, max_length=100)
    daily_limit: int = Field(default=100, gt=0)
    is_unlimited: bool = False


class CredentialRead(BaseModel):
    """Credential as shown to its owner; the key itself is never returned."""

    id: str
    api_name: str
    label: str | None
    daily_limit: int
    is_active: bool
    is_unlimited: bool
    created_at: datetime
    api_key_masked: str = "****"

    model_config = ConfigDict(from_attributes=True)


class RateBudgetRead(BaseModel):
    api_name: str
    credential_id: str
    usage_date: date
    calls_made: int
    calls_limit: int | None
    last_call_at: datetime | None

    model_config = ConfigDict(from_attributes=True)
