from datetime import datetime
from pydantic import BaseModel


class EntityVerificationResult(BaseModel):
    is_valid: bool  # format-level validity
    exists: bool  # registry-level existence
    entity_name: str | None = None
    entity_type: str | None = None
    entity_status: str | None = None
    gst_registered: bool | None = None
    registration_date: str | None = None
    last_updated: str | None = None
    industry: str | None = None
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.exists and self.entity_status in ("LIVE", "PRESUMED_ACTIVE")


class CachedVerification(EntityVerificationResult):
    cached_at: datetime
    expires_at: datetime

    def to_result(self) -> EntityVerificationResult:
        return EntityVerificationResult(**self.model_dump(exclude={"cached_at", "expires_at"}))
