from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from vets_api.models.enums import VerificationProvider


class StartVerificationRequest(BaseModel):
    provider: VerificationProvider = VerificationProvider.mock


class StartVerificationResponse(BaseModel):
    request_id: str
    redirect_url: str | None


class PendingVerificationResponse(BaseModel):
    request_id: str
    provider: str
    created_at: datetime
    expires_at: datetime


class CompleteVerificationRequest(BaseModel):
    request_id: str = Field(min_length=1, max_length=64)
    success: bool
    provider_ref: str | None = Field(default=None, max_length=255)
    # Non-PII only (e.g. {"reason": "document_mismatch"}).
    metadata: dict[str, Any] = Field(default_factory=dict)


class CompletionResponse(BaseModel):
    user_id: UUID
    verified: bool
