from __future__ import annotations

from vets_api.models.audit import AuditLogEntry  # noqa: F401
from vets_api.models.auth import AuthSession  # noqa: F401
from vets_api.models.base import Base as Base  # noqa: F401
from vets_api.models.enums import (  # noqa: F401
    AuditAction,
    VerificationProvider,
    VerificationStatus,
)
from vets_api.models.identity import Profile, User  # noqa: F401
from vets_api.models.verification import VerificationEvent  # noqa: F401
