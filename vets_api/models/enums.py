from __future__ import annotations

import enum


class VerificationStatus(enum.StrEnum):
    pending = "pending"
    success = "success"
    failed = "failed"


class VerificationProvider(enum.StrEnum):
    mock = "mock"
    govx = "govx"


class AuditAction(enum.StrEnum):
    login = "login"
    logout = "logout"
    verify_start = "verify_start"
    verify_success = "verify_success"
    verify_fail = "verify_fail"
    badge_generated = "badge_generated"
    session_rotated = "session_rotated"
    profile_updated = "profile_updated"
