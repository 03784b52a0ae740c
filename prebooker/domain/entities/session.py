from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SessionKind(str, Enum):
    INTERACTIVE = "interactive"  # the user's browser login
    UNATTENDED = "unattended"  # dedicated to automated execution, survives logout


@dataclass(frozen=True)
class CredentialBundle:
    token: str
    cookies: dict[str, str] = field(default_factory=dict)
    fingerprint: str | None = None


@dataclass(frozen=True)
class Session:
    user_ref: str
    kind: SessionKind
    credentials: CredentialBundle
    created_at: datetime
    last_refreshed_at: datetime | None = None
    refresh_count: int = 0
    last_refresh_error: str | None = None

    def age_seconds(self, now: datetime) -> float:
        reference = self.last_refreshed_at or self.created_at
        return (now - reference).total_seconds()


@dataclass(frozen=True)
class RefreshResult:
    success: bool
    new_bundle: CredentialBundle | None = None
    logged_out: bool = False
    error: str | None = None
