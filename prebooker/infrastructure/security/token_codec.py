from __future__ import annotations

import hashlib
import hmac
import logging
import time


logger = logging.getLogger(__name__)


class SecurityTokenCodec:
    """
    HMAC-SHA256 token binding a prebooking id to its exact execution instant.

    Checked locally on the execution webhook instead of a remote signature
    verification round trip. A token issued for one prebooking or instant does
    not verify for another, and stops verifying `max_late_seconds` after the
    instant it was issued for.
    """

    def __init__(self, secret: str, max_late_seconds: int = 600) -> None:
        if not secret:
            raise ValueError("PREBOOKING_SECRET is required to issue execution tokens")
        self._secret = secret.encode("utf-8")
        self._max_late_ms = max_late_seconds * 1000

    def issue(self, prebooking_id: str, execute_at_ms: int) -> str:
        message = f"{prebooking_id}:{int(execute_at_ms)}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(
        self,
        token: str | None,
        prebooking_id: str,
        execute_at_ms: int,
        now_ms: int | None = None,
    ) -> bool:
        if not token or not prebooking_id:
            return False

        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        if now_ms > execute_at_ms + self._max_late_ms:
            logger.warning(
                "Execution token presented too late",
                extra={"prebooking_id": prebooking_id, "late_ms": now_ms - execute_at_ms},
            )
            return False

        expected = self.issue(prebooking_id, execute_at_ms)
        return hmac.compare_digest(expected.encode("ascii"), token.strip().lower().encode("utf-8"))
