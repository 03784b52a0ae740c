from functools import lru_cache
import logging

from prebooker.core.config import settings
from prebooker.application.ports.booking_client import BookingClientPort
from prebooker.application.ports.credential_refresher import CredentialRefresherPort
from prebooker.application.ports.delayed_trigger import DelayedTriggerPort
from prebooker.application.ports.prebooking_store import PreBookingStorePort
from prebooker.application.ports.session_store import SessionStorePort
from prebooker.application.use_cases.attempt_booking import AttemptBookingUseCase
from prebooker.application.use_cases.batch_scheduler import BatchSchedulerUseCase
from prebooker.application.use_cases.claim_prebooking import ClaimPreBookingUseCase
from prebooker.application.use_cases.execute_prebooking import ExecutePreBookingUseCase
from prebooker.application.use_cases.fire_booking import FireBookingUseCase
from prebooker.application.use_cases.prebooking_lifecycle import PreBookingLifecycleUseCase
from prebooker.application.use_cases.refresh_sessions import RefreshSessionsUseCase
from prebooker.application.use_cases.session_freshness import SessionFreshnessGuard
from prebooker.application.utils.precise_wait import Clock
from prebooker.infrastructure.aimharder.booking_client import AimHarderBookingClient
from prebooker.infrastructure.aimharder.mock_upstream import MockBookingClient, MockCredentialRefresher
from prebooker.infrastructure.aimharder.refresh_client import AimHarderRefreshClient
from prebooker.infrastructure.qstash.mock_trigger import MockDelayedTrigger
from prebooker.infrastructure.qstash.qstash_trigger import QStashTrigger
from prebooker.infrastructure.security.token_codec import SecurityTokenCodec
from prebooker.infrastructure.store.json_store import JsonPreBookingStore, JsonSessionStore
from prebooker.infrastructure.store.memory_store import MemoryPreBookingStore, MemorySessionStore


_prebooking_store: PreBookingStorePort | None = None
_session_store: SessionStorePort | None = None


def _is_local() -> bool:
    return settings.ENV.lower() in {"dev", "local"}


@lru_cache
def get_clock() -> Clock:
    return Clock()


def get_prebooking_store() -> PreBookingStorePort:
    global _prebooking_store
    if _prebooking_store is None:
        if settings.STORE_PROVIDER.lower() == "memory":
            _prebooking_store = MemoryPreBookingStore(clock=get_clock())
        else:
            _prebooking_store = JsonPreBookingStore(settings.STORE_DATA_DIR, clock=get_clock())
    return _prebooking_store


def get_session_store() -> SessionStorePort:
    global _session_store
    if _session_store is None:
        if settings.STORE_PROVIDER.lower() == "memory":
            _session_store = MemorySessionStore(clock=get_clock())
        else:
            _session_store = JsonSessionStore(settings.STORE_DATA_DIR, clock=get_clock())
    return _session_store


@lru_cache
def get_booking_client() -> BookingClientPort:
    if settings.UPSTREAM_MODE.lower() == "mock":
        logging.getLogger(__name__).info("Using MockBookingClient (UPSTREAM_MODE=mock)")
        return MockBookingClient()
    return AimHarderBookingClient()


@lru_cache
def get_credential_refresher() -> CredentialRefresherPort:
    if settings.UPSTREAM_MODE.lower() == "mock":
        return MockCredentialRefresher()
    return AimHarderRefreshClient()


@lru_cache
def get_delayed_trigger() -> DelayedTriggerPort:
    logger = logging.getLogger(__name__)
    if not settings.QSTASH_TOKEN:
        if _is_local():
            logger.info("Using MockDelayedTrigger (token missing, ENV=dev/local)")
            return MockDelayedTrigger()
        raise ValueError("QSTASH_TOKEN is required to schedule prebooking executions.")
    return QStashTrigger()


def get_token_codec() -> SecurityTokenCodec:
    return SecurityTokenCodec(settings.PREBOOKING_SECRET, max_late_seconds=settings.TOKEN_MAX_LATE_SECONDS)


def get_freshness_guard() -> SessionFreshnessGuard:
    return SessionFreshnessGuard(
        session_store=get_session_store(),
        refresher=get_credential_refresher(),
        staleness_minutes=settings.SESSION_STALENESS_MINUTES,
        clock=get_clock(),
    )


def get_claim_use_case() -> ClaimPreBookingUseCase:
    return ClaimPreBookingUseCase(store=get_prebooking_store(), clock=get_clock())


def get_fire_use_case() -> FireBookingUseCase:
    return FireBookingUseCase(
        store=get_prebooking_store(),
        booking_client=get_booking_client(),
        clock=get_clock(),
        spin_threshold_ms=settings.SPIN_THRESHOLD_MS,
    )


def get_execute_use_case() -> ExecutePreBookingUseCase:
    return ExecutePreBookingUseCase(
        codec=get_token_codec(),
        claim=get_claim_use_case(),
        session_store=get_session_store(),
        freshness_guard=get_freshness_guard(),
        fire=get_fire_use_case(),
        clock=get_clock(),
        max_execution_seconds=settings.MAX_EXECUTION_SECONDS,
    )


def get_batch_scheduler() -> BatchSchedulerUseCase:
    return BatchSchedulerUseCase(
        store=get_prebooking_store(),
        claim=get_claim_use_case(),
        freshness_guard=get_freshness_guard(),
        fire=get_fire_use_case(),
        clock=get_clock(),
        stagger_ms=settings.BATCH_STAGGER_MS,
        window_seconds=settings.BATCH_WINDOW_SECONDS,
    )


def get_lifecycle_use_case() -> PreBookingLifecycleUseCase:
    return PreBookingLifecycleUseCase(
        store=get_prebooking_store(),
        trigger=get_delayed_trigger(),
        codec=get_token_codec(),
        early_offset_seconds=settings.EARLY_TRIGGER_OFFSET_SECONDS,
        max_pending=settings.MAX_PENDING_PREBOOKINGS,
    )


def get_attempt_booking_use_case() -> AttemptBookingUseCase:
    return AttemptBookingUseCase(
        booking_client=get_booking_client(),
        freshness_guard=get_freshness_guard(),
        lifecycle=get_lifecycle_use_case(),
    )


def get_refresh_sessions_use_case() -> RefreshSessionsUseCase:
    return RefreshSessionsUseCase(
        session_store=get_session_store(),
        refresher=get_credential_refresher(),
        min_age_minutes=settings.BACKGROUND_REFRESH_MINUTES,
        clock=get_clock(),
    )
