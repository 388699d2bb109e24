"""Auth session guard and circuit breaker.

The guard watches for authentication instability (the auth subsystem being
re-initialized over and over, or repeated 401s) and trips a time-boxed
circuit breaker that suppresses further re-authentication attempts.

Both objects are plain instances: build them once at application start and
pass them to whatever needs them. Nothing here is module-global.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from helpdesk_core.infrastructure.local_storage import LocalStorage, MemoryLocalStorage

logger = logging.getLogger(__name__)


@dataclass
class CircuitBreakerState:
    """Mutable breaker state shared by everything holding the breaker"""

    active: bool = False
    expires_at: float = 0.0
    reason: str = ""
    activated_at: float = 0.0


@dataclass(frozen=True)
class BreakerStatus:
    """Read-only view returned to callers"""

    active: bool
    reason: Optional[str] = None
    remaining_seconds: int = 0


class CircuitBreaker:
    """Time-boxed suppression switch.

    While active and unexpired, dependent operations must not run. The
    breaker clears itself on the first check at or after ``expires_at``.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.state = CircuitBreakerState()

    def activate(self, reason: str, minutes: float = 1.0) -> BreakerStatus:
        now = self._clock()
        self.state = CircuitBreakerState(
            active=True,
            expires_at=now + minutes * 60,
            reason=reason,
            activated_at=now,
        )
        logger.warning(f"[CircuitBreaker] Activated for {minutes:g} min: {reason}")
        return self.is_active()

    def is_active(self) -> BreakerStatus:
        state = self.state
        if not state.active:
            return BreakerStatus(active=False)

        now = self._clock()
        if now >= state.expires_at:
            logger.info(f"[CircuitBreaker] Expired: {state.reason}")
            self.clear()
            return BreakerStatus(active=False)

        return BreakerStatus(
            active=True,
            reason=state.reason,
            remaining_seconds=int(math.ceil(state.expires_at - now)),
        )

    def clear(self) -> None:
        if self.state.active:
            logger.info("[CircuitBreaker] Cleared")
        self.state = CircuitBreakerState()


class AuthHealthRecord(BaseModel):
    """Auth-health bookkeeping persisted in local storage"""

    schema_version: int
    init_timestamps: List[float] = Field(default_factory=list)
    consecutive_errors: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[float] = None
    last_success_at: Optional[float] = None


class AuthSessionGuard:
    """Detects authentication churn and trips the circuit breaker.

    The breaker trips when more than ``init_threshold`` initializations happen
    within ``init_window_seconds``, or after ``error_threshold`` consecutive
    auth errors. A success within ``success_grace_seconds`` (and newer than
    the last error) overrides and clears the breaker, so ordinary reloads
    right after a login are not mistaken for a loop.

    The guard fails open: if its own bookkeeping raises, authentication
    is allowed to proceed.

    Usage:
        breaker = CircuitBreaker()
        guard = AuthSessionGuard(breaker, storage=JsonFileLocalStorage(path))

        if guard.should_attempt():
            guard.record_initialization()
            ...
    """

    SCHEMA_VERSION = 2

    def __init__(
        self,
        breaker: CircuitBreaker,
        storage: Optional[LocalStorage] = None,
        clock: Callable[[], float] = time.time,
        namespace: str = "helpdesk",
        init_threshold: int = 5,
        init_window_seconds: float = 60.0,
        error_threshold: int = 3,
        cooldown_minutes: float = 1.0,
        success_grace_seconds: float = 10.0,
        token_stale_seconds: float = 600.0,
    ):
        self.breaker = breaker
        self.storage = storage if storage is not None else MemoryLocalStorage()
        self._clock = clock
        self.storage_key = f"{namespace}:auth-health"
        self.init_threshold = init_threshold
        self.init_window_seconds = init_window_seconds
        self.error_threshold = error_threshold
        self.cooldown_minutes = cooldown_minutes
        self.success_grace_seconds = success_grace_seconds
        self.token_stale_seconds = token_stale_seconds

    @classmethod
    def from_settings(
        cls,
        settings,
        breaker: CircuitBreaker,
        storage: Optional[LocalStorage] = None,
        **kwargs,
    ) -> "AuthSessionGuard":
        params = dict(
            namespace=settings.cache_namespace,
            init_threshold=settings.auth_init_threshold,
            init_window_seconds=settings.auth_init_window_seconds,
            error_threshold=settings.auth_error_threshold,
            cooldown_minutes=settings.auth_cooldown_minutes,
            success_grace_seconds=settings.auth_success_grace_seconds,
            token_stale_seconds=settings.token_stale_seconds,
        )
        params.update(kwargs)
        return cls(breaker, storage=storage, **params)

    # Persistence

    def _fresh_record(self) -> AuthHealthRecord:
        return AuthHealthRecord(schema_version=self.SCHEMA_VERSION)

    def _load(self) -> AuthHealthRecord:
        raw = self.storage.get_item(self.storage_key)
        if not raw:
            return self._fresh_record()
        record = AuthHealthRecord.model_validate_json(raw)
        if record.schema_version != self.SCHEMA_VERSION:
            logger.info(
                f"[AuthGuard] Discarding auth-health data with schema "
                f"v{record.schema_version} (current v{self.SCHEMA_VERSION})"
            )
            return self._fresh_record()
        return record

    def _save(self, record: AuthHealthRecord) -> None:
        self.storage.set_item(self.storage_key, record.model_dump_json())

    def _recently_succeeded(self, record: AuthHealthRecord, now: float) -> bool:
        if record.last_success_at is None:
            return False
        if record.last_error_at is not None and record.last_error_at > record.last_success_at:
            return False
        return now - record.last_success_at <= self.success_grace_seconds

    # Signals

    def record_initialization(self) -> BreakerStatus:
        """Note that the auth subsystem is being (re)initialized."""
        try:
            now = self._clock()
            record = self._load()
            record.init_timestamps = [
                t for t in record.init_timestamps if now - t < self.init_window_seconds
            ] + [now]
            self._save(record)

            if self._recently_succeeded(record, now):
                self.breaker.clear()
                return self.breaker.is_active()

            count = len(record.init_timestamps)
            if count > self.init_threshold and not self.breaker.is_active().active:
                self.breaker.activate(
                    reason=(
                        f"Authentication re-initialized {count} times "
                        f"in {self.init_window_seconds:g}s"
                    ),
                    minutes=self.cooldown_minutes,
                )
            return self.breaker.is_active()
        except Exception as e:
            logger.warning(f"[AuthGuard] Bookkeeping failed, allowing authentication: {e}")
            return BreakerStatus(active=False)

    def record_error(self, error: Optional[BaseException] = None) -> BreakerStatus:
        """Note a failed authentication (e.g. a 401 or a refresh failure)."""
        try:
            now = self._clock()
            record = self._load()
            record.consecutive_errors += 1
            record.last_error = str(error) if error is not None else None
            record.last_error_at = now
            self._save(record)

            if record.consecutive_errors >= self.error_threshold and not self.breaker.is_active().active:
                self.breaker.activate(
                    reason=f"{record.consecutive_errors} consecutive authentication errors",
                    minutes=self.cooldown_minutes,
                )
            return self.breaker.is_active()
        except Exception as e:
            logger.warning(f"[AuthGuard] Bookkeeping failed, allowing authentication: {e}")
            return BreakerStatus(active=False)

    def record_success(self) -> None:
        """A proven-successful authentication clears the breaker immediately."""
        self.breaker.clear()
        try:
            record = self._load()
            record.consecutive_errors = 0
            record.init_timestamps = []
            record.last_success_at = self._clock()
            self._save(record)
        except Exception as e:
            logger.warning(f"[AuthGuard] Unable to record successful authentication: {e}")

    # Queries

    def status(self) -> BreakerStatus:
        try:
            record = self._load()
            if self._recently_succeeded(record, self._clock()):
                self.breaker.clear()
            return self.breaker.is_active()
        except Exception as e:
            logger.warning(f"[AuthGuard] Status check failed, failing open: {e}")
            return BreakerStatus(active=False)

    def should_attempt(self) -> bool:
        """True unless the breaker is active and unexpired."""
        return not self.status().active

    def is_token_stale(self, expires_at: Optional[float]) -> bool:
        """True when a token expires within ``token_stale_seconds``."""
        if not expires_at:
            return False
        return expires_at - self._clock() < self.token_stale_seconds

    def reset(self) -> None:
        """Forget all auth-health state and clear the breaker."""
        self.breaker.clear()
        try:
            self.storage.remove_item(self.storage_key)
        except Exception as e:
            logger.warning(f"[AuthGuard] Unable to clear auth-health data: {e}")
