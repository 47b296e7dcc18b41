"""
Single-use OAuth state tokens with a TTL.

The store has two tiers behind one interface:

- primary: the oauth_states table, shared by every instance
- fallback: an in-process dict, used only when the primary write fails

Writes go to the primary and drop to the fallback on failure; that token
then lives in the fallback for its whole lifetime. Reads check the
primary first, then the fallback. Expired entries are swept lazily on
every issue, never by a timer.
"""

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from collator.database import transaction
from collator.models.base import utc_now
from collator.models.oauth_state import OAuthState

logger = logging.getLogger(__name__)

# 32 bytes = 256 bits of entropy
STATE_TOKEN_BYTES = 32
DEFAULT_STATE_TTL_SECONDS = 30 * 60


@dataclass(frozen=True)
class StateRecord:
    """A stored state token and the context it carries."""

    value: str
    file_key_hint: Optional[str]
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class StateContext:
    """Context recovered from a consumed state token."""

    file_key_hint: Optional[str]
    created_at: datetime


class StateBackend(Protocol):
    """Storage tier for state records."""

    name: str

    def put(self, record: StateRecord) -> None:
        """Persist a record."""

    def take(self, value: str) -> Optional[StateRecord]:
        """Atomically remove and return a record, expired or not."""

    def sweep(self, now: datetime) -> int:
        """Delete expired records, returning how many were removed."""


class MemoryStateBackend:
    """In-process tier. Entries die with the process."""

    name = "memory"

    def __init__(self):
        self._records: dict[str, StateRecord] = {}
        self._lock = threading.Lock()

    def put(self, record: StateRecord) -> None:
        with self._lock:
            self._records[record.value] = record

    def take(self, value: str) -> Optional[StateRecord]:
        with self._lock:
            return self._records.pop(value, None)

    def sweep(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, record in self._records.items() if record.is_expired(now)]
            for key in expired:
                del self._records[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)


class SqlStateBackend:
    """Database tier backed by the oauth_states table."""

    name = "database"

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def put(self, record: StateRecord) -> None:
        with transaction(self._session_factory) as db:
            db.add(OAuthState(
                value=record.value,
                file_key_hint=record.file_key_hint,
                created_at=record.created_at,
                expires_at=record.expires_at,
            ))

    def take(self, value: str) -> Optional[StateRecord]:
        with transaction(self._session_factory) as db:
            row = db.execute(
                select(OAuthState).where(OAuthState.value == value)
            ).scalar_one_or_none()
            if row is None:
                return None

            # Only the statement that actually deletes the row wins it
            result = db.execute(delete(OAuthState).where(OAuthState.value == value))
            if result.rowcount != 1:
                return None

            return StateRecord(
                value=row.value,
                file_key_hint=row.file_key_hint,
                created_at=row.created_at,
                expires_at=row.expires_at,
            )

    def sweep(self, now: datetime) -> int:
        with transaction(self._session_factory) as db:
            result = db.execute(delete(OAuthState).where(OAuthState.expires_at <= now))
            return result.rowcount or 0


class TokenStore:
    """
    Issues and consumes OAuth state tokens.

    Usage:
        store = TokenStore(SqlStateBackend(factory), MemoryStateBackend())
        token = store.issue(1800, file_key_hint="abc")
        context = store.validate_and_consume(token)  # StateContext
        store.validate_and_consume(token)            # None
    """

    def __init__(
        self,
        primary: StateBackend,
        fallback: StateBackend,
        clock: Callable[[], datetime] = utc_now,
        default_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
    ):
        self.primary = primary
        self.fallback = fallback
        self._clock = clock
        self.default_ttl_seconds = default_ttl_seconds

    def issue(
        self,
        ttl_seconds: Optional[int] = None,
        file_key_hint: Optional[str] = None,
    ) -> str:
        """
        Create a new state token.

        Args:
            ttl_seconds: Lifetime of the token (defaults to the store's TTL)
            file_key_hint: Context returned on successful consumption

        Returns:
            The token value
        """
        self.sweep_expired()

        now = self._clock()
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        record = StateRecord(
            value=secrets.token_hex(STATE_TOKEN_BYTES),
            file_key_hint=file_key_hint,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )

        try:
            self.primary.put(record)
            backend = self.primary
        except SQLAlchemyError as e:
            logger.warning(
                f"State store {self.primary.name} unavailable, "
                f"falling back to {self.fallback.name}: {e}"
            )
            self.fallback.put(record)
            backend = self.fallback

        logger.info(f"OAuth state issued: {record.value[:8]}... ({backend.name})")
        return record.value

    def validate_and_consume(self, token: str) -> Optional[StateContext]:
        """
        Consume a state token.

        Returns the stored context exactly once. Missing, already consumed
        and expired tokens all return None.
        """
        if not token:
            return None

        record = None
        for backend in (self.primary, self.fallback):
            try:
                record = backend.take(token)
            except SQLAlchemyError as e:
                logger.warning(f"State lookup failed in {backend.name}: {e}")
                continue
            if record is not None:
                break

        if record is None:
            logger.info(f"OAuth state not found: {token[:8]}...")
            return None

        now = self._clock()
        if record.is_expired(now):
            age = int((now - record.created_at).total_seconds())
            logger.info(f"OAuth state expired: {token[:8]}... (age {age}s)")
            return None

        logger.info(f"OAuth state validated and removed: {token[:8]}...")
        return StateContext(file_key_hint=record.file_key_hint, created_at=record.created_at)

    def sweep_expired(self) -> int:
        """Remove expired entries from both tiers."""
        now = self._clock()
        removed = 0
        for backend in (self.primary, self.fallback):
            try:
                removed += backend.sweep(now)
            except SQLAlchemyError as e:
                logger.warning(f"State sweep failed in {backend.name}: {e}")
        if removed:
            logger.debug(f"Swept {removed} expired OAuth states")
        return removed
