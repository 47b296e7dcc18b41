"""Tests for the two-tier OAuth state store."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from collator.auth.state_store import (
    MemoryStateBackend,
    SqlStateBackend,
    StateRecord,
    TokenStore,
)
from collator.models.oauth_state import OAuthState


def broken_backend() -> MagicMock:
    """A primary tier whose database is down."""
    backend = MagicMock()
    backend.name = "database"
    error = OperationalError("INSERT", {}, Exception("database is locked"))
    backend.put.side_effect = error
    backend.take.side_effect = error
    backend.sweep.side_effect = error
    return backend


class TestIssue:
    """Tests for TokenStore.issue."""

    def test_token_has_256_bits_of_entropy(self, token_store):
        token = token_store.issue()
        assert len(token) == 64
        int(token, 16)  # hex

    def test_tokens_are_unique(self, token_store):
        tokens = {token_store.issue() for _ in range(20)}
        assert len(tokens) == 20

    def test_persists_to_primary(self, token_store, session_factory):
        token = token_store.issue(file_key_hint="file-1")

        with session_factory() as db:
            row = db.execute(select(OAuthState).where(OAuthState.value == token)).scalar_one()
        assert row.file_key_hint == "file-1"
        assert len(token_store.fallback) == 0

    def test_records_expiry_from_ttl(self, token_store, session_factory, clock):
        token = token_store.issue(ttl_seconds=600)

        with session_factory() as db:
            row = db.execute(select(OAuthState).where(OAuthState.value == token)).scalar_one()
        assert (row.expires_at - row.created_at).total_seconds() == 600
        assert row.created_at == clock()

    def test_falls_back_to_memory_when_primary_fails(self, clock):
        fallback = MemoryStateBackend()
        store = TokenStore(broken_backend(), fallback, clock=clock)

        token = store.issue(file_key_hint="file-1")

        assert len(fallback) == 1
        context = store.validate_and_consume(token)
        assert context is not None
        assert context.file_key_hint == "file-1"

    def test_issue_sweeps_expired_entries(self, token_store, session_factory, clock):
        token_store.issue(ttl_seconds=60)
        clock.advance(seconds=120)

        token_store.issue(ttl_seconds=60)

        with session_factory() as db:
            rows = db.execute(select(OAuthState)).scalars().all()
        assert len(rows) == 1

    def test_sweep_covers_fallback_tier(self, token_store, clock):
        token_store.fallback.put(StateRecord(
            value="stale",
            file_key_hint=None,
            created_at=clock(),
            expires_at=clock(),
        ))
        clock.advance(seconds=1)

        token_store.issue()

        assert len(token_store.fallback) == 0


class TestValidateAndConsume:
    """Tests for TokenStore.validate_and_consume."""

    def test_returns_context_exactly_once(self, token_store):
        token = token_store.issue(file_key_hint="xyz")

        first = token_store.validate_and_consume(token)
        second = token_store.validate_and_consume(token)

        assert first is not None
        assert first.file_key_hint == "xyz"
        assert second is None

    def test_unknown_token(self, token_store):
        assert token_store.validate_and_consume("never-issued") is None

    def test_empty_token(self, token_store):
        assert token_store.validate_and_consume("") is None

    def test_expired_token_in_primary(self, token_store, clock):
        token = token_store.issue(ttl_seconds=1800)
        clock.advance(minutes=31)

        assert token_store.validate_and_consume(token) is None

    def test_expired_token_in_fallback(self, clock):
        store = TokenStore(broken_backend(), MemoryStateBackend(), clock=clock)
        token = store.issue(ttl_seconds=1800)
        clock.advance(minutes=31)

        assert store.validate_and_consume(token) is None

    def test_expired_lookup_removes_entry(self, token_store, session_factory, clock):
        token = token_store.issue(ttl_seconds=60)
        clock.advance(seconds=61)

        token_store.validate_and_consume(token)

        with session_factory() as db:
            assert db.execute(select(OAuthState)).first() is None

    def test_token_valid_just_before_expiry(self, token_store, clock):
        token = token_store.issue(ttl_seconds=60)
        clock.advance(seconds=59)

        assert token_store.validate_and_consume(token) is not None

    def test_checks_fallback_after_primary(self, token_store, clock):
        token_store.fallback.put(StateRecord(
            value="memory-only",
            file_key_hint="file-9",
            created_at=clock(),
            expires_at=clock().replace(year=clock().year + 1),
        ))

        context = token_store.validate_and_consume("memory-only")

        assert context.file_key_hint == "file-9"
        assert len(token_store.fallback) == 0

    def test_primary_read_failure_falls_through(self, clock):
        fallback = MemoryStateBackend()
        store = TokenStore(broken_backend(), fallback, clock=clock)
        token = store.issue()

        assert store.validate_and_consume(token) is not None


class TestSqlStateBackend:
    """Tests for the database tier on its own."""

    def test_take_removes_row(self, session_factory, clock):
        backend = SqlStateBackend(session_factory)
        backend.put(StateRecord("abc", None, clock(), clock()))

        assert backend.take("abc") is not None
        assert backend.take("abc") is None

    def test_sweep_only_removes_expired(self, session_factory, clock):
        backend = SqlStateBackend(session_factory)
        now = clock()
        backend.put(StateRecord("old", None, now, now))
        backend.put(StateRecord("new", None, now, clock.advance(minutes=5)))

        assert backend.sweep(now) == 1
        assert backend.take("new") is not None


@pytest.mark.parametrize("backend_cls", [MemoryStateBackend])
def test_memory_backend_take_is_single_use(backend_cls, clock):
    backend = backend_cls()
    backend.put(StateRecord("abc", "f", clock(), clock()))

    assert backend.take("abc").file_key_hint == "f"
    assert backend.take("abc") is None
