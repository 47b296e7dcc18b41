"""
Unit tests for the permission service.

Tests bootstrap ownership, level checks and explicit grants.
"""

import uuid

import pytest

from collator.exceptions import AuthorizationError, NotFoundError
from collator.models.files import PermissionLevel


class TestEnsureFilePermission:
    """Tests for PermissionService.ensure_file_permission."""

    def test_first_accessor_becomes_admin(self, permissions, make_user):
        alice = make_user("alice")

        permission = permissions.ensure_file_permission(alice.id, "file-1")

        assert permission.permission_level == PermissionLevel.ADMIN
        assert permission.granted_by_user_id is None

    def test_later_accessors_get_read(self, permissions, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        permissions.ensure_file_permission(alice.id, "file-1")

        permission = permissions.ensure_file_permission(bob.id, "file-1")

        assert permission.permission_level == PermissionLevel.READ

    def test_existing_permission_is_returned_unchanged(self, permissions, make_user):
        alice = make_user("alice")
        first = permissions.ensure_file_permission(alice.id, "file-1")

        second = permissions.ensure_file_permission(alice.id, "file-1")

        assert second.id == first.id
        assert second.permission_level == PermissionLevel.ADMIN

    def test_ownership_is_per_file(self, permissions, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        permissions.ensure_file_permission(alice.id, "file-1")

        permission = permissions.ensure_file_permission(bob.id, "file-2")

        assert permission.permission_level == PermissionLevel.ADMIN


class TestRequire:
    """Tests for PermissionService.require."""

    def test_admin_satisfies_write(self, permissions, make_user):
        alice = make_user("alice")

        permission = permissions.require(alice.id, "file-1", PermissionLevel.WRITE)

        assert permission.permission_level == PermissionLevel.ADMIN

    def test_read_user_cannot_write(self, permissions, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        permissions.ensure_file_permission(alice.id, "file-1")

        with pytest.raises(AuthorizationError) as exc_info:
            permissions.require(bob.id, "file-1", PermissionLevel.WRITE)

        assert exc_info.value.message == "Insufficient permissions: write access required"

    def test_read_user_can_read(self, permissions, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        permissions.ensure_file_permission(alice.id, "file-1")

        permissions.require(bob.id, "file-1", PermissionLevel.READ)


class TestGrant:
    """Tests for PermissionService.grant."""

    def test_grant_upgrades_existing(self, permissions, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        permissions.ensure_file_permission(alice.id, "file-1")
        permissions.ensure_file_permission(bob.id, "file-1")

        permissions.grant(bob.id, "file-1", PermissionLevel.WRITE, granted_by=alice.id)

        stored = permissions.get(bob.id, "file-1")
        assert stored.permission_level == PermissionLevel.WRITE
        assert stored.granted_by_user_id == alice.id

    def test_grant_creates_missing(self, permissions, make_user):
        bob = make_user("bob")

        permissions.grant(bob.id, "file-1", PermissionLevel.READ)

        assert permissions.get(bob.id, "file-1").permission_level == PermissionLevel.READ

    def test_grant_to_unknown_user(self, permissions):
        with pytest.raises(NotFoundError):
            permissions.grant(uuid.uuid4(), "file-1", PermissionLevel.READ)


class TestListForUser:
    """Tests for PermissionService.list_for_user."""

    def test_newest_grant_first_with_file_details(self, permissions, files, make_user, clock):
        alice = make_user("alice")
        permissions.ensure_file_permission(alice.id, "file-1")
        clock.advance(minutes=1)
        permissions.ensure_file_permission(alice.id, "file-2")
        files.ensure("file-1")

        listing = permissions.list_for_user(alice.id)

        assert [entry["file_key"] for entry in listing] == ["file-2", "file-1"]
        assert listing[0]["file_name"] is None
        assert listing[1]["file_name"] == "Unknown File"
        assert listing[1]["permission_level"] == "admin"

    def test_empty(self, permissions, make_user):
        assert permissions.list_for_user(make_user("alice").id) == []
