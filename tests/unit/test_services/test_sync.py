"""
Unit tests for comment synchronization.

Tests reconciliation against the fake Figma API, node name batching and
the post/resolve operations.
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from collator.integrations.figma.adapter import RemoteComment, parse_comment
from collator.integrations.figma.exceptions import FigmaAuthError
from collator.services.sync import CommentSyncEngine
from conftest import comment_payload


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def engine_under_test(container, clock, sleep) -> CommentSyncEngine:
    return CommentSyncEngine(
        container.figma,
        container.comments,
        container.files,
        clock=clock,
        batch_size=2,
        batch_delay_seconds=1.0,
        sleep=sleep,
        executor=container.db_executor,
    )


def _remote(comment_id: str) -> RemoteComment:
    return parse_comment(comment_payload(comment_id))


@pytest.fixture
def alice(make_user):
    return make_user("alice")


class TestSync:
    """Tests for CommentSyncEngine.sync."""

    @pytest.mark.asyncio
    async def test_reconciles_remote_set(self, engine_under_test, container, fake_figma, alice, clock):
        container.comments.upsert(_remote("A"), "file-1")
        container.comments.upsert(_remote("C"), "file-1")
        fake_figma.comments["file-1"] = [
            comment_payload("A", message="A edited"),
            comment_payload("B"),
        ]

        result = await engine_under_test.sync("file-1", alice.id)

        assert result.upserted == 2
        assert result.deleted == 1
        assert result.failed == 0
        assert container.comments.external_ids_for_file("file-1") == {"A", "B"}
        assert container.comments.get("file-1", "A").message == "A edited"
        assert container.files.get("file-1").last_synced_at == clock()

    @pytest.mark.asyncio
    async def test_orphans_only_removed_for_synced_file(self, engine_under_test, container, fake_figma, alice):
        container.comments.upsert(_remote("other"), "file-2")
        fake_figma.comments["file-1"] = []

        result = await engine_under_test.sync("file-1", alice.id)

        assert result.deleted == 0
        assert container.comments.external_ids_for_file("file-2") == {"other"}

    @pytest.mark.asyncio
    async def test_fetch_failure_changes_nothing(self, engine_under_test, container, fake_figma, alice):
        container.comments.upsert(_remote("A"), "file-1")
        fake_figma.comments_status = 403

        with pytest.raises(FigmaAuthError):
            await engine_under_test.sync("file-1", alice.id)

        assert container.comments.external_ids_for_file("file-1") == {"A"}
        assert container.files.get("file-1") is None

    @pytest.mark.asyncio
    async def test_node_names_resolved_once_per_node(self, engine_under_test, container, fake_figma, alice):
        fake_figma.node_names["1:2"] = "Header"
        fake_figma.comments["file-1"] = [
            comment_payload("A", node_id="1:2"),
            comment_payload("B", node_id="1:2"),
            comment_payload("C"),
        ]

        await engine_under_test.sync("file-1", alice.id)

        assert container.comments.get("file-1", "A").node_name == "Header"
        assert container.comments.get("file-1", "C").node_name is None
        assert fake_figma.paths().count("/v1/files/file-1/nodes") == 1

    @pytest.mark.asyncio
    async def test_store_failure_counted_and_rest_applied(
        self, engine_under_test, container, fake_figma, alice, clock, monkeypatch
    ):
        container.comments.upsert(_remote("gone"), "file-1")
        fake_figma.comments["file-1"] = [comment_payload("A"), comment_payload("B"), comment_payload("C")]
        upsert = container.comments.upsert

        def flaky_upsert(remote, file_key, **kwargs):
            if remote.id == "B":
                raise OperationalError("INSERT INTO comments", {}, Exception("disk I/O error"))
            return upsert(remote, file_key, **kwargs)

        monkeypatch.setattr(container.comments, "upsert", flaky_upsert)

        result = await engine_under_test.sync("file-1", alice.id)

        assert result.upserted == 2
        assert result.failed == 1
        assert result.deleted == 1
        assert container.comments.external_ids_for_file("file-1") == {"A", "C"}
        assert container.files.get("file-1").last_synced_at == clock()

    @pytest.mark.asyncio
    async def test_local_resolution_survives_resync(self, engine_under_test, container, fake_figma, alice):
        fake_figma.comments["file-1"] = [comment_payload("A")]
        await engine_under_test.sync("file-1", alice.id)
        engine_under_test.resolve("file-1", "A", alice.id)

        await engine_under_test.sync("file-1", alice.id)

        stored = container.comments.get("file-1", "A")
        assert stored.is_resolved
        assert stored.resolved_by_user_id == alice.id

    @pytest.mark.asyncio
    async def test_store_calls_leave_event_loop_thread(
        self, engine_under_test, container, fake_figma, alice, monkeypatch
    ):
        fake_figma.comments["file-1"] = [comment_payload("A")]
        loop_thread = threading.get_ident()
        seen = []
        upsert = container.comments.upsert

        def recording_upsert(*args, **kwargs):
            seen.append(threading.get_ident())
            return upsert(*args, **kwargs)

        monkeypatch.setattr(container.comments, "upsert", recording_upsert)

        await engine_under_test.sync("file-1", alice.id)

        assert seen and loop_thread not in seen

    @pytest.mark.asyncio
    async def test_failed_node_lookup_leaves_name_empty(self, engine_under_test, container, fake_figma, alice):
        fake_figma.comments["file-1"] = [comment_payload("A", node_id="9:9")]

        result = await engine_under_test.sync("file-1", alice.id)

        assert result.upserted == 1
        assert container.comments.get("file-1", "A").node_name is None


class TestResolveNodeNames:
    """Tests for batched node name lookups."""

    @pytest.mark.asyncio
    async def test_sleeps_between_batches(self, engine_under_test, fake_figma, alice, sleep):
        for i in range(5):
            fake_figma.node_names[f"1:{i}"] = f"Node {i}"

        names = await engine_under_test.resolve_node_names(
            "file-1", [f"1:{i}" for i in range(5)], alice.id
        )

        assert names == {f"1:{i}": f"Node {i}" for i in range(5)}
        # Three batches of two, two pauses between them
        assert sleep.calls == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_no_sleep_for_single_batch(self, engine_under_test, fake_figma, alice, sleep):
        fake_figma.node_names["1:1"] = "Only"

        await engine_under_test.resolve_node_names("file-1", ["1:1"], alice.id)

        assert sleep.calls == []


class TestPostAndResolve:
    """Tests for posting and resolution."""

    @pytest.mark.asyncio
    async def test_post_mirrors_locally(self, engine_under_test, container, fake_figma, alice):
        fake_figma.node_names["1:2"] = "Header"

        comment = await engine_under_test.post("file-1", alice.id, "New", node_id="1:2", x=3, y=4)

        assert comment.external_comment_id == "posted-1"
        assert comment.node_name == "Header"
        assert comment.position_x == 3
        assert container.files.get("file-1").is_placeholder

    @pytest.mark.asyncio
    async def test_post_reply_keeps_parent(self, engine_under_test, fake_figma, alice):
        comment = await engine_under_test.post("file-1", alice.id, "Reply", parent_id="A")

        assert comment.parent_comment_id == "A"

    @pytest.mark.asyncio
    async def test_post_failure_stores_nothing(self, engine_under_test, container, alice):
        async def fail(*args, **kwargs):
            raise FigmaAuthError("denied", upstream_status=403)

        container.figma.post_comment = fail

        with pytest.raises(FigmaAuthError):
            await engine_under_test.post("file-1", alice.id, "Lost")

        assert container.comments.external_ids_for_file("file-1") == set()

    def test_resolve_and_unresolve(self, engine_under_test, container, alice):
        container.comments.upsert(_remote("A"), "file-1")

        resolved = engine_under_test.resolve("file-1", "A", alice.id)
        assert resolved.is_resolved
        assert resolved.resolved_by_user_id == alice.id

        reopened = engine_under_test.unresolve("file-1", "A")
        assert not reopened.is_resolved
