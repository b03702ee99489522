"""Tests for path-prefix locks and the event channel."""

import asyncio
import logging

import pytest

from codebricks.engine import Engine
from codebricks.errors import ConcurrentModificationError
from codebricks.events import EventChannel, ScopeCreated, ScopeDeleted, ScopeSwitched, TopicCreated
from codebricks.locks import KeyedLocks, PathLocks
from codebricks.models import TopicCreate


# ─────────────────────────────────────────────────────────────────────────────
# Path locks
# ─────────────────────────────────────────────────────────────────────────────


class TestPathLocks:
    """Prefix overlap and conflict policies."""

    @pytest.mark.asyncio
    async def test_ancestor_and_descendant_conflict(self):
        locks = PathLocks("reject")
        async with locks.hold("c/basics"):
            assert locks.is_locked("c")
            assert locks.is_locked("c/basics/deeper")
            assert not locks.is_locked("cpp")
            with pytest.raises(ConcurrentModificationError):
                async with locks.hold("c"):
                    pass
        assert locks.held == []

    @pytest.mark.asyncio
    async def test_unrelated_prefixes_run_concurrently(self):
        locks = PathLocks("reject")
        async with locks.hold("c"):
            async with locks.hold("python"):
                assert sorted(locks.held) == ["c", "python"]

    @pytest.mark.asyncio
    async def test_scope_wide_conflicts_with_everything(self):
        locks = PathLocks("reject")
        async with locks.hold(None):
            assert locks.is_locked("anything/at/all")

    @pytest.mark.asyncio
    async def test_queue_waits_for_release(self):
        locks = PathLocks("queue", timeout=5)
        order = []
        entered = asyncio.Event()

        async def first():
            async with locks.hold("c"):
                entered.set()
                await asyncio.sleep(0.05)
                order.append("first")

        async def second():
            await entered.wait()
            async with locks.hold("c/basics"):
                order.append("second")

        await asyncio.gather(first(), second())
        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_queue_timeout(self):
        locks = PathLocks("queue", timeout=0.05)
        async with locks.hold("c"):
            with pytest.raises(ConcurrentModificationError):
                async with locks.hold("c"):
                    pass

    @pytest.mark.asyncio
    async def test_keyed_locks_share_per_key(self):
        locks = KeyedLocks()
        assert locks.get("a") is locks.get("a")
        assert locks.get("a") is not locks.get("b")
        async with locks.hold("a"):
            assert locks.get("a").locked()


class TestManagerLocking:
    """Structural operations honor the lock registry."""

    @pytest.mark.asyncio
    async def test_reject_policy_surfaces_conflicts(self, tmp_root, settings_path, tmp_path):
        engine = Engine.open(data_root=tmp_root, settings_path=settings_path, cwd=tmp_path, on_conflict="reject")
        await engine.topics.create_topic(TopicCreate(name="c"))

        async with engine.topics.locks.hold("c"):
            assert engine.topics.is_locked("c")
            with pytest.raises(ConcurrentModificationError):
                await engine.topics.create_topic(TopicCreate(name="basics"), "c")
            # Readers never block
            assert engine.topics.get_topic("c").name == "c"

        await engine.topics.create_topic(TopicCreate(name="basics"), "c")

    @pytest.mark.asyncio
    async def test_concurrent_creates_in_different_subtrees(self, engine):
        await engine.topics.create_topic(TopicCreate(name="a"))
        await engine.topics.create_topic(TopicCreate(name="b"))

        await asyncio.gather(
            *(engine.topics.create_topic(TopicCreate(name=f"a{i}"), "a") for i in range(5)),
            *(engine.topics.create_topic(TopicCreate(name=f"b{i}"), "b") for i in range(5)),
        )

        assert len(engine.topics.get_subtopics("a")) == 5
        assert len(engine.topics.get_subtopics("b")) == 5
        reopened = Engine.open(data_root=engine.paths.data_root, settings_path=engine.scopes.settings_path)
        assert len(reopened.topics.get_all_topics()) == 12


# ─────────────────────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────────────────────


class TestEventChannel:
    """Synchronous FIFO delivery."""

    def test_delivery_in_subscription_order(self):
        channel = EventChannel()
        seen = []
        channel.subscribe(ScopeCreated, lambda e: seen.append(("first", e.scope_id)))
        channel.subscribe(ScopeCreated, lambda e: seen.append(("second", e.scope_id)))

        channel.publish(ScopeCreated("team"))

        assert seen == [("first", "team"), ("second", "team")]

    def test_only_matching_types(self):
        channel = EventChannel()
        seen = []
        channel.subscribe(ScopeCreated, seen.append)

        channel.publish(ScopeDeleted("team"))
        channel.publish(TopicCreated("local", "c"))

        assert seen == []

    def test_failing_handler_does_not_stop_delivery(self, caplog):
        channel = EventChannel()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        channel.subscribe(ScopeCreated, broken)
        channel.subscribe(ScopeCreated, seen.append)

        with caplog.at_level(logging.ERROR):
            channel.publish(ScopeCreated("team"))

        assert seen == [ScopeCreated("team")]
        assert "boom" in caplog.text

    def test_unsubscribe(self):
        channel = EventChannel()
        seen = []
        unsubscribe = channel.subscribe(ScopeCreated, seen.append)

        unsubscribe()
        unsubscribe()
        channel.publish(ScopeCreated("team"))

        assert seen == []

    def test_propagating_handler_raises_after_delivery(self, caplog):
        channel = EventChannel()
        seen = []

        def broken(event):
            raise OSError("disk gone")

        channel.subscribe(ScopeSwitched, broken, propagate=True)
        channel.subscribe(ScopeSwitched, seen.append)

        with pytest.raises(OSError, match="disk gone"):
            channel.publish(ScopeSwitched("team", "local"))

        assert seen == [ScopeSwitched("team", "local")]
        assert "disk gone" not in caplog.text
