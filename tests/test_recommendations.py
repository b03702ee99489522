"""Tests for usage-ranked recommendations."""

import pytest

from codebricks.models import TemplateCreate
from codebricks.recommendations import get_recommended_by_usage


class TestRankByUsage:
    """The pure ranking function."""

    def test_zero_counts_dropped(self):
        ranked = get_recommended_by_usage(["a", "b", "c"], {"a": 0, "b": 2})
        assert ranked == [("b", 2)]

    def test_ties_keep_input_order(self):
        ranked = get_recommended_by_usage(["x", "y", "z"], {"x": 1, "y": 3, "z": 1})
        assert ranked == [("y", 3), ("x", 1), ("z", 1)]

    def test_limit(self):
        usage = {str(i): i for i in range(1, 10)}
        ranked = get_recommended_by_usage(list(usage), usage, limit=3)
        assert [count for _, count in ranked] == [9, 8, 7]
        assert get_recommended_by_usage(list(usage), usage, limit=0) == []

    def test_custom_key(self):
        items = [{"path": "a"}, {"path": "b"}]
        ranked = get_recommended_by_usage(items, {"b": 1}, key=lambda item: item["path"])
        assert ranked == [({"path": "b"}, 1)]


class TestRecommendationEngine:
    """Recommendations over the current scope."""

    @pytest.mark.asyncio
    async def test_most_used_first(self, sample_engine):
        scopes = sample_engine.scopes
        for _ in range(3):
            await scopes.update_usage("c/basics/templates/loop")
        await scopes.update_usage("python/templates/main")

        recs = sample_engine.recommendations.recommend()

        assert [(r.item_path, r.count) for r in recs] == [
            ("c/basics/templates/loop", 3),
            ("python/templates/main", 1),
        ]
        assert recs[0].template.language == "c"

    @pytest.mark.asyncio
    async def test_restricted_to_subtree(self, sample_engine):
        await sample_engine.scopes.update_usage("c/basics/templates/hello")
        await sample_engine.scopes.update_usage("python/templates/main")

        recs = sample_engine.recommendations.recommend("c")

        assert [r.item_path for r in recs] == ["c/basics/templates/hello"]

    @pytest.mark.asyncio
    async def test_usage_updates_invalidate_cache(self, sample_engine):
        engine = sample_engine
        assert engine.recommendations.recommend() == []

        await engine.scopes.update_usage("python/templates/main")
        assert [r.count for r in engine.recommendations.recommend()] == [1]

        await engine.scopes.clear_usage_stats()
        assert engine.recommendations.recommend() == []

    @pytest.mark.asyncio
    async def test_new_template_is_picked_up(self, sample_engine):
        engine = sample_engine
        await engine.scopes.update_usage("python/templates/script")
        assert engine.recommendations.recommend() == []

        await engine.templates.create_template(TemplateCreate(name="script", code="", language="python"), "python")

        assert [r.item_path for r in engine.recommendations.recommend()] == ["python/templates/script"]

    @pytest.mark.asyncio
    async def test_follows_renamed_topic(self, sample_engine):
        await sample_engine.scopes.update_usage("c/basics/templates/hello")
        sample_engine.recommendations.recommend()

        await sample_engine.topics.rename_topic("c", "lang-c")

        recs = sample_engine.recommendations.recommend()
        assert [r.item_path for r in recs] == ["lang-c/basics/templates/hello"]

    @pytest.mark.asyncio
    async def test_scope_switch(self, sample_engine):
        await sample_engine.scopes.update_usage("python/templates/main")
        await sample_engine.scopes.switch_scope("empty")
        assert sample_engine.recommendations.recommend() == []
