"""Usage-ranked template recommendations."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import TypeVar

from .config import DEFAULT_RECOMMEND_LIMIT
from .events import EventChannel, ItemPathsChanged, ScopeSwitched, UsageCleared, UsageUpdated
from .models import Recommendation
from .paths import normalize_path
from .scopes import ScopeManager
from .topic_tree import TopicTree
from .topics import TopicManager

log = logging.getLogger(__name__)

T = TypeVar("T")


def get_recommended_by_usage(
    items: Iterable[T],
    usage: Mapping[str, int],
    limit: int = DEFAULT_RECOMMEND_LIMIT,
    key: Callable[[T], str] = str,
) -> list[tuple[T, int]]:
    """Rank items by usage count.

    Items with a zero count are dropped; ties keep the input order (stable
    sort); the result is truncated to ``limit``.

    Args:
        items: Candidate items, in their natural order.
        usage: Item path -> use count.
        limit: Maximum number of results.
        key: Maps an item to its path in ``usage``.

    Returns:
        (item, count) pairs, non-increasing by count.
    """
    counted = [(item, usage.get(key(item), 0)) for item in items]
    used = [pair for pair in counted if pair[1] > 0]
    used.sort(key=lambda pair: pair[1], reverse=True)
    return used[: max(limit, 0)]


class RecommendationEngine:
    """Recommends templates of a topic subtree by current-scope usage.

    Results are cached per (topic path, limit) and dropped whenever usage,
    item paths, the current scope or the topic tree change.
    """

    def __init__(self, scopes: ScopeManager, topics: TopicManager, events: EventChannel):
        self.scopes = scopes
        self.topics = topics
        self._cache: dict[tuple[str | None, int], list[Recommendation]] = {}
        self._cached_tree: TopicTree | None = None
        for event_type in (UsageUpdated, UsageCleared, ScopeSwitched, ItemPathsChanged):
            events.subscribe(event_type, self._invalidate)

    def _invalidate(self, event: object) -> None:
        self._cache.clear()

    def recommend(self, topic_path: str | None = None, limit: int = DEFAULT_RECOMMEND_LIMIT) -> list[Recommendation]:
        """Most used templates under ``topic_path`` (the whole scope if None)."""
        tree = self.topics.tree
        if tree is not self._cached_tree:
            # Every published mutation swaps the tree object
            self._cache.clear()
            self._cached_tree = tree

        topic_path = normalize_path(topic_path) or None
        cache_key = (topic_path, limit)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        if topic_path is None:
            nodes = list(tree.iter_depth_first())
        else:
            nodes = [tree.node(topic_path)] + [tree.nodes[p] for p in tree.descendants(topic_path)]
        candidates = [node.templates[name] for node in nodes for name in sorted(node.templates)]

        ranked = get_recommended_by_usage(
            candidates, self.scopes.current_scope.usage, limit, key=lambda t: t.item_path
        )
        result = [Recommendation(item_path=t.item_path, count=count, template=t) for t, count in ranked]
        self._cache[cache_key] = result
        return result
