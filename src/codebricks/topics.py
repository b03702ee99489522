"""Topic CRUD, move, reorder and hierarchy statistics.

Mutators are async and run under the path-prefix lock of the current scope.
Each one mutates a clone of the published tree, writes the affected files and
publishes the clone only once every write succeeded. Rename and move relocate
a whole subtree; every completed step is recorded in an undo log and undone in
reverse when a later step fails.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from .errors import (
    CodebricksError,
    CyclicMoveError,
    DuplicateNameError,
    NonEmptyTopicError,
    StorageError,
)
from .events import (
    EventChannel,
    ItemPathsChanged,
    LocationChanged,
    ScopeSwitched,
    TopicCreated,
    TopicDeleted,
    TopicMoved,
    TopicsReordered,
    TopicUpdated,
)
from .locks import ConflictPolicy, PathLocks
from .models import (
    Card,
    LinkCard,
    ReorderOp,
    TemplateCard,
    Topic,
    TopicCard,
    TopicCreate,
    TopicDisplay,
    TopicStatistics,
    TopicUpdate,
)
from .paths import (
    StoragePaths,
    is_same_or_descendant,
    join_path,
    normalize_path,
    parent_path,
    path_name,
    validate_name,
)
from .storage import write_model
from .topic_tree import TopicNode, TopicTree

log = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Filesystem steps (module level so failures can be injected)
# ─────────────────────────────────────────────────────────────────────────────


def _write_document(path: Path, model: BaseModel) -> None:
    write_model(path, model)


def _move_dir(src: Path, dst: Path) -> None:
    if dst.exists():
        raise FileExistsError(f"Target directory already exists: {dst}")
    dst.parent.mkdir(parents=True, exist_ok=True)
    src.rename(dst)


def _restore_file(path: Path, original: bytes | None) -> None:
    if original is None:
        path.unlink(missing_ok=True)
    else:
        path.write_bytes(original)


def _delete_dirs(dirs: Iterable[Path]) -> list[str]:
    errors = []
    for directory in dirs:
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            continue
        except OSError as e:
            errors.append(f"{directory}: {e}")
    return errors


class UndoLog:
    """Completed steps of a multi-file operation, undone in reverse."""

    def __init__(self):
        self._steps: list[tuple[str, Callable[[], None]]] = []

    def __len__(self) -> int:
        return len(self._steps)

    def push(self, description: str, undo: Callable[[], None]) -> None:
        self._steps.append((description, undo))

    def write(self, path: Path, model: BaseModel) -> None:
        """Write a document, remembering how to restore the previous bytes."""
        original = path.read_bytes() if path.exists() else None
        _write_document(path, model)
        self.push(f"restore {path}", lambda: _restore_file(path, original))

    def move(self, src: Path, dst: Path) -> None:
        _move_dir(src, dst)
        self.push(f"move {dst} back to {src}", lambda: dst.rename(src))

    def rollback(self) -> list[str]:
        """Undo every step, newest first.

        Returns:
            Errors raised by undo steps; rollback continues past them.
        """
        errors = []
        while self._steps:
            description, undo = self._steps.pop()
            try:
                undo()
            except OSError as e:
                log.error("Rollback step failed (%s): %s", description, e)
                errors.append(f"rollback {description}: {e}")
        return errors


@dataclass
class Hierarchy:
    """Read-only view of the topic tree for in-memory traversal."""

    roots: list[TopicNode]
    nodes: dict[str, TopicNode]
    max_depth: int

    def parent(self, node: TopicNode) -> TopicNode | None:
        """Parent node, derived from the path."""
        head = node.parent_path
        return self.nodes.get(head) if head is not None else None

    def children(self, node: TopicNode) -> list[TopicNode]:
        return [self.nodes[child] for child in node.children]


# ─────────────────────────────────────────────────────────────────────────────
# Topic manager
# ─────────────────────────────────────────────────────────────────────────────


class TopicManager:
    """Owns the published topic tree of the current scope."""

    def __init__(
        self,
        paths: StoragePaths,
        events: EventChannel,
        scope_id: str,
        on_conflict: ConflictPolicy = "queue",
    ):
        self.paths = paths
        self.events = events
        self.scope_id = scope_id
        self.on_conflict = on_conflict
        self._locks: dict[str, PathLocks] = {}
        self._tree = TopicTree.load(self.scope_dir)

        events.subscribe(ScopeSwitched, self._on_scope_switched, propagate=True)
        events.subscribe(LocationChanged, self._on_location_changed, propagate=True)

    # ─────────────────────────────────────────────────────────────────────────
    # Tree ownership
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def scope_dir(self) -> Path:
        return self.paths.scope_dir(self.scope_id)

    @property
    def tree(self) -> TopicTree:
        """The published snapshot. Treat as read-only."""
        return self._tree

    @property
    def locks(self) -> PathLocks:
        locks = self._locks.get(self.scope_id)
        if locks is None:
            locks = self._locks[self.scope_id] = PathLocks(self.on_conflict)
        return locks

    def publish(self, tree: TopicTree) -> None:
        self._tree = tree

    def reload(self) -> None:
        """Rebuild the tree from disk."""
        self.publish(TopicTree.load(self.scope_dir))

    def _on_scope_switched(self, event: ScopeSwitched) -> None:
        # Stay on the current scope unless the new tree loads
        tree = TopicTree.load(self.paths.scope_dir(event.scope_id))
        self.scope_id = event.scope_id
        self.publish(tree)
        log.info("Topic tree rerooted at scope %s (%d topics)", self.scope_id, len(self._tree))

    def _on_location_changed(self, event: LocationChanged) -> None:
        self.reload()

    def topic_file(self, path: str) -> Path:
        return self.paths.topic_file(self.scope_id, path)

    def write_orders(self, old: TopicTree, new: TopicTree, parents: Iterable[str | None], undo: UndoLog) -> None:
        """Persist display.order of children whose position changed."""
        for parent in dict.fromkeys(parents):
            if parent is not None and parent not in new:
                continue
            for child in new.child_paths(parent):
                before = old.get(child)
                topic = new.nodes[child].topic
                if before is None or before.topic.display.order != topic.display.order:
                    undo.write(self.topic_file(child), topic)

    # ─────────────────────────────────────────────────────────────────────────
    # Readers (never block, always see a published snapshot)
    # ─────────────────────────────────────────────────────────────────────────

    def get_topic(self, path: str) -> Topic:
        return self._tree.node(normalize_path(path)).topic

    def get_topic_or_none(self, path: str) -> Topic | None:
        node = self._tree.get(normalize_path(path))
        return node.topic if node else None

    def has_topic(self, path: str) -> bool:
        return normalize_path(path) in self._tree

    def get_subtopics(self, path: str | None = None) -> list[Topic]:
        tree = self._tree
        parent = normalize_path(path) or None
        return [tree.nodes[child].topic for child in tree.child_paths(parent)]

    def get_root_topics(self) -> list[Topic]:
        return self.get_subtopics(None)

    def get_all_topics(self) -> list[Topic]:
        """Every topic, depth-first in display order."""
        return [node.topic for node in self._tree.iter_depth_first()]

    def get_topic_chain(self, path: str) -> list[Topic]:
        return [node.topic for node in self._tree.chain(normalize_path(path))]

    def get_hierarchy(self) -> Hierarchy:
        tree = self._tree
        return Hierarchy(
            roots=[tree.nodes[root] for root in tree.roots],
            nodes=dict(tree.nodes),
            max_depth=tree.max_depth,
        )

    def serialize_hierarchy(self) -> list[dict[str, Any]]:
        return self._tree.serialize()

    def is_locked(self, path: str) -> bool:
        """True while a structural operation holds an overlapping prefix."""
        return self.locks.is_locked(path)

    def get_statistics(self) -> TopicStatistics:
        """Aggregate statistics. Depths are 1-based levels (roots are level 1)."""
        tree = self._tree
        stats = TopicStatistics(total_topics=len(tree), root_topics=len(tree.roots))
        depths: Counter[int] = Counter()
        languages: Counter[str] = Counter()

        for node in tree.iter_breadth_first():
            depths[node.topic.depth + 1] += 1
            if node.templates:
                stats.topics_with_templates += 1
            if node.children:
                stats.topics_with_subtopics += 1
            stats.total_templates += len(node.templates)
            stats.total_links += len(node.links)
            languages.update(t.language for t in node.templates.values())

        stats.max_depth = max(depths, default=0)
        stats.depth_distribution = dict(sorted(depths.items()))
        stats.language_distribution = dict(languages.most_common())
        return stats

    def list_cards(self, topic_path: str | None = None) -> list[Card]:
        """Cards for a topic's children: subtopics, then templates, then links.

        ``None`` lists the root topics.
        """
        tree = self._tree
        parent = normalize_path(topic_path) or None
        cards: list[Card] = []

        for child in tree.child_paths(parent):
            node = tree.nodes[child]
            topic = node.topic
            cards.append(
                TopicCard(
                    path=topic.path,
                    name=topic.name,
                    title=topic.title,
                    description=topic.description,
                    has_documentation=topic.documentation is not None,
                    icon=topic.display.icon,
                    color=topic.display.color,
                    subtopic_count=len(node.children),
                    template_count=len(node.templates),
                )
            )

        if parent is None:
            return cards

        node = tree.node(parent)
        for name in sorted(node.templates):
            template = node.templates[name]
            cards.append(
                TemplateCard(
                    path=template.item_path,
                    name=template.name,
                    title=template.title,
                    description=template.description,
                    has_documentation=template.documentation is not None,
                    language=template.language,
                    code=template.code,
                )
            )

        for name in sorted(node.links):
            link = node.links[name]
            resolution = tree.resolve(link.target)
            resolved = resolution.kind != "dangling"
            cards.append(
                LinkCard(
                    path=link.item_path,
                    name=link.name,
                    title=link.title,
                    description=link.description,
                    target=link.target,
                    target_kind=resolution.kind if resolved else "link",
                    resolved=resolved,
                )
            )
        return cards

    # ─────────────────────────────────────────────────────────────────────────
    # Mutators
    # ─────────────────────────────────────────────────────────────────────────

    async def create_topic(self, spec: TopicCreate, parent_path: str | None = None) -> Topic:
        """Create a topic under ``parent_path`` (root when omitted).

        The topic is appended to its parent's child list unless
        ``spec.display.order`` asks for a position, which is clamped.

        Raises:
            InvalidNameError: If the name cannot be a path segment.
            TopicNotFoundError: If the parent does not exist.
            DuplicateNameError: If the parent already has a child of that name.
        """
        name = validate_name(spec.name)
        parent = normalize_path(parent_path) or None
        path = join_path(parent, name)

        async with self.locks.hold(path):
            old = self._tree
            if parent is not None:
                old.node(parent)
            if path in old:
                raise DuplicateNameError("topic", name, parent)

            display = TopicDisplay(**spec.display.model_dump(exclude_none=True, exclude={"order"}))
            topic = Topic(
                name=name,
                title=spec.title or name,
                description=spec.description,
                documentation=spec.documentation,
                display=display,
                path=path,
            )
            tree = old.clone()
            tree.insert(TopicNode(topic), spec.display.order)

            undo = UndoLog()
            topic_dir = self.paths.topic_dir(self.scope_id, path)
            try:
                self.paths.templates_dir(self.scope_id, path).mkdir(parents=True, exist_ok=True)
                self.paths.links_dir(self.scope_id, path).mkdir(parents=True, exist_ok=True)
                self.write_orders(old, tree, [parent], undo)
            except OSError as e:
                undo.rollback()
                shutil.rmtree(topic_dir, ignore_errors=True)
                raise StorageError.from_os_error(f"Failed to create topic '{path}'", e) from e

            self.publish(tree)

        log.info("Created topic %s", path)
        self.events.publish(TopicCreated(self.scope_id, path))
        return tree.nodes[path].topic

    async def update_topic(self, path: str, patch: TopicUpdate) -> Topic:
        """Apply a partial update. A new ``name`` renames the topic.

        Raises:
            TopicNotFoundError: If the topic does not exist.
            DuplicateNameError: If a sibling already uses the new name.
            StorageError: If the rename failed and was rolled back.
        """
        path = normalize_path(path)
        current = self._tree.node(path).topic
        fields = set(patch.model_fields_set)

        if "name" in fields and patch.name is not None and patch.name != current.name:
            path = await self.rename_topic(path, patch.name)
        fields.discard("name")

        if not fields:
            return self.get_topic(path)

        async with self.locks.hold(path):
            old = self._tree
            tree = old.clone()
            topic = tree.node(path).topic
            if "title" in fields and patch.title is not None:
                topic.title = patch.title
            if "description" in fields and patch.description is not None:
                topic.description = patch.description
            if "documentation" in fields:
                topic.documentation = patch.documentation
            if "display" in fields and patch.display is not None:
                changes = patch.display.model_dump(exclude_none=True)
                new_index = changes.pop("order", None)
                topic.display = topic.display.model_copy(update=changes)
                if new_index is not None:
                    tree.move_child(path, new_index)
                    tree.renumber(parent_path(path))

            undo = UndoLog()
            try:
                undo.write(self.topic_file(path), topic)
                self.write_orders(old, tree, [parent_path(path)], undo)
            except OSError as e:
                undo.rollback()
                raise StorageError.from_os_error(f"Failed to update topic '{path}'", e) from e

            self.publish(tree)

        self.events.publish(TopicUpdated(self.scope_id, path))
        return tree.nodes[path].topic

    async def rename_topic(self, path: str, new_name: str) -> str:
        """Rename a topic in place, keeping its position.

        Returns:
            The new topic path.
        """
        path = normalize_path(path)
        name = validate_name(new_name)
        parent = parent_path(path)
        new_path = join_path(parent, name)
        if new_path == path:
            return path

        async with self.locks.hold(path, new_path):
            self._tree.node(path)
            if new_path in self._tree:
                raise DuplicateNameError("topic", name, parent)
            await self._relocate(path, new_path)

        log.info("Renamed topic %s -> %s", path, new_path)
        self.events.publish(ItemPathsChanged(self.scope_id, path, new_path))
        self.events.publish(TopicUpdated(self.scope_id, new_path))
        return new_path

    async def move_topic(self, path: str, new_parent_path: str | None) -> Topic:
        """Move a topic (and its subtree) under ``new_parent_path``.

        ``None`` moves it to the root level. The topic is appended at the end
        of its new parent's children.

        Raises:
            CyclicMoveError: If the target is the topic itself or a descendant.
            TopicNotFoundError: If the topic or the target does not exist.
            DuplicateNameError: If the target already has a child of that name.
        """
        path = normalize_path(path)
        target = normalize_path(new_parent_path) or None

        # Walk from the target up to the root looking for the moved topic
        ancestor = target
        while ancestor is not None:
            if ancestor == path:
                raise CyclicMoveError(path, target or "")
            ancestor = parent_path(ancestor)

        if parent_path(path) == target:
            return self.get_topic(path)

        name = path_name(path)
        new_path = join_path(target, name)

        async with self.locks.hold(path, new_path):
            self._tree.node(path)
            if target is not None:
                self._tree.node(target)
            if new_path in self._tree:
                raise DuplicateNameError("topic", name, target)
            await self._relocate(path, new_path)

        log.info("Moved topic %s -> %s", path, new_path)
        self.events.publish(ItemPathsChanged(self.scope_id, path, new_path))
        self.events.publish(TopicMoved(self.scope_id, path, new_path))
        return self.get_topic(new_path)

    async def _relocate(self, old_path: str, new_path: str) -> None:
        """Move a subtree on disk and in memory, all or nothing.

        Must be called with both prefixes held.
        """
        scope_id = self.scope_id
        planned = self._tree.clone()
        planned.relocate(old_path, new_path)
        retargeted = planned.rewrite_link_targets(old_path, new_path)

        # Every file inside the moved subtree embeds the old prefix
        writes: list[tuple[Path, BaseModel]] = []
        for p in [new_path] + planned.descendants(new_path):
            node = planned.nodes[p]
            writes.append((self.paths.topic_file(scope_id, p), node.topic))
            writes.extend((self.paths.template_file(scope_id, p, t.name), t) for t in node.templates.values())
            writes.extend((self.paths.link_file(scope_id, p, link.name), link) for link in node.links.values())
        writes.extend(
            (self.paths.link_file(scope_id, link.topic_path, link.name), link)
            for link in retargeted
            if not is_same_or_descendant(link.topic_path, new_path)
        )

        src = self.paths.topic_dir(scope_id, old_path)
        dst = self.paths.topic_dir(scope_id, new_path)
        undo = UndoLog()

        def run() -> None:
            undo.move(src, dst)
            for file, model in writes:
                undo.write(file, model)

        try:
            await asyncio.to_thread(run)

            # Rebase onto whatever was published while the files moved
            old = self._tree
            tree = old.clone()
            tree.relocate(old_path, new_path)
            tree.rewrite_link_targets(old_path, new_path)
            self.write_orders(old, tree, [parent_path(old_path), parent_path(new_path)], undo)
        except (OSError, CodebricksError) as e:
            log.warning("Relocating %s failed after %d step(s), rolling back: %s", old_path, len(undo), e)
            errors = [str(e)] + undo.rollback()
            raise StorageError(
                f"Failed to relocate topic '{old_path}' to '{new_path}'; changes were rolled back",
                errors=errors,
                transient=isinstance(e, PermissionError),
            ) from e

        self.publish(tree)

    async def delete_topic(self, path: str, delete_children: bool = False) -> None:
        """Delete a topic.

        A topic with subtopics, templates or links is only deleted when
        ``delete_children`` is set; its subtree goes children first.

        Raises:
            TopicNotFoundError: If the topic does not exist.
            NonEmptyTopicError: If the topic has content and
                ``delete_children`` is false. Nothing is touched.
        """
        path = normalize_path(path)

        async with self.locks.hold(path):
            node = self._tree.node(path)
            if not node.is_empty and not delete_children:
                raise NonEmptyTopicError(path, len(node.children), len(node.templates), len(node.links))

            order = list(reversed(self._tree.descendants(path))) + [path]
            errors = await asyncio.to_thread(
                _delete_dirs, [self.paths.topic_dir(self.scope_id, p) for p in order]
            )
            if errors:
                # Partially deleted: resync from disk
                self.reload()
                raise StorageError(f"Failed to delete topic '{path}'", errors=errors)

            old = self._tree
            tree = old.clone()
            tree.remove(path)
            try:
                self.write_orders(old, tree, [parent_path(path)], UndoLog())
            except OSError as e:
                log.warning("Could not persist sibling order after deleting %s: %s", path, e)
            self.publish(tree)

        log.info("Deleted topic %s (%d topic(s))", path, len(order))
        self.events.publish(TopicDeleted(self.scope_id, path))

    async def reorder_topics(self, ops: list[ReorderOp]) -> None:
        """Move topics to new indices within their parents' child lists.

        Ops are grouped per parent and placed in one pass. Indices are clamped
        to the child count; topics sharing an index keep their original
        relative order.

        Raises:
            TopicNotFoundError: If any op names a missing topic.
        """
        groups: dict[str | None, list[ReorderOp]] = {}
        for op in ops:
            op = op.model_copy(update={"path": normalize_path(op.path)})
            self._tree.node(op.path)
            groups.setdefault(parent_path(op.path), []).append(op)
        if not groups:
            return

        async with self.locks.hold(*groups):
            old = self._tree
            tree = old.clone()
            for parent, group in groups.items():
                # A later op for the same topic wins
                targets = {tree.node(op.path).path: op.new_index for op in group}
                tree.place_children(parent, targets)
                tree.renumber(parent)

            undo = UndoLog()
            try:
                self.write_orders(old, tree, groups, undo)
            except OSError as e:
                undo.rollback()
                raise StorageError.from_os_error("Failed to persist topic order", e) from e
            self.publish(tree)

        self.events.publish(TopicsReordered(self.scope_id, tuple(groups)))
