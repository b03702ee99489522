"""In-memory topic hierarchy.

The tree is an arena of nodes keyed by topic path. Nodes hold the paths of
their children, never object references; a node's parent is recovered by
truncating its path. Managers mutate a ``clone()`` and publish it only after
the matching file writes succeeded, so readers always see a complete tree.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from .config import ITEM_SUFFIX, LINKS_DIRNAME, RESERVED_TOPIC_NAMES, TEMPLATES_DIRNAME, TOPIC_FILENAME
from .errors import TopicNotFoundError
from .models import Link, LinkResolution, Template, Topic
from .paths import (
    is_same_or_descendant,
    join_path,
    normalize_path,
    parent_path,
    parse_item_path,
    path_name,
    replace_prefix,
)
from .storage import read_model

log = logging.getLogger(__name__)

ItemT = TypeVar("ItemT", bound=BaseModel)


@dataclass
class TopicNode:
    """A topic plus the content it owns."""

    topic: Topic
    children: list[str] = field(default_factory=list)  # Child topic paths, in display order
    templates: dict[str, Template] = field(default_factory=dict)
    links: dict[str, Link] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return self.topic.path

    @property
    def parent_path(self) -> str | None:
        return parent_path(self.topic.path)

    @property
    def is_empty(self) -> bool:
        return not (self.children or self.templates or self.links)

    def copy(self) -> TopicNode:
        return TopicNode(
            topic=self.topic.model_copy(deep=True),
            children=list(self.children),
            templates={name: t.model_copy(deep=True) for name, t in self.templates.items()},
            links={name: link.model_copy(deep=True) for name, link in self.links.items()},
        )


def _load_items(directory: Path, model_type: type[ItemT], topic_path: str) -> dict[str, ItemT]:
    items: dict[str, ItemT] = {}
    if not directory.is_dir():
        return items
    for file in sorted(directory.glob(f"*{ITEM_SUFFIX}")):
        # File location is authoritative over the embedded name and topic path
        item = read_model(file, model_type, {"name": file.stem, "topic_path": topic_path})
        if item is not None:
            items[file.stem] = item
    return items


class TopicTree:
    """Arena of topic nodes for one scope."""

    def __init__(self, nodes: dict[str, TopicNode] | None = None, roots: list[str] | None = None):
        self.nodes: dict[str, TopicNode] = nodes if nodes is not None else {}
        self.roots: list[str] = roots if roots is not None else []

    # ─────────────────────────────────────────────────────────────────────────
    # Loading
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def load(cls, scope_dir: Path) -> TopicTree:
        """Build the tree from a scope directory.

        Any directory holding a topic.json is a topic. Malformed files are
        skipped with a warning.
        """
        tree = cls()
        if scope_dir.is_dir():
            tree._load_children(scope_dir, None)
        log.debug("Loaded %d topic(s) from %s", len(tree.nodes), scope_dir)
        return tree

    def _load_children(self, directory: Path, parent: str | None) -> None:
        found: list[TopicNode] = []
        for entry in sorted(directory.iterdir()):
            if not entry.is_dir() or entry.name.startswith(".") or entry.name in RESERVED_TOPIC_NAMES:
                continue
            if not (entry / TOPIC_FILENAME).is_file():
                continue

            path = join_path(parent, entry.name)
            topic = read_model(entry / TOPIC_FILENAME, Topic, {"name": entry.name, "path": path})
            if topic is None:
                continue

            node = TopicNode(
                topic=topic,
                templates=_load_items(entry / TEMPLATES_DIRNAME, Template, path),
                links=_load_items(entry / LINKS_DIRNAME, Link, path),
            )
            self.nodes[path] = node
            found.append(node)
            self._load_children(entry, path)

        found.sort(key=lambda n: (n.topic.display.order, n.topic.name))
        self._set_child_paths(parent, [n.path for n in found])
        self.renumber(parent)

    # ─────────────────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────────────────

    def __contains__(self, path: object) -> bool:
        return path in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, path: str) -> TopicNode | None:
        return self.nodes.get(path)

    def node(self, path: str) -> TopicNode:
        node = self.nodes.get(path)
        if node is None:
            raise TopicNotFoundError(path)
        return node

    def child_paths(self, parent: str | None) -> list[str]:
        """Ordered child paths of ``parent``; ``None`` means the root level."""
        if parent is None:
            return self.roots
        return self.node(parent).children

    def _set_child_paths(self, parent: str | None, children: list[str]) -> None:
        if parent is None:
            self.roots = children
        else:
            self.nodes[parent].children = children

    def parent(self, path: str) -> TopicNode | None:
        head = parent_path(path)
        return self.nodes.get(head) if head is not None else None

    def chain(self, path: str) -> list[TopicNode]:
        """Nodes from the root down to ``path`` (breadcrumb)."""
        self.node(path)
        chain: list[TopicNode] = []
        current: str | None = path
        while current is not None:
            chain.append(self.nodes[current])
            current = parent_path(current)
        chain.reverse()
        return chain

    def descendants(self, path: str) -> list[str]:
        """Paths below ``path`` in pre-order, excluding ``path`` itself."""
        result: list[str] = []
        stack = list(reversed(self.node(path).children))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self.nodes[current].children))
        return result

    def iter_breadth_first(self) -> Iterator[TopicNode]:
        queue = deque(self.roots)
        while queue:
            node = self.nodes[queue.popleft()]
            yield node
            queue.extend(node.children)

    def iter_depth_first(self) -> Iterator[TopicNode]:
        stack = list(reversed(self.roots))
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    @property
    def max_depth(self) -> int:
        return max((node.topic.depth for node in self.nodes.values()), default=0)

    # ─────────────────────────────────────────────────────────────────────────
    # Mutation (callers mutate a clone, then publish it)
    # ─────────────────────────────────────────────────────────────────────────

    def clone(self) -> TopicTree:
        return TopicTree({path: node.copy() for path, node in self.nodes.items()}, list(self.roots))

    def renumber(self, parent: str | None) -> list[str]:
        """Set display.order to 0..n-1 following the child list.

        Returns:
            Paths whose order value changed.
        """
        changed = []
        for index, child in enumerate(self.child_paths(parent)):
            display = self.nodes[child].topic.display
            if display.order != index:
                display.order = index
                changed.append(child)
        return changed

    def insert(self, node: TopicNode, index: int | None = None) -> None:
        """Register ``node`` under its parent at ``index`` (clamped; end if None)."""
        parent = node.parent_path
        children = self.child_paths(parent)
        self.nodes[node.path] = node
        if index is None:
            children.append(node.path)
        else:
            children.insert(max(0, min(index, len(children))), node.path)
        self.renumber(parent)

    def remove(self, path: str) -> list[str]:
        """Remove ``path`` and its subtree.

        Returns:
            Removed paths, children before parents.
        """
        removed = list(reversed(self.descendants(path))) + [path]
        parent = parent_path(path)
        self.child_paths(parent).remove(path)
        for p in removed:
            del self.nodes[p]
        self.renumber(parent)
        return removed

    def move_child(self, path: str, index: int) -> None:
        """Move ``path`` to ``index`` within its parent's child list (clamped)."""
        parent = parent_path(path)
        children = self.child_paths(parent)
        children.remove(path)
        children.insert(max(0, min(index, len(children))), path)

    def place_children(self, parent: str | None, targets: dict[str, int]) -> None:
        """Put several children of ``parent`` at target indices in one pass.

        Targets are clamped to the child list. Children sharing a target keep
        their current relative order and occupy consecutive positions from it.
        """
        children = self.child_paths(parent)
        count = len(children)
        position = {path: i for i, path in enumerate(children)}

        def clamped(path: str) -> int:
            return max(0, min(targets[path], count - 1))

        placed = [p for p in children if p not in targets]
        for path in sorted(targets, key=lambda p: (clamped(p), position[p])):
            index = clamped(path)
            # Consecutive ties land after the previous one
            while index < len(placed) and placed[index] in targets and clamped(placed[index]) == clamped(path):
                index += 1
            placed.insert(min(index, len(placed)), path)
        self._set_child_paths(parent, placed)

    def relocate(self, old_path: str, new_path: str) -> None:
        """Re-key the subtree at ``old_path`` under ``new_path``.

        Updates the embedded paths of every topic, template and link in the
        subtree. A rename keeps the topic's position; a move appends it at
        the end of its new parent.
        """
        subtree = [old_path] + self.descendants(old_path)
        old_parent = parent_path(old_path)
        new_parent = parent_path(new_path)
        siblings = self.child_paths(old_parent)
        position = siblings.index(old_path)
        siblings.remove(old_path)

        moved = {p: self.nodes.pop(p) for p in subtree}
        for p, node in moved.items():
            target = replace_prefix(p, old_path, new_path)
            node.topic.path = target
            node.children = [replace_prefix(c, old_path, new_path) for c in node.children]
            for template in node.templates.values():
                template.topic_path = target
            for link in node.links.values():
                link.topic_path = target
            self.nodes[target] = node
        self.nodes[new_path].topic.name = path_name(new_path)

        if new_parent == old_parent:
            siblings.insert(position, new_path)
        else:
            self.child_paths(new_parent).append(new_path)
            self.renumber(old_parent)
        self.renumber(new_parent)

    def links_targeting(self, prefix: str) -> list[Link]:
        """Internal links whose target is ``prefix`` or lies beneath it."""
        return [
            link
            for node in self.nodes.values()
            for link in node.links.values()
            if not link.is_external and is_same_or_descendant(link.target, prefix)
        ]

    def rewrite_link_targets(self, old_prefix: str, new_prefix: str) -> list[Link]:
        changed = self.links_targeting(old_prefix)
        for link in changed:
            link.target = replace_prefix(link.target, old_prefix, new_prefix)
        return changed

    # ─────────────────────────────────────────────────────────────────────────
    # Serialization
    # ─────────────────────────────────────────────────────────────────────────

    def _node_dict(self, node: TopicNode) -> dict[str, Any]:
        data = node.topic.model_dump(mode="json")
        data["templates"] = [node.templates[name].model_dump(mode="json") for name in sorted(node.templates)]
        data["links"] = [node.links[name].model_dump(mode="json") for name in sorted(node.links)]
        data["children"] = []
        return data

    def serialize(self) -> list[dict[str, Any]]:
        """Nested plain dicts for a transport boundary.

        Emitted breadth-first with only ``children`` arrays and no parent
        field, so the output is acyclic by construction.
        """
        result: list[dict[str, Any]] = []
        queue: deque[tuple[TopicNode, dict[str, Any]]] = deque()
        for root in self.roots:
            node = self.nodes[root]
            data = self._node_dict(node)
            result.append(data)
            queue.append((node, data))

        while queue:
            node, data = queue.popleft()
            for child in node.children:
                child_node = self.nodes[child]
                child_data = self._node_dict(child_node)
                data["children"].append(child_data)
                queue.append((child_node, child_data))
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Link targets
    # ─────────────────────────────────────────────────────────────────────────

    def find_template(self, item_path: str) -> Template | None:
        address = parse_item_path(item_path)
        if address.kind != "template":
            return None
        node = self.nodes.get(address.topic_path)
        return node.templates.get(address.name) if node else None

    def resolve(self, target: str) -> LinkResolution:
        """What ``target`` points at; missing internal targets are dangling."""
        if target.startswith(("http://", "https://")):
            return LinkResolution(kind="url", target=target)

        normalized = normalize_path(target)
        node = self.nodes.get(normalized)
        if node is not None:
            return LinkResolution(kind="topic", target=normalized, topic=node.topic)

        template = self.find_template(normalized)
        if template is not None:
            return LinkResolution(kind="template", target=normalized, template=template)
        return LinkResolution(kind="dangling", target=target)
