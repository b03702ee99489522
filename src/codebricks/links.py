"""Link CRUD.

Links are addressed by ``{topic_path}/links/{name}`` and point at a URL, a
topic path or a template item path. They do not own their target: deleting
the target leaves the link in place, where it resolves as dangling.
"""

from __future__ import annotations

import logging

from .errors import DuplicateNameError, LinkNotFoundError, StorageError
from .events import ItemPathsChanged
from .models import Link, LinkCreate, LinkResolution, LinkUpdate
from .paths import normalize_path, parse_item_path, validate_name
from .topics import TopicManager, UndoLog

log = logging.getLogger(__name__)


def _normalize_target(target: str) -> str:
    if target.startswith(("http://", "https://")):
        return target.strip()
    return normalize_path(target)


class LinkRepository:
    def __init__(self, topics: TopicManager):
        self.topics = topics

    def _file(self, topic_path: str, name: str):
        return self.topics.paths.link_file(self.topics.scope_id, topic_path, name)

    def find_link(self, full_path: str) -> Link | None:
        address = parse_item_path(full_path)
        if address.kind != "link":
            return None
        node = self.topics.tree.get(address.topic_path)
        return node.links.get(address.name) if node else None

    def get_link(self, full_path: str) -> Link:
        link = self.find_link(full_path)
        if link is None:
            raise LinkNotFoundError(full_path)
        return link

    def get_links(self, topic_path: str) -> list[Link]:
        node = self.topics.tree.node(normalize_path(topic_path))
        return [node.links[name] for name in sorted(node.links)]

    def resolve_link(self, link: Link) -> LinkResolution:
        """Resolve a link's target against the current tree."""
        return self.topics.tree.resolve(link.target)

    async def create_link(self, spec: LinkCreate, topic_path: str) -> Link:
        """Create a link in a topic. The target is not required to exist.

        Raises:
            TopicNotFoundError: If the topic does not exist.
            DuplicateNameError: If the topic already has a link of that name.
        """
        name = validate_name(spec.name, "link")
        topic_path = normalize_path(topic_path)

        async with self.topics.locks.hold(topic_path):
            tree = self.topics.tree.clone()
            node = tree.node(topic_path)
            if name in node.links:
                raise DuplicateNameError("link", name, topic_path)

            link = Link(
                name=name,
                title=spec.title or name,
                description=spec.description,
                target=_normalize_target(spec.target),
                topic_path=topic_path,
            )
            try:
                UndoLog().write(self._file(topic_path, name), link)
            except OSError as e:
                raise StorageError.from_os_error(f"Failed to create link '{name}'", e) from e

            node.links[name] = link
            self.topics.publish(tree)

        log.info("Created link %s -> %s", link.item_path, link.target)
        return link

    async def update_link(self, full_path: str, patch: LinkUpdate) -> Link | None:
        """Apply a partial update. Returns None if the link does not exist."""
        address = parse_item_path(full_path)
        if address.kind != "link":
            return None

        async with self.topics.locks.hold(address.topic_path):
            tree = self.topics.tree.clone()
            node = tree.get(address.topic_path)
            if node is None or address.name not in node.links:
                return None

            current = node.links[address.name]
            changes = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if v is not None}
            if "target" in changes:
                changes["target"] = _normalize_target(changes["target"])
            new_name = changes.get("name", current.name)
            if new_name != current.name:
                validate_name(new_name, "link")
                if new_name in node.links:
                    raise DuplicateNameError("link", new_name, address.topic_path)

            updated = current.model_copy(update=changes)
            undo = UndoLog()
            try:
                undo.write(self._file(address.topic_path, new_name), updated)
                if new_name != current.name:
                    self._file(address.topic_path, current.name).unlink(missing_ok=True)
            except OSError as e:
                undo.rollback()
                raise StorageError.from_os_error(f"Failed to update link '{full_path}'", e) from e

            del node.links[current.name]
            node.links[new_name] = updated
            self.topics.publish(tree)

        if new_name != current.name:
            self.topics.events.publish(
                ItemPathsChanged(self.topics.scope_id, current.item_path, updated.item_path)
            )
        return updated

    async def delete_link(self, full_path: str) -> None:
        """Delete a link. Deleting an absent link is a no-op."""
        address = parse_item_path(full_path)
        if address.kind != "link":
            return

        async with self.topics.locks.hold(address.topic_path):
            tree = self.topics.tree.clone()
            node = tree.get(address.topic_path)
            try:
                self._file(address.topic_path, address.name).unlink(missing_ok=True)
            except OSError as e:
                raise StorageError.from_os_error(f"Failed to delete link '{full_path}'", e) from e
            if node is not None and node.links.pop(address.name, None) is not None:
                self.topics.publish(tree)
