"""Template CRUD scoped to a topic path.

Templates are addressed by ``{topic_path}/templates/{name}``.
"""

from __future__ import annotations

import logging

from .errors import DuplicateNameError, StorageError, TemplateNotFoundError
from .events import ItemPathsChanged
from .models import Template, TemplateCreate, TemplateUpdate
from .paths import normalize_path, parse_item_path, template_item_path, validate_name
from .topics import TopicManager, UndoLog

log = logging.getLogger(__name__)


class TemplateRepository:
    def __init__(self, topics: TopicManager):
        self.topics = topics

    def _file(self, topic_path: str, name: str):
        return self.topics.paths.template_file(self.topics.scope_id, topic_path, name)

    # ─────────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────────

    def find_template(self, full_path: str) -> Template | None:
        """Template at ``full_path``, or None."""
        return self.topics.tree.find_template(normalize_path(full_path))

    def get_template(self, full_path: str) -> Template:
        template = self.find_template(full_path)
        if template is None:
            raise TemplateNotFoundError(full_path)
        return template

    def get_templates(self, topic_path: str, recursive: bool = False) -> list[Template]:
        """Templates of one topic sorted by name, optionally with its subtree."""
        tree = self.topics.tree
        topic_path = normalize_path(topic_path)
        paths = [topic_path] + (tree.descendants(topic_path) if recursive else [])
        if not recursive:
            tree.node(topic_path)
        result = []
        for path in paths:
            node = tree.nodes[path]
            result.extend(node.templates[name] for name in sorted(node.templates))
        return result

    def get_all_templates(self) -> list[Template]:
        """Every template in the scope, in one walk over the tree."""
        result: list[Template] = []
        for node in self.topics.tree.iter_depth_first():
            result.extend(node.templates[name] for name in sorted(node.templates))
        return result

    def find_by_language(self, language: str) -> list[Template]:
        return [t for t in self.get_all_templates() if t.language == language]

    # ─────────────────────────────────────────────────────────────────────────
    # Mutators
    # ─────────────────────────────────────────────────────────────────────────

    async def create_template(self, spec: TemplateCreate, topic_path: str) -> Template:
        """Create a template in a topic.

        Raises:
            InvalidNameError: If the name cannot be a file name.
            TopicNotFoundError: If the topic does not exist.
            DuplicateNameError: If the topic already has a template of that name.
        """
        name = validate_name(spec.name, "template")
        topic_path = normalize_path(topic_path)

        async with self.topics.locks.hold(topic_path):
            tree = self.topics.tree.clone()
            node = tree.node(topic_path)
            if name in node.templates:
                raise DuplicateNameError("template", name, topic_path)

            template = Template(
                name=name,
                title=spec.title or name,
                description=spec.description,
                code=spec.code,
                language=spec.language,
                documentation=spec.documentation,
                topic_path=topic_path,
            )
            try:
                UndoLog().write(self._file(topic_path, name), template)
            except OSError as e:
                raise StorageError.from_os_error(f"Failed to create template '{name}'", e) from e

            node.templates[name] = template
            self.topics.publish(tree)

        log.info("Created template %s", template.item_path)
        return template

    async def update_template(self, full_path: str, patch: TemplateUpdate) -> Template | None:
        """Apply a partial update; a new ``name`` renames the file.

        Internal links targeting a renamed template are retargeted with it.

        Returns:
            The updated template, or None if it does not exist (for example
            because it was already deleted).
        """
        address = parse_item_path(full_path)
        if address.kind != "template":
            return None

        # Topics whose links follow a renamed template are held as well
        owners = []
        if patch.name is not None and patch.name != address.name:
            old_item_path = template_item_path(address.topic_path, address.name)
            owners = [link.topic_path for link in self.topics.tree.links_targeting(old_item_path)]

        async with self.topics.locks.hold(address.topic_path, *owners):
            tree = self.topics.tree.clone()
            node = tree.get(address.topic_path)
            if node is None or address.name not in node.templates:
                return None

            current = node.templates[address.name]
            changes = patch.model_dump(exclude_unset=True, exclude={"documentation"})
            changes = {key: value for key, value in changes.items() if value is not None}
            if "documentation" in patch.model_fields_set:
                changes["documentation"] = patch.documentation

            new_name = changes.get("name", current.name)
            if new_name != current.name:
                validate_name(new_name, "template")
                if new_name in node.templates:
                    raise DuplicateNameError("template", new_name, address.topic_path)

            updated = current.model_copy(update=changes)
            retargeted = []
            if new_name != current.name:
                retargeted = tree.rewrite_link_targets(current.item_path, updated.item_path)
            undo = UndoLog()
            try:
                undo.write(self._file(address.topic_path, new_name), updated)
                for link in retargeted:
                    undo.write(self.topics.paths.link_file(self.topics.scope_id, link.topic_path, link.name), link)
                if new_name != current.name:
                    self._file(address.topic_path, current.name).unlink(missing_ok=True)
            except OSError as e:
                undo.rollback()
                raise StorageError.from_os_error(f"Failed to update template '{full_path}'", e) from e

            del node.templates[current.name]
            node.templates[new_name] = updated
            self.topics.publish(tree)

        if new_name != current.name:
            self.topics.events.publish(
                ItemPathsChanged(self.topics.scope_id, current.item_path, updated.item_path)
            )
        return updated

    async def delete_template(self, full_path: str) -> None:
        """Delete a template. Deleting an absent template is a no-op."""
        address = parse_item_path(full_path)
        if address.kind != "template":
            return

        async with self.topics.locks.hold(address.topic_path):
            tree = self.topics.tree.clone()
            node = tree.get(address.topic_path)
            try:
                self._file(address.topic_path, address.name).unlink(missing_ok=True)
            except OSError as e:
                raise StorageError.from_os_error(f"Failed to delete template '{full_path}'", e) from e
            if node is None or node.templates.pop(address.name, None) is None:
                return
            self.topics.publish(tree)

        log.info("Deleted template %s", template_item_path(address.topic_path, address.name))
