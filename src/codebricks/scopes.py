"""Scope switching, favorites, usage tracking and scope import/export.

The current scope is an explicit field of the ScopeManager instance, so
several engines can run side by side in one process.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from .config import DEFAULT_SCOPE_ID, USAGE_STATS_LIMIT, get_default_scope, load_settings, save_settings
from .errors import CodebricksError, ConfigurationError, ImportValidationError, ScopeNotFoundError, StorageError
from .events import (
    EventChannel,
    FavoriteAdded,
    FavoriteRemoved,
    ItemPathsChanged,
    LocationChanged,
    ScopeCreated,
    ScopeDeleted,
    ScopeSwitched,
    UsageCleared,
    UsageUpdated,
)
from .locks import KeyedLocks
from .models import (
    ExportBundle,
    ExportScopeInfo,
    ImportOptions,
    ImportResult,
    Language,
    LinkCreate,
    LinkUpdate,
    ScopeConfig,
    ScopeUsageStats,
    TemplateCreate,
    TemplateUpdate,
    TopicCreate,
    TopicDisplayUpdate,
    TopicUpdate,
    UsageItem,
)
from .paths import is_same_or_descendant, normalize_path, replace_prefix
from .scope_store import ScopeStore, new_scope_config

if TYPE_CHECKING:
    from .links import LinkRepository
    from .templates import TemplateRepository
    from .topics import TopicManager

log = logging.getLogger(__name__)


class ScopeManager:
    """Owns the current scope and its per-scope state."""

    def __init__(self, store: ScopeStore, events: EventChannel, settings_path: Path | None = None):
        self.store = store
        self.events = events
        self.settings_path = settings_path
        self.current_scope_id: str = DEFAULT_SCOPE_ID
        self._scopes: dict[str, ScopeConfig] = {}
        self._item_locks = KeyedLocks()

        self.topics: TopicManager | None = None
        self.templates: TemplateRepository | None = None
        self.links: LinkRepository | None = None

        events.subscribe(ItemPathsChanged, self._on_item_paths_changed)
        events.subscribe(LocationChanged, self._on_location_changed, propagate=True)

    def attach(self, topics: TopicManager, templates: TemplateRepository, links: LinkRepository) -> None:
        """Connect the content repositories used by export and import."""
        self.topics = topics
        self.templates = templates
        self.links = links

    # ─────────────────────────────────────────────────────────────────────────
    # Scope lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def initialize(self, scope_id: str | None = None) -> ScopeConfig:
        """Load the start-up scope, creating the default scope on first run."""
        if not self.store.exists(DEFAULT_SCOPE_ID):
            self.store.create(new_scope_config(DEFAULT_SCOPE_ID))

        target = scope_id or get_default_scope(self.settings_path)
        self.current_scope_id = target
        scope = self._load_or_create(target)
        log.debug("Initialized with scope %s (%d available)", target, len(self.store.list_ids()))
        return scope

    def _load_or_create(self, scope_id: str) -> ScopeConfig:
        scope = self._scopes.get(scope_id)
        if scope is not None:
            return scope
        if self.store.exists(scope_id):
            scope = self.store.load(scope_id)
        else:
            scope = self.store.create(new_scope_config(scope_id))
            self.events.publish(ScopeCreated(scope_id))
        self._scopes[scope_id] = scope
        return scope

    def get_scope(self, scope_id: str) -> ScopeConfig:
        scope = self._scopes.get(scope_id)
        if scope is None:
            scope = self.store.load(scope_id)
            self._scopes[scope_id] = scope
        return scope

    @property
    def current_scope(self) -> ScopeConfig:
        return self._load_or_create(self.current_scope_id)

    def list_scopes(self) -> list[ScopeConfig]:
        return [self.get_scope(scope_id) for scope_id in self.store.list_ids()]

    async def switch_scope(self, scope_id: str) -> ScopeConfig:
        """Make ``scope_id`` current, creating it if needed.

        Persists the choice in the settings file and publishes ScopeSwitched
        before returning, so the topic tree is already rerooted.

        Raises:
            StorageError: If the new scope cannot be loaded. The previous
                scope stays current.
        """
        previous = self.current_scope_id
        scope = self._load_or_create(scope_id)
        self.current_scope_id = scope_id

        settings = load_settings(self.settings_path)
        settings["current_scope"] = scope_id
        save_settings(settings, self.settings_path)

        try:
            self.events.publish(ScopeSwitched(scope_id, previous))
        except (OSError, CodebricksError) as e:
            log.error("Switching to scope %s failed, staying in %s: %s", scope_id, previous, e)
            self.current_scope_id = previous
            settings["current_scope"] = previous
            save_settings(settings, self.settings_path)
            self.events.publish(ScopeSwitched(previous, scope_id))
            if isinstance(e, OSError):
                raise StorageError.from_os_error(f"Failed to switch to scope '{scope_id}'", e) from e
            raise

        log.info("Switched scope %s -> %s", previous, scope_id)
        return scope

    async def create_scope(
        self,
        scope_id: str,
        name: str | None = None,
        description: str = "",
        scope_type: str | None = None,
    ) -> ScopeConfig:
        """Create a new, empty scope.

        Raises:
            DuplicateNameError: If the scope already exists.
        """
        scope = self.store.create(new_scope_config(scope_id, name, description=description, scope_type=scope_type))
        self._scopes[scope_id] = scope
        self.events.publish(ScopeCreated(scope_id))
        return scope

    async def update_scope(
        self,
        scope_id: str,
        *,
        name: str | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> ScopeConfig:
        scope = self.get_scope(scope_id)
        if name is not None:
            scope.name = name
        if title is not None:
            scope.title = title
        if description is not None:
            scope.description = description
        self.store.save(scope)
        return scope

    async def delete_scope(self, scope_id: str) -> None:
        """Delete a scope and all of its content.

        Deleting the current scope switches back to the default scope first.

        Raises:
            ConfigurationError: For the default scope.
            ScopeNotFoundError: If the scope does not exist.
        """
        if scope_id == DEFAULT_SCOPE_ID:
            raise ConfigurationError(
                "The default scope cannot be deleted",
                {"suggestion": "Clear its content instead, or delete another scope"},
            )
        if not self.store.exists(scope_id):
            raise ScopeNotFoundError(scope_id)
        if scope_id == self.current_scope_id:
            await self.switch_scope(DEFAULT_SCOPE_ID)

        self.store.delete(scope_id)
        self._scopes.pop(scope_id, None)
        self.events.publish(ScopeDeleted(scope_id))

    # ─────────────────────────────────────────────────────────────────────────
    # Languages
    # ─────────────────────────────────────────────────────────────────────────

    def get_languages(self) -> list[Language]:
        return list(self.current_scope.languages)

    async def add_language(self, language: Language, overwrite: bool = False) -> bool:
        """Register a language. Returns False if the id exists and was kept."""
        scope = self.current_scope
        for index, existing in enumerate(scope.languages):
            if existing.id == language.id:
                if not overwrite:
                    return False
                scope.languages[index] = language
                break
        else:
            scope.languages.append(language)
        self.store.save(scope)
        return True

    async def remove_language(self, language_id: str) -> bool:
        scope = self.current_scope
        remaining = [lang for lang in scope.languages if lang.id != language_id]
        if len(remaining) == len(scope.languages):
            return False
        scope.languages = remaining
        self.store.save(scope)
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Favorites
    # ─────────────────────────────────────────────────────────────────────────

    def get_favorites(self) -> list[str]:
        return list(self.current_scope.favorites)

    def is_favorite(self, item_path: str) -> bool:
        return normalize_path(item_path) in self.current_scope.favorites

    async def add_favorite(self, item_path: str) -> bool:
        """Add a favorite. Adding an existing favorite is a no-op.

        Returns:
            True if the favorites changed.
        """
        item_path = normalize_path(item_path)
        async with self._item_locks.hold(f"favorite:{item_path}"):
            scope = self.current_scope
            if item_path in scope.favorites:
                return False
            scope.favorites.append(item_path)
            self.store.save(scope)
        self.events.publish(FavoriteAdded(scope.id, item_path))
        return True

    async def remove_favorite(self, item_path: str) -> bool:
        """Remove a favorite. Removing a non-member is a no-op."""
        item_path = normalize_path(item_path)
        async with self._item_locks.hold(f"favorite:{item_path}"):
            scope = self.current_scope
            if item_path not in scope.favorites:
                return False
            scope.favorites.remove(item_path)
            self.store.save(scope)
        self.events.publish(FavoriteRemoved(scope.id, item_path))
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Usage
    # ─────────────────────────────────────────────────────────────────────────

    def get_usage(self, item_path: str) -> int:
        return self.current_scope.usage.get(normalize_path(item_path), 0)

    async def update_usage(self, item_path: str) -> int:
        """Increment the use count of an item.

        Increments of one item are serialized, and the count is persisted
        before it is returned.

        Returns:
            The new count.
        """
        item_path = normalize_path(item_path)
        async with self._item_locks.hold(f"usage:{item_path}"):
            scope = self.current_scope
            count = scope.usage.get(item_path, 0) + 1
            scope.usage[item_path] = count
            self.store.save(scope)
        self.events.publish(UsageUpdated(scope.id, item_path, count))
        return count

    async def clear_usage_stats(self) -> None:
        """Reset every usage counter of the current scope. Favorites stay."""
        scope = self.current_scope
        scope.usage = {}
        self.store.save(scope)
        log.info("Cleared usage statistics of scope %s", scope.id)
        self.events.publish(UsageCleared(scope.id))

    def get_usage_stats(self, limit: int = USAGE_STATS_LIMIT) -> ScopeUsageStats:
        scope = self.current_scope
        ranked = sorted(scope.usage.items(), key=lambda item: item[1], reverse=True)
        return ScopeUsageStats(
            scope_id=scope.id,
            most_used=[UsageItem(path=path, count=count) for path, count in ranked[:limit] if count > 0],
            total_uses=sum(scope.usage.values()),
            tracked_items=len(scope.usage),
            favorites_count=len(scope.favorites),
        )

    def _on_location_changed(self, event: LocationChanged) -> None:
        # Scopes are re-read from the new root; missing ones are recreated
        self._scopes.clear()
        self.initialize(self.current_scope_id)

    def _on_item_paths_changed(self, event: ItemPathsChanged) -> None:
        scope = self._scopes.get(event.scope_id)
        if scope is None:
            return

        def moved(path: str) -> bool:
            return is_same_or_descendant(path, event.old_prefix)

        if not any(moved(p) for p in scope.favorites) and not any(moved(p) for p in scope.usage):
            return
        scope.favorites = list(
            dict.fromkeys(replace_prefix(p, event.old_prefix, event.new_prefix) for p in scope.favorites)
        )
        usage: dict[str, int] = {}
        for path, count in scope.usage.items():
            key = replace_prefix(path, event.old_prefix, event.new_prefix)
            usage[key] = usage.get(key, 0) + count
        scope.usage = usage
        self.store.save(scope)
        log.debug("Rewrote favorites and usage %s -> %s", event.old_prefix, event.new_prefix)

    # ─────────────────────────────────────────────────────────────────────────
    # Import / export
    # ─────────────────────────────────────────────────────────────────────────

    def _content(self) -> tuple[TopicManager, TemplateRepository, LinkRepository]:
        if self.topics is None or self.templates is None or self.links is None:
            raise ConfigurationError("Scope manager is not attached to a topic tree")
        return self.topics, self.templates, self.links

    def export_scope(self, include_templates: bool = True, include_stats: bool = True) -> ExportBundle:
        """Snapshot the current scope.

        Without stats, favorites and usage are left out of the bundle
        entirely rather than zeroed.
        """
        topics, _, _ = self._content()
        scope = self.current_scope
        tree = topics.tree
        nodes = list(tree.iter_breadth_first())

        bundle = ExportBundle(
            exported_at=datetime.now(UTC),
            scope=ExportScopeInfo(
                id=scope.id,
                name=scope.name,
                title=scope.title,
                description=scope.description,
                type=scope.type,
            ),
            include_templates=include_templates,
            include_stats=include_stats,
            languages=[lang.model_copy() for lang in scope.languages],
            topics=[node.topic.model_copy(deep=True) for node in nodes],
            links=[node.links[name].model_copy() for node in nodes for name in sorted(node.links)],
        )
        if include_templates:
            bundle.templates = [node.templates[name].model_copy(deep=True) for node in nodes for name in sorted(node.templates)]
        if include_stats:
            bundle.favorites = list(scope.favorites)
            bundle.usage = dict(scope.usage)
        return bundle

    async def import_scope(
        self,
        bundle: ExportBundle | dict[str, Any],
        options: ImportOptions | None = None,
    ) -> ImportResult:
        """Import a bundle into the current scope.

        Three independent axes apply:
        - topics (with their templates and links): an existing item is
          overwritten only with ``merge_topics`` and ``overwrite_existing``;
          otherwise the incoming one is skipped and counted
        - languages: union by id when ``merge_languages``; the incoming entry
          wins a conflict only with ``overwrite_existing``
        - stats: usage and favorites are copied only when the matching
          ``preserve_*`` flag is set; otherwise existing values stay

        Per-item failures are collected in ``errors`` and never abort the
        import.

        Raises:
            ImportValidationError: If the bundle is malformed.
        """
        if not isinstance(bundle, ExportBundle):
            try:
                bundle = ExportBundle.model_validate(bundle)
            except ValidationError as e:
                raise ImportValidationError(
                    f"Invalid export bundle: {e.error_count()} validation error(s)",
                    {"errors": [err["msg"] for err in e.errors()], "suggestion": "Export the scope again"},
                ) from e

        options = options or ImportOptions()
        overwrite = options.merge_topics and options.overwrite_existing
        result = ImportResult()

        await self._import_topics(bundle, overwrite, result)
        await self._import_templates(bundle, overwrite, result)
        await self._import_links(bundle, overwrite, result)
        self._import_languages(bundle, options, result)
        self._import_stats(bundle, options, result)

        log.info(
            "Imported into %s: %d topic(s), %d template(s), %d link(s), %d skipped, %d error(s)",
            self.current_scope_id,
            result.topics_created + result.topics_updated,
            result.templates_created + result.templates_updated,
            result.links_created + result.links_updated,
            result.skipped,
            len(result.errors),
        )
        return result

    async def _import_topics(self, bundle: ExportBundle, overwrite: bool, result: ImportResult) -> None:
        topics, _, _ = self._content()
        # Parents before children
        for topic in sorted(bundle.topics, key=lambda t: t.depth):
            try:
                if topics.has_topic(topic.path):
                    if not overwrite:
                        result.topics_skipped += 1
                        continue
                    display = TopicDisplayUpdate(**topic.display.model_dump(exclude={"order"}))
                    await topics.update_topic(
                        topic.path,
                        TopicUpdate(
                            title=topic.title,
                            description=topic.description,
                            documentation=topic.documentation,
                            display=display,
                        ),
                    )
                    result.topics_updated += 1
                else:
                    display = TopicDisplayUpdate(**topic.display.model_dump(exclude={"order"}))
                    await topics.create_topic(
                        TopicCreate(
                            name=topic.name,
                            title=topic.title,
                            description=topic.description,
                            documentation=topic.documentation,
                            display=display,
                        ),
                        topic.parent_path,
                    )
                    result.topics_created += 1
            except CodebricksError as e:
                result.errors.append(f"topic {topic.path}: {e.message}")

    async def _import_templates(self, bundle: ExportBundle, overwrite: bool, result: ImportResult) -> None:
        _, templates, _ = self._content()
        for template in bundle.templates:
            try:
                if templates.find_template(template.item_path) is not None:
                    if not overwrite:
                        result.templates_skipped += 1
                        continue
                    await templates.update_template(
                        template.item_path,
                        TemplateUpdate(
                            title=template.title,
                            description=template.description,
                            code=template.code,
                            language=template.language,
                            documentation=template.documentation,
                        ),
                    )
                    result.templates_updated += 1
                else:
                    await templates.create_template(
                        TemplateCreate(
                            name=template.name,
                            title=template.title,
                            description=template.description,
                            code=template.code,
                            language=template.language,
                            documentation=template.documentation,
                        ),
                        template.topic_path,
                    )
                    result.templates_created += 1
            except CodebricksError as e:
                result.errors.append(f"template {template.item_path}: {e.message}")

    async def _import_links(self, bundle: ExportBundle, overwrite: bool, result: ImportResult) -> None:
        _, _, links = self._content()
        for link in bundle.links:
            try:
                if links.find_link(link.item_path) is not None:
                    if not overwrite:
                        result.links_skipped += 1
                        continue
                    await links.update_link(
                        link.item_path,
                        LinkUpdate(title=link.title, description=link.description, target=link.target),
                    )
                    result.links_updated += 1
                else:
                    await links.create_link(
                        LinkCreate(name=link.name, title=link.title, description=link.description, target=link.target),
                        link.topic_path,
                    )
                    result.links_created += 1
            except CodebricksError as e:
                result.errors.append(f"link {link.item_path}: {e.message}")

    def _import_languages(self, bundle: ExportBundle, options: ImportOptions, result: ImportResult) -> None:
        if not options.merge_languages:
            result.languages_skipped += len(bundle.languages)
            return

        scope = self.current_scope
        by_id = {lang.id: index for index, lang in enumerate(scope.languages)}
        for language in bundle.languages:
            index = by_id.get(language.id)
            if index is None:
                by_id[language.id] = len(scope.languages)
                scope.languages.append(language)
                result.languages_added += 1
            elif options.overwrite_existing:
                scope.languages[index] = language
                result.languages_updated += 1
            else:
                result.languages_skipped += 1

        if result.languages_added or result.languages_updated:
            self.store.save(scope)

    def _import_stats(self, bundle: ExportBundle, options: ImportOptions, result: ImportResult) -> None:
        scope = self.current_scope
        changed = False

        if options.preserve_stats and bundle.usage:
            scope.usage.update(bundle.usage)
            result.usage_imported = len(bundle.usage)
            changed = True

        if options.preserve_favorites and bundle.favorites:
            for item_path in bundle.favorites:
                if item_path not in scope.favorites:
                    scope.favorites.append(item_path)
                    result.favorites_imported += 1
            changed = changed or result.favorites_imported > 0

        if not changed:
            return
        self.store.save(scope)
        if options.preserve_stats:
            for item_path, count in (bundle.usage or {}).items():
                self.events.publish(UsageUpdated(scope.id, item_path, count))
