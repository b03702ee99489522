"""Engine: one data root with all its managers wired together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .config import get_data_root
from .data_location import DataLocationService
from .documentation import resolve_documentation
from .events import EventChannel
from .links import LinkRepository
from .locks import ConflictPolicy
from .models import DocumentationContent, FileDoc, MarkdownDoc, UrlDoc
from .paths import StoragePaths
from .recommendations import RecommendationEngine
from .scope_store import ScopeStore
from .scopes import ScopeManager
from .templates import TemplateRepository
from .topics import TopicManager

log = logging.getLogger(__name__)


@dataclass
class Engine:
    """Every component of one engine instance.

    Engines share no state, so several can run in one process (for
    example one per test).
    """

    paths: StoragePaths
    events: EventChannel
    store: ScopeStore
    scopes: ScopeManager
    topics: TopicManager
    templates: TemplateRepository
    links: LinkRepository
    recommendations: RecommendationEngine
    data_location: DataLocationService

    @classmethod
    def open(
        cls,
        data_root: Path | str | None = None,
        scope_id: str | None = None,
        settings_path: Path | None = None,
        on_conflict: ConflictPolicy = "queue",
        cwd: Path | None = None,
    ) -> Engine:
        """Open (and initialize on first use) the data root.

        Args:
            data_root: Explicit data root; discovered from the environment
                and settings file when omitted.
            scope_id: Scope to start in; defaults to the remembered scope.
            settings_path: YAML settings file; the user default when omitted.
            on_conflict: "queue" waits for overlapping structural
                operations, "reject" fails with ConcurrentModificationError.
            cwd: Directory used for the workspace location option.
        """
        paths = StoragePaths(get_data_root(data_root, settings_path))
        events = EventChannel()
        store = ScopeStore(paths)

        scopes = ScopeManager(store, events, settings_path)
        scopes.initialize(scope_id)

        topics = TopicManager(paths, events, scopes.current_scope_id, on_conflict)
        templates = TemplateRepository(topics)
        links = LinkRepository(topics)
        scopes.attach(topics, templates, links)

        engine = cls(
            paths=paths,
            events=events,
            store=store,
            scopes=scopes,
            topics=topics,
            templates=templates,
            links=links,
            recommendations=RecommendationEngine(scopes, topics, events),
            data_location=DataLocationService(paths, events, settings_path, cwd),
        )
        log.debug("Opened engine at %s (scope %s)", paths.data_root, scopes.current_scope_id)
        return engine

    @property
    def scope_id(self) -> str:
        return self.scopes.current_scope_id

    def resolve_documentation(self, doc: MarkdownDoc | FileDoc | UrlDoc) -> DocumentationContent:
        """Resolve documentation relative to the current scope directory."""
        return resolve_documentation(doc, self.paths.scope_dir(self.scope_id))
