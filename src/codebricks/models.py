"""Pydantic models for the template repository."""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, Field

from .config import DOC_FILE_REFERENCE_MAX_LENGTH, FORMAT_VERSION


# ─────────────────────────────────────────────────────────────────────────────
# Documentation (tagged union)
# ─────────────────────────────────────────────────────────────────────────────


class MarkdownDoc(BaseModel):
    """Inline markdown documentation."""

    kind: Literal["markdown"] = "markdown"
    content: str


class FileDoc(BaseModel):
    """Documentation stored in a file, relative to the scope directory."""

    kind: Literal["file"] = "file"
    path: str


class UrlDoc(BaseModel):
    """Documentation hosted at an external URL."""

    kind: Literal["url"] = "url"
    url: str


def classify_documentation(value: str) -> MarkdownDoc | FileDoc | UrlDoc:
    """Classify a legacy plain-string documentation value.

    URLs win first, then short single-line values that look like a file path,
    everything else is inline markdown.
    """
    text = value.strip()
    if text.startswith(("http://", "https://")):
        return UrlDoc(url=text)

    looks_like_file = (
        len(text) < DOC_FILE_REFERENCE_MAX_LENGTH
        and "\n" not in text
        and "\r" not in text
        and not text.startswith("#")
        and (text.endswith(".md") or "/" in text or "\\" in text)
    )
    if looks_like_file:
        return FileDoc(path=text)
    return MarkdownDoc(content=value)


def _coerce_documentation(value: Any) -> Any:
    if isinstance(value, str):
        if not value.strip():
            return None
        return classify_documentation(value)
    return value


# Blank legacy strings mean no documentation
Documentation = Annotated[
    Annotated[Union[MarkdownDoc, FileDoc, UrlDoc], Field(discriminator="kind")] | None,
    BeforeValidator(_coerce_documentation),
]


class DocumentationContent(BaseModel):
    """Documentation resolved for an external renderer."""

    kind: Literal["markdown", "file", "url"]
    content: str  # Markdown text, file body, or the URL itself
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None  # Set when the source could not be read


# ─────────────────────────────────────────────────────────────────────────────
# Languages
# ─────────────────────────────────────────────────────────────────────────────


class Language(BaseModel):
    """A programming language registered in a scope."""

    id: str
    name: str
    display_name: str = ""
    extension: str = ""  # e.g. ".py"
    icon: str | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Topics
# ─────────────────────────────────────────────────────────────────────────────


class TopicDisplay(BaseModel):
    """Display metadata of a topic."""

    icon: str = "📁"
    color: str = "#007ACC"
    order: int = 0  # Index within the parent's ordered child list
    collapsed: bool = False
    show_in_navigation: bool = True


class TopicDisplayUpdate(BaseModel):
    """Partial display metadata; unset fields are left untouched."""

    icon: str | None = None
    color: str | None = None
    order: int | None = None
    collapsed: bool | None = None
    show_in_navigation: bool | None = None


class Topic(BaseModel):
    """A node of the topic tree, persisted as topic.json."""

    name: str
    title: str
    description: str = ""
    documentation: Documentation = None
    display: TopicDisplay = Field(default_factory=TopicDisplay)
    path: str  # Canonical "/"-joined chain of ancestor names down to this topic

    @property
    def parent_path(self) -> str | None:
        head, sep, _ = self.path.rpartition("/")
        return head if sep else None

    @property
    def depth(self) -> int:
        return self.path.count("/")


class TopicCreate(BaseModel):
    """Input for creating a topic."""

    name: str
    title: str | None = None  # Defaults to the name
    description: str = ""
    documentation: Documentation = None
    display: TopicDisplayUpdate = Field(default_factory=TopicDisplayUpdate)


class TopicUpdate(BaseModel):
    """Partial topic update. Changing ``name`` renames the topic."""

    name: str | None = None
    title: str | None = None
    description: str | None = None
    documentation: Documentation = None
    display: TopicDisplayUpdate | None = None


class ReorderOp(BaseModel):
    """Move one topic to a new index within its parent's child list."""

    path: str
    new_index: int


class TopicStatistics(BaseModel):
    """Aggregate statistics over the topic hierarchy."""

    total_topics: int = 0
    root_topics: int = 0
    max_depth: int = 0
    depth_distribution: dict[int, int] = Field(default_factory=dict)
    topics_with_templates: int = 0
    topics_with_subtopics: int = 0
    total_templates: int = 0
    total_links: int = 0
    language_distribution: dict[str, int] = Field(default_factory=dict)


# ─────────────────────────────────────────────────────────────────────────────
# Templates and links
# ─────────────────────────────────────────────────────────────────────────────


class Template(BaseModel):
    """A code snippet owned by exactly one topic."""

    name: str
    title: str
    description: str = ""
    code: str
    language: str  # Language id
    documentation: Documentation = None
    topic_path: str  # Owning topic

    @property
    def item_path(self) -> str:
        return f"{self.topic_path}/templates/{self.name}"


class TemplateCreate(BaseModel):
    """Input for creating a template."""

    name: str
    title: str | None = None  # Defaults to the name
    description: str = ""
    code: str
    language: str
    documentation: Documentation = None


class TemplateUpdate(BaseModel):
    """Partial template update. Changing ``name`` renames the file."""

    name: str | None = None
    title: str | None = None
    description: str | None = None
    code: str | None = None
    language: str | None = None
    documentation: Documentation = None


class Link(BaseModel):
    """A named reference to a URL or to another item in the same scope."""

    name: str
    title: str
    description: str = ""
    target: str  # URL, topic path, or template item path
    topic_path: str  # Topic the link is listed under

    @property
    def item_path(self) -> str:
        return f"{self.topic_path}/links/{self.name}"

    @property
    def is_external(self) -> bool:
        return self.target.startswith(("http://", "https://"))


class LinkCreate(BaseModel):
    """Input for creating a link."""

    name: str
    title: str | None = None
    description: str = ""
    target: str


class LinkUpdate(BaseModel):
    """Partial link update."""

    name: str | None = None
    title: str | None = None
    description: str | None = None
    target: str | None = None


class LinkResolution(BaseModel):
    """What a link currently points at."""

    kind: Literal["url", "topic", "template", "dangling"]
    target: str
    topic: Topic | None = None
    template: Template | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Cards (derived display projections)
# ─────────────────────────────────────────────────────────────────────────────


class TopicCard(BaseModel):
    type: Literal["topic"] = "topic"
    path: str
    name: str
    title: str
    description: str = ""
    has_documentation: bool = False
    icon: str = ""
    color: str = ""
    subtopic_count: int = 0
    template_count: int = 0


class TemplateCard(BaseModel):
    type: Literal["template"] = "template"
    path: str
    name: str
    title: str
    description: str = ""
    has_documentation: bool = False
    language: str = ""
    code: str = ""


class LinkCard(BaseModel):
    type: Literal["link"] = "link"
    path: str
    name: str
    title: str
    description: str = ""
    has_documentation: bool = False
    target: str = ""
    target_kind: Literal["url", "topic", "template", "link"] = "link"
    resolved: bool = False  # False for dangling links, rendered generically


Card = Annotated[Union[TopicCard, TemplateCard, LinkCard], Field(discriminator="type")]


# ─────────────────────────────────────────────────────────────────────────────
# Scopes
# ─────────────────────────────────────────────────────────────────────────────


class ScopeSettings(BaseModel):
    read_only: bool = False
    auto_backup: bool = True
    share_mode: Literal["private", "team", "public"] = "private"


class ScopeMetadata(BaseModel):
    version: str = FORMAT_VERSION
    created: datetime
    updated: datetime
    author: str = "codebricks"


class ScopeConfig(BaseModel):
    """One scope's configuration, persisted as scope.json."""

    id: str
    name: str
    title: str | None = None
    description: str = ""
    type: Literal["local", "shared", "custom"] = "custom"
    languages: list[Language] = Field(default_factory=list)
    favorites: list[str] = Field(default_factory=list)  # Item paths, set semantics
    usage: dict[str, int] = Field(default_factory=dict)  # Item path -> use count
    settings: ScopeSettings = Field(default_factory=ScopeSettings)
    metadata: ScopeMetadata


class UsageItem(BaseModel):
    path: str
    count: int


class ScopeUsageStats(BaseModel):
    """Read model derived from a scope's usage map."""

    scope_id: str
    most_used: list[UsageItem] = Field(default_factory=list)
    total_uses: int = 0
    tracked_items: int = 0
    favorites_count: int = 0


class Recommendation(BaseModel):
    """A template ranked by usage."""

    item_path: str
    count: int
    template: Template


# ─────────────────────────────────────────────────────────────────────────────
# Import / export
# ─────────────────────────────────────────────────────────────────────────────


class ExportScopeInfo(BaseModel):
    id: str
    name: str
    title: str | None = None
    description: str = ""
    type: Literal["local", "shared", "custom"] = "custom"


class ExportBundle(BaseModel):
    """Serializable snapshot of a scope."""

    version: str = FORMAT_VERSION
    exported_at: datetime
    exported_by: str = "codebricks"
    scope: ExportScopeInfo | None = None
    include_templates: bool = True
    include_stats: bool = True
    languages: list[Language] = Field(default_factory=list)
    topics: list[Topic] = Field(default_factory=list)  # Parents before children
    templates: list[Template] = Field(default_factory=list)
    links: list[Link] = Field(default_factory=list)
    favorites: list[str] | None = None  # Omitted when stats are excluded
    usage: dict[str, int] | None = None  # Omitted when stats are excluded

    def to_dict(self) -> dict[str, Any]:
        omit = {key for key in ("favorites", "usage") if getattr(self, key) is None}
        return self.model_dump(mode="json", exclude=omit)


class ImportOptions(BaseModel):
    """Three independent merge axes for importing a bundle."""

    overwrite_existing: bool = False
    merge_topics: bool = True
    merge_languages: bool = True
    preserve_stats: bool = False
    preserve_favorites: bool = False


class ImportResult(BaseModel):
    topics_created: int = 0
    topics_updated: int = 0
    topics_skipped: int = 0
    templates_created: int = 0
    templates_updated: int = 0
    templates_skipped: int = 0
    links_created: int = 0
    links_updated: int = 0
    links_skipped: int = 0
    languages_added: int = 0
    languages_updated: int = 0
    languages_skipped: int = 0
    usage_imported: int = 0
    favorites_imported: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.topics_skipped + self.templates_skipped + self.links_skipped


# ─────────────────────────────────────────────────────────────────────────────
# Data location
# ─────────────────────────────────────────────────────────────────────────────


LocationType = Literal["system", "global", "workspace", "custom"]


class PathValidation(BaseModel):
    valid: bool
    path: str
    reason: str | None = None
    exists: bool = False
    writable: bool = False


class LocationOption(BaseModel):
    id: str
    name: str
    description: str
    path: str
    type: LocationType
    recommended: bool = False
    available: bool = False
    current: bool = False
    migration_required: bool = False


class LocationInfo(BaseModel):
    path: str
    type: LocationType
    is_default: bool
    size_bytes: int = 0
    scopes: list[str] = Field(default_factory=list)
    topic_count: int = 0
    template_count: int = 0


class MigrationProgress(BaseModel):
    phase: Literal["validate", "backup", "copy", "swap", "done"]
    files_done: int = 0
    files_total: int = 0
    message: str = ""


class MigrationResult(BaseModel):
    success: bool
    source_location: str
    target_location: str
    migrated_files: int = 0
    total_files: int = 0
    duration_ms: int = 0
    backup_path: str | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class MigrationRecord(BaseModel):
    """One entry of the migration history kept in the settings file."""

    id: str
    from_location: str
    to_location: str
    timestamp: datetime
    duration_ms: int
    files_count: int
    success: bool
    errors: list[str] = Field(default_factory=list)
