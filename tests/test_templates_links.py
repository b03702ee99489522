"""Tests for template and link repositories."""

import pytest
from conftest import fail_writes_after

from codebricks import topics as topics_module
from codebricks.engine import Engine
from codebricks.errors import (
    DuplicateNameError,
    InvalidNameError,
    LinkNotFoundError,
    StorageError,
    TemplateNotFoundError,
    TopicNotFoundError,
)
from codebricks.events import ItemPathsChanged
from codebricks.models import LinkCreate, LinkUpdate, MarkdownDoc, TemplateCreate, TemplateUpdate


# ─────────────────────────────────────────────────────────────────────────────
# Templates
# ─────────────────────────────────────────────────────────────────────────────


class TestTemplateQueries:
    """Reads over the published tree."""

    @pytest.mark.asyncio
    async def test_get_template(self, sample_engine):
        template = sample_engine.templates.get_template("c/basics/templates/hello")
        assert template.title == "Hello"
        assert template.item_path == "c/basics/templates/hello"

    @pytest.mark.asyncio
    async def test_missing_template(self, sample_engine):
        assert sample_engine.templates.find_template("c/basics/templates/nope") is None
        assert sample_engine.templates.find_template("c/basics") is None
        with pytest.raises(TemplateNotFoundError):
            sample_engine.templates.get_template("c/basics/templates/nope")

    @pytest.mark.asyncio
    async def test_get_templates_sorted_by_name(self, sample_engine):
        names = [t.name for t in sample_engine.templates.get_templates("c/basics")]
        assert names == ["hello", "loop"]

    @pytest.mark.asyncio
    async def test_recursive_templates(self, sample_engine):
        assert sample_engine.templates.get_templates("c") == []
        names = [t.name for t in sample_engine.templates.get_templates("c", recursive=True)]
        assert names == ["hello", "loop"]

    @pytest.mark.asyncio
    async def test_unknown_topic(self, sample_engine):
        with pytest.raises(TopicNotFoundError):
            sample_engine.templates.get_templates("nope")

    @pytest.mark.asyncio
    async def test_all_templates_and_language_filter(self, sample_engine):
        all_paths = [t.item_path for t in sample_engine.templates.get_all_templates()]
        assert all_paths == ["c/basics/templates/hello", "c/basics/templates/loop", "python/templates/main"]
        assert [t.name for t in sample_engine.templates.find_by_language("python")] == ["main"]


class TestTemplateMutations:
    """Create, update, rename and delete."""

    @pytest.mark.asyncio
    async def test_create_writes_file(self, sample_engine):
        template = await sample_engine.templates.create_template(
            TemplateCreate(name="struct", code="struct s {};", language="c", documentation="# Structs"),
            "c/advanced",
        )

        path = sample_engine.paths.template_file("local", "c/advanced", "struct")
        assert path.exists()
        assert template.title == "struct"
        assert isinstance(template.documentation, MarkdownDoc)

    @pytest.mark.asyncio
    async def test_duplicate_name(self, sample_engine):
        with pytest.raises(DuplicateNameError):
            await sample_engine.templates.create_template(
                TemplateCreate(name="hello", code="", language="c"), "c/basics"
            )

    @pytest.mark.asyncio
    async def test_invalid_name(self, sample_engine):
        with pytest.raises(InvalidNameError):
            await sample_engine.templates.create_template(
                TemplateCreate(name="a/b", code="", language="c"), "c/basics"
            )

    @pytest.mark.asyncio
    async def test_missing_topic(self, sample_engine):
        with pytest.raises(TopicNotFoundError):
            await sample_engine.templates.create_template(TemplateCreate(name="x", code="", language="c"), "nope")

    @pytest.mark.asyncio
    async def test_partial_update(self, sample_engine):
        updated = await sample_engine.templates.update_template(
            "c/basics/templates/hello", TemplateUpdate(code="puts(\"hi\");")
        )

        assert updated.code == 'puts("hi");'
        assert updated.title == "Hello"
        assert sample_engine.templates.get_template("c/basics/templates/hello").code == 'puts("hi");'

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, sample_engine):
        assert await sample_engine.templates.update_template("c/basics/templates/nope", TemplateUpdate(code="")) is None

    @pytest.mark.asyncio
    async def test_rename_moves_file_and_tracks_favorites(self, sample_engine):
        changed = []
        sample_engine.events.subscribe(ItemPathsChanged, changed.append)
        await sample_engine.scopes.add_favorite("c/basics/templates/hello")
        await sample_engine.scopes.update_usage("c/basics/templates/hello")

        await sample_engine.templates.update_template("c/basics/templates/hello", TemplateUpdate(name="greet"))

        paths = sample_engine.paths
        assert paths.template_file("local", "c/basics", "greet").exists()
        assert not paths.template_file("local", "c/basics", "hello").exists()
        assert changed == [ItemPathsChanged("local", "c/basics/templates/hello", "c/basics/templates/greet")]
        assert sample_engine.scopes.get_favorites() == ["c/basics/templates/greet"]
        assert sample_engine.scopes.get_usage("c/basics/templates/greet") == 1

    @pytest.mark.asyncio
    async def test_rename_onto_existing_name(self, sample_engine):
        with pytest.raises(DuplicateNameError):
            await sample_engine.templates.update_template("c/basics/templates/hello", TemplateUpdate(name="loop"))

    @pytest.mark.asyncio
    async def test_rename_retargets_links(self, sample_engine, tmp_root, settings_path, tmp_path):
        await sample_engine.templates.update_template("c/basics/templates/hello", TemplateUpdate(name="hi"))

        link = sample_engine.links.get_link("python/links/see-hello")
        assert link.target == "c/basics/templates/hi"
        assert sample_engine.links.resolve_link(link).kind == "template"

        reopened = Engine.open(data_root=tmp_root, settings_path=settings_path, cwd=tmp_path)
        assert reopened.links.get_link("python/links/see-hello").target == "c/basics/templates/hi"

    @pytest.mark.asyncio
    async def test_failed_rename_restores_links(self, sample_engine, monkeypatch):
        fail_writes_after(monkeypatch, 1)

        with pytest.raises(StorageError):
            await sample_engine.templates.update_template("c/basics/templates/hello", TemplateUpdate(name="hi"))

        assert sample_engine.links.get_link("python/links/see-hello").target == "c/basics/templates/hello"
        assert sample_engine.paths.template_file("local", "c/basics", "hello").exists()
        assert not sample_engine.paths.template_file("local", "c/basics", "hi").exists()

    @pytest.mark.asyncio
    async def test_failed_write_leaves_template_unchanged(self, sample_engine, monkeypatch):
        def broken(path, model):
            raise PermissionError("read-only")

        monkeypatch.setattr(topics_module, "_write_document", broken)

        with pytest.raises(StorageError) as exc_info:
            await sample_engine.templates.update_template("c/basics/templates/hello", TemplateUpdate(code="x"))

        assert exc_info.value.transient
        assert sample_engine.templates.get_template("c/basics/templates/hello").code == 'printf("hello\\n");'

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, sample_engine):
        await sample_engine.templates.delete_template("c/basics/templates/loop")
        await sample_engine.templates.delete_template("c/basics/templates/loop")

        assert sample_engine.templates.find_template("c/basics/templates/loop") is None
        assert not sample_engine.paths.template_file("local", "c/basics", "loop").exists()


# ─────────────────────────────────────────────────────────────────────────────
# Links
# ─────────────────────────────────────────────────────────────────────────────


class TestLinks:
    """Link CRUD and resolution."""

    @pytest.mark.asyncio
    async def test_get_links(self, sample_engine):
        links = sample_engine.links.get_links("c/basics")
        assert [link.name for link in links] == ["docs", "see-py"]
        assert links[0].is_external

    @pytest.mark.asyncio
    async def test_resolution_kinds(self, sample_engine):
        links = sample_engine.links
        assert links.resolve_link(links.get_link("c/basics/links/docs")).kind == "url"
        assert links.resolve_link(links.get_link("c/basics/links/see-py")).topic.name == "python"
        resolution = links.resolve_link(links.get_link("python/links/see-hello"))
        assert resolution.kind == "template"
        assert resolution.template.name == "hello"

    @pytest.mark.asyncio
    async def test_target_need_not_exist(self, sample_engine):
        link = await sample_engine.links.create_link(LinkCreate(name="later", target="/future/topic/"), "python")

        assert link.target == "future/topic"
        assert sample_engine.links.resolve_link(link).kind == "dangling"

    @pytest.mark.asyncio
    async def test_duplicate_link(self, sample_engine):
        with pytest.raises(DuplicateNameError):
            await sample_engine.links.create_link(LinkCreate(name="docs", target="c"), "c/basics")

    @pytest.mark.asyncio
    async def test_update_and_rename(self, sample_engine):
        updated = await sample_engine.links.update_link(
            "c/basics/links/see-py", LinkUpdate(name="see-python", target="c/advanced")
        )

        assert updated.item_path == "c/basics/links/see-python"
        assert updated.target == "c/advanced"
        assert sample_engine.links.find_link("c/basics/links/see-py") is None
        assert not sample_engine.paths.link_file("local", "c/basics", "see-py").exists()

    @pytest.mark.asyncio
    async def test_rename_tracks_favorites_and_usage(self, sample_engine):
        changed = []
        sample_engine.events.subscribe(ItemPathsChanged, changed.append)
        await sample_engine.scopes.add_favorite("c/basics/links/docs")
        await sample_engine.scopes.update_usage("c/basics/links/docs")

        await sample_engine.links.update_link("c/basics/links/docs", LinkUpdate(name="cref"))

        assert changed == [ItemPathsChanged("local", "c/basics/links/docs", "c/basics/links/cref")]
        assert sample_engine.scopes.get_favorites() == ["c/basics/links/cref"]
        assert sample_engine.scopes.get_usage("c/basics/links/cref") == 1

    @pytest.mark.asyncio
    async def test_update_without_rename_publishes_nothing(self, sample_engine):
        changed = []
        sample_engine.events.subscribe(ItemPathsChanged, changed.append)

        await sample_engine.links.update_link("c/basics/links/docs", LinkUpdate(title="C reference"))

        assert changed == []

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, sample_engine):
        assert await sample_engine.links.update_link("c/basics/links/nope", LinkUpdate(title="x")) is None

    @pytest.mark.asyncio
    async def test_delete(self, sample_engine):
        await sample_engine.links.delete_link("c/basics/links/docs")
        await sample_engine.links.delete_link("c/basics/links/docs")

        with pytest.raises(LinkNotFoundError):
            sample_engine.links.get_link("c/basics/links/docs")
