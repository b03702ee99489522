"""Tests for documentation classification and resolution."""

import json

import pytest

from codebricks.documentation import resolve_documentation
from codebricks.models import FileDoc, MarkdownDoc, Topic, UrlDoc, classify_documentation
from codebricks.topic_tree import TopicTree


class TestClassify:
    """Legacy plain-string documentation values."""

    @pytest.mark.parametrize(
        "value, kind",
        [
            ("https://docs.python.org", UrlDoc),
            ("docs/intro.md", FileDoc),
            ("README.md", FileDoc),
            ("# Heading\n\nBody", MarkdownDoc),
            ("Just a sentence", MarkdownDoc),
            ("#notes/file.md", MarkdownDoc),
        ],
    )
    def test_classification(self, value, kind):
        assert isinstance(classify_documentation(value), kind)

    def test_long_values_are_markdown(self):
        value = "a/" * 300
        assert isinstance(classify_documentation(value), MarkdownDoc)

    def test_string_is_coerced_on_load(self):
        topic = Topic.model_validate({"name": "c", "title": "C", "path": "c", "documentation": "guide.md"})
        assert topic.documentation == FileDoc(path="guide.md")

    def test_blank_string_means_no_documentation(self):
        topic = Topic.model_validate({"name": "c", "title": "C", "path": "c", "documentation": "  "})
        assert topic.documentation is None

    def test_blank_documentation_on_disk_keeps_the_topic(self, tmp_path):
        topic_dir = tmp_path / "c"
        topic_dir.mkdir()
        (topic_dir / "topic.json").write_text(json.dumps({"name": "c", "title": "C", "documentation": ""}))
        (topic_dir / "templates").mkdir()
        (topic_dir / "templates" / "hello.json").write_text(
            json.dumps({"name": "hello", "title": "Hello", "code": "x", "language": "c", "documentation": " "})
        )

        tree = TopicTree.load(tmp_path)

        assert tree.node("c").topic.documentation is None
        assert tree.node("c").templates["hello"].documentation is None


class TestResolve:
    """Resolution into renderer input."""

    def test_markdown_and_url(self, tmp_path):
        assert resolve_documentation(MarkdownDoc(content="# Hi"), tmp_path).content == "# Hi"
        resolved = resolve_documentation(UrlDoc(url="https://example.com"), tmp_path)
        assert (resolved.kind, resolved.content) == ("url", "https://example.com")

    def test_file_with_frontmatter(self, tmp_path):
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "intro.md").write_text("---\ntitle: Intro\n---\n\nHello there\n")

        resolved = resolve_documentation(FileDoc(path="docs/intro.md"), tmp_path)

        assert resolved.error is None
        assert resolved.content.strip() == "Hello there"
        assert resolved.metadata["title"] == "Intro"
        assert resolved.metadata["source"].endswith("intro.md")

    def test_missing_file_sets_error(self, tmp_path):
        resolved = resolve_documentation(FileDoc(path="missing.md"), tmp_path)
        assert resolved.content == ""
        assert "not found" in resolved.error

    @pytest.mark.asyncio
    async def test_engine_resolves_relative_to_scope(self, engine):
        scope_dir = engine.paths.scope_dir(engine.scope_id)
        (scope_dir / "guide.md").write_text("Guide body")

        resolved = engine.resolve_documentation(FileDoc(path="guide.md"))

        assert resolved.content == "Guide body"
