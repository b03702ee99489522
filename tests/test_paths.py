"""Tests for logical path helpers and the storage path resolver."""

from pathlib import Path

import pytest

from codebricks.errors import InvalidNameError
from codebricks.paths import (
    StoragePaths,
    is_same_or_descendant,
    join_path,
    link_item_path,
    normalize_path,
    parent_path,
    parse_item_path,
    path_name,
    replace_prefix,
    split_path,
    template_item_path,
    validate_name,
)


# ─────────────────────────────────────────────────────────────────────────────
# Logical paths
# ─────────────────────────────────────────────────────────────────────────────


class TestPathHelpers:
    """Pure helpers over "/"-joined topic paths."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("c/basics", "c/basics"),
            ("/c/basics/", "c/basics"),
            ("c//basics", "c/basics"),
            ("c\\basics", "c/basics"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize_path(self, raw, expected):
        assert normalize_path(raw) == expected

    def test_split_and_join(self):
        assert split_path("c/basics") == ["c", "basics"]
        assert split_path("") == []
        assert join_path(None, "c") == "c"
        assert join_path("c", "basics") == "c/basics"

    def test_parent_path_of_root_is_none(self):
        assert parent_path("c") is None
        assert parent_path("c/basics") == "c"
        assert parent_path("a/b/c") == "a/b"

    def test_path_name(self):
        assert path_name("c/basics") == "basics"
        assert path_name("c") == "c"

    def test_is_same_or_descendant_respects_segments(self):
        assert is_same_or_descendant("c", "c")
        assert is_same_or_descendant("c/basics", "c")
        assert not is_same_or_descendant("cpp/basics", "c")
        assert not is_same_or_descendant("c", "c/basics")

    def test_replace_prefix(self):
        assert replace_prefix("c/basics/templates/hello", "c", "lang/c") == "lang/c/basics/templates/hello"
        assert replace_prefix("c", "c", "d") == "d"
        assert replace_prefix("cpp/x", "c", "d") == "cpp/x"


class TestItemAddresses:
    """Template and link addresses."""

    def test_item_paths(self):
        assert template_item_path("c/basics", "hello") == "c/basics/templates/hello"
        assert link_item_path("c/basics", "docs") == "c/basics/links/docs"

    def test_parse_template_path(self):
        address = parse_item_path("c/basics/templates/hello")
        assert address.kind == "template"
        assert address.topic_path == "c/basics"
        assert address.name == "hello"

    def test_parse_link_path(self):
        address = parse_item_path("c/links/docs")
        assert (address.kind, address.topic_path, address.name) == ("link", "c", "docs")

    def test_parse_topic_path(self):
        address = parse_item_path("c/basics")
        assert (address.kind, address.topic_path, address.name) == ("topic", "c/basics", "basics")


class TestValidateName:
    """Names are single path segments."""

    @pytest.mark.parametrize("name", ["", "   ", "a/b", "a\\b", ".hidden", " padded"])
    def test_rejects_malformed_names(self, name):
        with pytest.raises(InvalidNameError):
            validate_name(name)

    @pytest.mark.parametrize("name", ["templates", "links"])
    def test_reserved_names_only_for_topics(self, name):
        with pytest.raises(InvalidNameError):
            validate_name(name, "topic")
        assert validate_name(name, "template") == name

    def test_accepts_plain_names(self):
        assert validate_name("basics") == "basics"
        assert validate_name("hello-world_2") == "hello-world_2"


# ─────────────────────────────────────────────────────────────────────────────
# Filesystem locations
# ─────────────────────────────────────────────────────────────────────────────


class TestStoragePaths:
    """Resolution of logical addresses under a data root."""

    def test_layout(self, tmp_path: Path):
        paths = StoragePaths(tmp_path)
        assert paths.scope_file("local") == tmp_path / "scopes" / "local" / "scope.json"
        assert paths.topic_file("local", "c/basics") == tmp_path / "scopes" / "local" / "c" / "basics" / "topic.json"
        assert paths.template_file("local", "c/basics", "hello") == (
            tmp_path / "scopes" / "local" / "c" / "basics" / "templates" / "hello.json"
        )
        assert paths.link_file("local", "c", "docs") == tmp_path / "scopes" / "local" / "c" / "links" / "docs.json"

    def test_swapping_root_moves_every_location(self, tmp_path: Path):
        paths = StoragePaths(tmp_path / "a")
        paths.data_root = tmp_path / "b"
        assert paths.scope_dir("local") == tmp_path / "b" / "scopes" / "local"

    def test_scope_id_must_be_a_plain_name(self, tmp_path: Path):
        with pytest.raises(InvalidNameError):
            StoragePaths(tmp_path).scope_dir("../escape")

    def test_relative_topic_path(self, tmp_path: Path):
        paths = StoragePaths(tmp_path)
        directory = paths.topic_dir("local", "c/basics")
        assert paths.relative_topic_path("local", directory) == "c/basics"
