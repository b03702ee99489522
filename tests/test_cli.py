"""Tests for the bricks CLI."""

import json

import pytest

from codebricks.cli import cli, format_table


@pytest.fixture
def invoke(runner, tmp_root, settings_path):
    """Invoke the CLI against the temp data root."""

    def _invoke(*args, input=None):
        return runner.invoke(cli, ["--data-root", str(tmp_root), *args], input=input)

    return _invoke


@pytest.fixture
def populated(invoke):
    """Data root with a couple of topics and templates, created through the CLI."""
    for args in (
        ["topic", "create", "c", "--title", "C"],
        ["topic", "create", "basics", "--parent", "c"],
        ["topic", "create", "python"],
        ["template", "add", "c/basics", "hello", "--language", "c", "--code", 'puts("hi");'],
        ["template", "add", "python", "main", "-l", "python", "-c", "main()"],
        ["link", "add", "python", "see-hello", "c/basics/templates/hello"],
    ):
        result = invoke(*args)
        assert result.exit_code == 0, result.output
    return invoke


class TestHelpers:
    """Output helpers."""

    def test_format_table_truncates(self):
        table = format_table([{"path": "x" * 80}], ["path"], {"path": 10})
        assert "xxxxxxx..." in table
        assert table.splitlines()[0].startswith("PATH")

    def test_format_table_empty(self):
        assert format_table([], ["a"]) == ""


class TestBrowse:
    """tree, cards, recommend."""

    def test_empty_tree(self, invoke):
        result = invoke("tree")
        assert result.exit_code == 0
        assert "No topics in scope 'local'" in result.output

    def test_tree(self, populated):
        result = populated("tree")
        assert result.exit_code == 0
        assert "basics  (1 template(s))" in result.output
        assert "3 topics, 2 templates, 1 links" in result.output

    def test_tree_json(self, populated):
        result = populated("tree", "--json")
        data = json.loads(result.output)
        assert [node["path"] for node in data] == ["c", "python"]

    def test_cards(self, populated):
        result = populated("cards", "python", "--json")
        cards = json.loads(result.output)
        assert [(c["type"], c["name"]) for c in cards] == [("template", "main"), ("link", "see-hello")]
        assert cards[1]["target_kind"] == "template"

    def test_recommend_after_use(self, populated):
        assert populated("template", "use", "python/templates/main").output.strip() == "main()"
        populated("template", "use", "python/templates/main")

        result = populated("recommend", "--json")

        assert [(r["item_path"], r["count"]) for r in json.loads(result.output)] == [("python/templates/main", 2)]


class TestTopicCommands:
    """topic subcommands."""

    def test_show(self, populated):
        result = populated("topic", "show", "c/basics")
        assert result.exit_code == 0
        assert "Breadcrumb: c > basics" in result.output

    def test_rename_via_update(self, populated):
        result = populated("topic", "update", "c", "--name", "lang-c")
        assert result.exit_code == 0
        assert "Updated topic: lang-c" in result.output
        assert populated("template", "show", "lang-c/basics/templates/hello").exit_code == 0

    def test_move_and_reorder(self, populated):
        assert populated("topic", "move", "c/basics", "python").exit_code == 0
        result = populated("topic", "reorder", "python", "0")
        assert "now at position 0" in result.output

    def test_delete_non_empty_needs_force(self, populated):
        result = populated("topic", "delete", "c")
        assert result.exit_code == 1
        assert "is not empty" in result.output
        assert "Hint:" in result.output

        assert populated("topic", "delete", "c", "--force").exit_code == 0
        assert [node["path"] for node in json.loads(populated("tree", "--json").output)] == ["python"]

    def test_missing_topic_json_error(self, invoke):
        result = invoke("--json-errors", "topic", "show", "nope")
        assert result.exit_code == 1
        error = json.loads(result.output.strip().splitlines()[-1])
        assert error["error"]["code"] == "TOPIC_NOT_FOUND"

    def test_stats(self, populated):
        result = populated("topic", "stats", "--json")
        assert json.loads(result.output)["total_topics"] == 3


class TestTemplateCommands:
    """template subcommands."""

    def test_add_requires_code(self, invoke):
        invoke("topic", "create", "c")
        result = invoke("template", "add", "c", "x", "--language", "c")
        assert result.exit_code != 0
        assert "--code or --file" in result.output

    def test_add_from_file(self, invoke, tmp_path):
        invoke("topic", "create", "c")
        source = tmp_path / "snippet.c"
        source.write_text("int main(void) { return 0; }\n")

        assert invoke("template", "add", "c", "main", "-l", "c", "--file", str(source)).exit_code == 0
        assert "int main" in invoke("template", "show", "c/templates/main").output

    def test_list_and_filter(self, populated):
        result = populated("template", "list", "--language", "python", "--json")
        assert [t["name"] for t in json.loads(result.output)] == ["main"]

    def test_update_missing(self, populated):
        result = populated("template", "update", "c/basics/templates/nope", "--code", "x")
        assert result.exit_code == 1


class TestScopeCommands:
    """scope subcommands."""

    def test_switch_and_list(self, populated):
        assert populated("scope", "switch", "team").exit_code == 0
        result = populated("scope", "list", "--json")
        assert sorted(s["id"] for s in json.loads(result.output)) == ["local", "team"]
        assert "No topics in scope 'team'" in populated("tree").output

    def test_export_import_round_trip(self, populated, tmp_path):
        bundle = tmp_path / "bundle.json"
        assert populated("scope", "export", "-o", str(bundle), "--no-stats").exit_code == 0
        assert "usage" not in json.loads(bundle.read_text())

        populated("scope", "switch", "copy")
        result = populated("scope", "import", str(bundle), "--json")

        summary = json.loads(result.output)
        assert summary["topics_created"] == 3
        assert summary["templates_created"] == 2

    def test_import_rejects_garbage(self, invoke, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{broken")
        result = invoke("scope", "import", str(bad))
        assert result.exit_code == 1
        assert "Not a JSON bundle" in result.output

    def test_delete_requires_confirmation(self, invoke):
        invoke("scope", "create", "temp")
        assert invoke("scope", "delete", "temp", input="n\n").exit_code == 1
        assert invoke("scope", "delete", "temp", "--yes").exit_code == 0

    def test_languages(self, invoke):
        assert "saved" in invoke("scope", "add-language", "rust", "--name", "Rust", "-e", ".rs").output
        assert "already registered" in invoke("scope", "add-language", "rust").output
        assert "rust" in invoke("scope", "languages").output
        assert "Removed language" in invoke("scope", "remove-language", "rust").output


class TestFavoritesAndUsage:
    """fav and usage groups."""

    def test_favorites(self, populated):
        populated("fav", "add", "python/templates/main")
        assert json.loads(populated("fav", "list", "--json").output) == ["python/templates/main"]
        populated("fav", "remove", "python/templates/main")
        assert "No favorites." in populated("fav", "list").output

    def test_usage_clear(self, populated):
        populated("template", "use", "python/templates/main")
        assert json.loads(populated("usage", "stats", "--json").output)["total_uses"] == 1
        populated("usage", "clear")
        assert json.loads(populated("usage", "stats", "--json").output)["total_uses"] == 0


class TestDataCommands:
    """data subcommands."""

    def test_info(self, populated):
        info = json.loads(populated("data", "info", "--json").output)
        assert info["topic_count"] == 3
        assert info["scopes"] == ["local"]

    def test_validate_inside_root(self, invoke, tmp_root):
        result = invoke("data", "validate", str(tmp_root / "inner"))
        assert result.exit_code == 1
        assert "inside the current data root" in result.output

    def test_move(self, populated, tmp_path, runner):
        target = tmp_path / "moved"
        result = populated("data", "move", str(target), "--no-backup", "--json")

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["success"] is True
        assert (target / "scopes" / "local" / "c" / "topic.json").exists()

        # Without --data-root the saved location is used
        history = runner.invoke(cli, ["data", "history"])
        assert "yes" in history.output


class TestGroupBehavior:
    """Error formatting and typo suggestions."""

    def test_typo_suggestion(self, invoke):
        result = invoke("tre")
        assert result.exit_code != 0
        assert "Did you mean 'tree'?" in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "bricks" in result.output
