#!/usr/bin/env python3
"""
bricks: CLI for the codebricks template repository

Usage:
    bricks tree                              # Browse topics
    bricks topic create basics --parent c    # Create a topic
    bricks template add c/basics hello ...   # Add a template
    bricks template use c/basics/templates/hello
    bricks recommend                         # Most used templates
"""

from __future__ import annotations

import asyncio
import difflib
import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
from click.exceptions import ClickException, UsageError

from . import __version__ as CODEBRICKS_VERSION


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}
    widths = {col: len(col) for col in columns}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        if len(val) > limit:
            val = val[: limit - 3] + "..."
        return val

    for row in rows:
        for col in columns:
            widths[col] = max(widths[col], len(cell(row, col)))

    header = "  ".join(col.upper().ljust(widths[col]) for col in columns)
    separator = "  ".join("-" * widths[col] for col in columns)
    lines = [header, separator]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns).rstrip())
    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _handle_error(ctx: click.Context, error: Exception, exit_code: int = 1) -> NoReturn:
    """Report an error as text (with a hint) or as JSON with --json-errors."""
    from .errors import CodebricksError, ErrorCode, format_error_json

    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, CodebricksError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"Error: {error.message}", err=True)
            if error.suggestion:
                click.echo(f"Hint: {error.suggestion}", err=True)
    else:
        if json_errors:
            code = ErrorCode.STORAGE_ERROR if isinstance(error, OSError) else "UNKNOWN_ERROR"
            click.echo(format_error_json(code, str(error)), err=True)
        else:
            click.echo(f"Error: {error}", err=True)

    sys.exit(exit_code)


class JsonErrorGroup(click.Group):
    """Click group that formats errors as JSON when --json-errors is set.

    Also suggests similar commands for typos.
    """

    def resolve_command(self, ctx, args):
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            cmd_name = args[0] if args else ""
            if cmd_name and "No such command" in str(e):
                matches = difflib.get_close_matches(cmd_name, self.list_commands(ctx), n=1, cutoff=0.6)
                if matches:
                    raise UsageError(f"No such command '{cmd_name}'. Did you mean '{matches[0]}'?") from e
            raise

    def invoke(self, ctx):
        from .errors import format_error_json

        try:
            return super().invoke(ctx)
        except ClickException as e:
            if ctx.params.get("json_errors"):
                click.echo(format_error_json("INVALID_ARGUMENT", e.format_message()), err=True)
                raise SystemExit(1) from e
            raise


def _engine(ctx: click.Context):
    """Open the engine once per invocation."""
    from .engine import Engine
    from .errors import CodebricksError

    obj = ctx.find_root().obj
    if "engine" not in obj:
        try:
            obj["engine"] = Engine.open(data_root=obj.get("data_root"), scope_id=obj.get("scope"))
        except (CodebricksError, OSError) as e:
            _handle_error(ctx, e)
    return obj["engine"]


def _run(ctx: click.Context, coro_factory):
    """Run an engine call, routing engine errors through _handle_error."""
    from .errors import CodebricksError

    try:
        result = coro_factory()
        if asyncio.iscoroutine(result):
            return run_async(result)
        return result
    except (CodebricksError, OSError) as e:
        _handle_error(ctx, e)


def _dump(model) -> Any:
    if isinstance(model, list):
        return [_dump(m) for m in model]
    return model.model_dump(mode="json")


def format_tree(nodes: list[dict], prefix: str = "") -> str:
    lines = []
    for index, node in enumerate(nodes):
        last = index == len(nodes) - 1
        counts = []
        if node["templates"]:
            counts.append(f"{len(node['templates'])} template(s)")
        if node["links"]:
            counts.append(f"{len(node['links'])} link(s)")
        suffix = f"  ({', '.join(counts)})" if counts else ""
        lines.append(f"{prefix}{'└── ' if last else '├── '}{node['name']}{suffix}")
        child = format_tree(node["children"], prefix + ("    " if last else "│   "))
        if child:
            lines.append(child)
    return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=CODEBRICKS_VERSION, prog_name="bricks")
@click.option("--json-errors", "json_errors", is_flag=True, help="Output errors as JSON (for programmatic use)")
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="CODEBRICKS_QUIET",
    help="Suppress warnings, show only errors and essential output",
)
@click.option(
    "--data-root",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="CODEBRICKS_DATA_ROOT",
    help="Data root directory (default: configured location)",
)
@click.option("--scope", "scope", envvar="CODEBRICKS_SCOPE", help="Scope to operate on")
@click.pass_context
def cli(ctx: click.Context, json_errors: bool, quiet: bool, data_root: Path | None, scope: str | None):
    """bricks: reusable code templates organized in topics.

    \b
    Browse:
      bricks tree                          # Topic hierarchy
      bricks cards c/basics                # Subtopics, templates and links
      bricks recommend --limit=3           # Most used templates

    \b
    Manage content:
      bricks topic create basics --parent=c
      bricks template add c/basics hello --language=c --code='...'
      bricks link add c/basics docs https://example.com

    \b
    Scopes and data:
      bricks scope switch team             # Switch (or create) a scope
      bricks scope export -o backup.json
      bricks data move ~/codebricks-data   # Migrate with backup
    """
    from ._logging import set_quiet_mode

    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors
    ctx.obj["quiet"] = quiet
    ctx.obj["data_root"] = data_root
    ctx.obj["scope"] = scope

    if quiet:
        set_quiet_mode(True)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def tree(ctx: click.Context, as_json: bool):
    """Display the topic hierarchy of the current scope."""
    engine = _engine(ctx)
    nodes = engine.topics.serialize_hierarchy()
    if as_json:
        output(nodes, as_json=True)
        return
    if not nodes:
        click.echo(f"No topics in scope '{engine.scope_id}'.")
        return
    click.echo(format_tree(nodes))
    stats = engine.topics.get_statistics()
    click.echo(f"\n{stats.total_topics} topics, {stats.total_templates} templates, {stats.total_links} links")


@cli.command()
@click.argument("topic_path", default="")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def cards(ctx: click.Context, topic_path: str, as_json: bool):
    """List the cards of a topic (root topics when omitted)."""
    engine = _engine(ctx)
    result = _run(ctx, lambda: engine.topics.list_cards(topic_path or None))
    if as_json:
        output(_dump(result), as_json=True)
        return
    rows = []
    for card in result:
        match card.type:
            case "topic":
                info = f"{card.subtopic_count} subtopic(s), {card.template_count} template(s)"
            case "template":
                info = card.language
            case "link":
                info = card.target if card.resolved else f"{card.target} (dangling)"
        rows.append({"type": card.type, "path": card.path, "title": card.title, "info": info})
    click.echo(format_table(rows, ["type", "path", "title", "info"]) or "Nothing here.")


@cli.command()
@click.argument("topic_path", default="")
@click.option("--limit", "-n", default=6, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def recommend(ctx: click.Context, topic_path: str, limit: int, as_json: bool):
    """Most used templates, optionally within a topic subtree."""
    engine = _engine(ctx)
    result = _run(ctx, lambda: engine.recommendations.recommend(topic_path or None, limit))
    if as_json:
        output(_dump(result), as_json=True)
        return
    if not result:
        click.echo("No recommendations yet. Use some templates first.")
        return
    rows = [{"path": r.item_path, "uses": r.count, "language": r.template.language} for r in result]
    click.echo(format_table(rows, ["path", "uses", "language"], {"path": 60}))


# ─────────────────────────────────────────────────────────────────────────────
# Topic Command Group
# ─────────────────────────────────────────────────────────────────────────────


@cli.group()
def topic():
    """Create, move, reorder and delete topics."""


@topic.command("create")
@click.argument("name")
@click.option("--parent", "-p", help="Parent topic path (root when omitted)")
@click.option("--title", help="Display title (defaults to the name)")
@click.option("--description", "-d", default="", help="Short description")
@click.option("--doc", help="Documentation: markdown, a .md file path, or a URL")
@click.option("--icon", help="Display icon")
@click.option("--order", type=int, help="Position among siblings")
@click.pass_context
def topic_create(ctx, name, parent, title, description, doc, icon, order):
    """Create a topic."""
    from .models import TopicCreate, TopicDisplayUpdate

    engine = _engine(ctx)
    spec = TopicCreate(
        name=name,
        title=title,
        description=description,
        documentation=doc,
        display=TopicDisplayUpdate(icon=icon, order=order),
    )
    created = _run(ctx, lambda: engine.topics.create_topic(spec, parent))
    click.echo(f"Created topic: {created.path}")


@topic.command("show")
@click.argument("path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def topic_show(ctx, path, as_json):
    """Show a topic."""
    engine = _engine(ctx)
    found = _run(ctx, lambda: engine.topics.get_topic(path))
    if as_json:
        output(_dump(found), as_json=True)
        return
    click.echo(f"{found.display.icon} {found.title}  ({found.path})")
    if found.description:
        click.echo(found.description)
    chain = " > ".join(t.name for t in engine.topics.get_topic_chain(path))
    click.echo(f"Breadcrumb: {chain}")
    if found.documentation is not None:
        doc = engine.resolve_documentation(found.documentation)
        click.echo(f"\n{doc.error or doc.content}")


@topic.command("update")
@click.argument("path")
@click.option("--name", help="Rename the topic")
@click.option("--title", help="New title")
@click.option("--description", "-d", help="New description")
@click.option("--doc", help="New documentation")
@click.pass_context
def topic_update(ctx, path, name, title, description, doc):
    """Update or rename a topic."""
    from .models import TopicUpdate

    engine = _engine(ctx)
    values = {"name": name, "title": title, "description": description, "documentation": doc}
    patch = TopicUpdate(**{key: value for key, value in values.items() if value is not None})
    updated = _run(ctx, lambda: engine.topics.update_topic(path, patch))
    click.echo(f"Updated topic: {updated.path}")


@topic.command("move")
@click.argument("path")
@click.argument("new_parent", required=False)
@click.pass_context
def topic_move(ctx, path, new_parent):
    """Move a topic under NEW_PARENT (root when omitted)."""
    engine = _engine(ctx)
    moved = _run(ctx, lambda: engine.topics.move_topic(path, new_parent))
    click.echo(f"Moved topic: {path} -> {moved.path}")


@topic.command("reorder")
@click.argument("path")
@click.argument("index", type=int)
@click.pass_context
def topic_reorder(ctx, path, index):
    """Move a topic to INDEX among its siblings."""
    from .models import ReorderOp

    engine = _engine(ctx)
    _run(ctx, lambda: engine.topics.reorder_topics([ReorderOp(path=path, new_index=index)]))
    click.echo(f"Reordered: {path} is now at position {engine.topics.get_topic(path).display.order}")


@topic.command("delete")
@click.argument("path")
@click.option("--force", "-f", "delete_children", is_flag=True, help="Also delete subtopics, templates and links")
@click.pass_context
def topic_delete(ctx, path, delete_children):
    """Delete a topic."""
    engine = _engine(ctx)
    _run(ctx, lambda: engine.topics.delete_topic(path, delete_children=delete_children))
    click.echo(f"Deleted topic: {path}")


@topic.command("stats")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def topic_stats(ctx, as_json):
    """Hierarchy statistics."""
    stats = _engine(ctx).topics.get_statistics()
    if as_json:
        output(_dump(stats), as_json=True)
        return
    click.echo(f"Topics:     {stats.total_topics} ({stats.root_topics} at root, max depth {stats.max_depth})")
    click.echo(f"Templates:  {stats.total_templates} in {stats.topics_with_templates} topic(s)")
    click.echo(f"Links:      {stats.total_links}")
    if stats.language_distribution:
        langs = ", ".join(f"{lang}={count}" for lang, count in stats.language_distribution.items())
        click.echo(f"Languages:  {langs}")


# ─────────────────────────────────────────────────────────────────────────────
# Template Command Group
# ─────────────────────────────────────────────────────────────────────────────


@cli.group()
def template():
    """Add, show, use and delete templates."""


@template.command("add")
@click.argument("topic_path")
@click.argument("name")
@click.option("--language", "-l", required=True, help="Language id")
@click.option("--code", "-c", help="Template code")
@click.option("--file", "-f", "code_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--title", help="Display title")
@click.option("--description", "-d", default="", help="Short description")
@click.pass_context
def template_add(ctx, topic_path, name, language, code, code_file, title, description):
    """Add a template to a topic."""
    from .models import TemplateCreate

    if code is None and code_file is None:
        raise click.UsageError("Pass --code or --file")
    if code_file is not None:
        code = code_file.read_text(encoding="utf-8")

    engine = _engine(ctx)
    spec = TemplateCreate(name=name, title=title, description=description, code=code, language=language)
    created = _run(ctx, lambda: engine.templates.create_template(spec, topic_path))
    click.echo(f"Created template: {created.item_path}")


@template.command("show")
@click.argument("path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def template_show(ctx, path, as_json):
    """Show a template."""
    engine = _engine(ctx)
    found = _run(ctx, lambda: engine.templates.get_template(path))
    if as_json:
        output(_dump(found), as_json=True)
        return
    click.echo(f"{found.title} [{found.language}]  uses: {engine.scopes.get_usage(path)}")
    click.echo(found.code)


@template.command("use")
@click.argument("path")
@click.pass_context
def template_use(ctx, path):
    """Print a template's code and count one use."""
    engine = _engine(ctx)
    found = _run(ctx, lambda: engine.templates.get_template(path))
    _run(ctx, lambda: engine.scopes.update_usage(found.item_path))
    click.echo(found.code)


@template.command("update")
@click.argument("path")
@click.option("--name", help="Rename the template")
@click.option("--title", help="New title")
@click.option("--code", "-c", help="New code")
@click.option("--language", "-l", help="New language id")
@click.pass_context
def template_update(ctx, path, name, title, code, language):
    """Update or rename a template."""
    from .models import TemplateUpdate

    engine = _engine(ctx)
    values = {"name": name, "title": title, "code": code, "language": language}
    patch = TemplateUpdate(**{key: value for key, value in values.items() if value is not None})
    updated = _run(ctx, lambda: engine.templates.update_template(path, patch))
    if updated is None:
        click.echo(f"Template not found: {path}", err=True)
        sys.exit(1)
    click.echo(f"Updated template: {updated.item_path}")


@template.command("delete")
@click.argument("path")
@click.pass_context
def template_delete(ctx, path):
    """Delete a template (no-op when absent)."""
    engine = _engine(ctx)
    _run(ctx, lambda: engine.templates.delete_template(path))
    click.echo(f"Deleted template: {path}")


@template.command("list")
@click.argument("topic_path", default="")
@click.option("--recursive", "-r", is_flag=True, help="Include subtopics")
@click.option("--language", "-l", help="Filter by language id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def template_list(ctx, topic_path, recursive, language, as_json):
    """List templates (every template when no topic is given)."""
    engine = _engine(ctx)
    if topic_path:
        result = _run(ctx, lambda: engine.templates.get_templates(topic_path, recursive=recursive))
    else:
        result = engine.templates.get_all_templates()
    if language:
        result = [t for t in result if t.language == language]

    if as_json:
        output(_dump(result), as_json=True)
        return
    rows = [{"path": t.item_path, "language": t.language, "title": t.title} for t in result]
    click.echo(format_table(rows, ["path", "language", "title"], {"path": 60}) or "No templates found.")


# ─────────────────────────────────────────────────────────────────────────────
# Link Command Group
# ─────────────────────────────────────────────────────────────────────────────


@cli.group()
def link():
    """Add, resolve and delete links."""


@link.command("add")
@click.argument("topic_path")
@click.argument("name")
@click.argument("target")
@click.option("--title", help="Display title")
@click.pass_context
def link_add(ctx, topic_path, name, target, title):
    """Add a link to a URL, topic or template."""
    from .models import LinkCreate

    engine = _engine(ctx)
    created = _run(ctx, lambda: engine.links.create_link(LinkCreate(name=name, title=title, target=target), topic_path))
    click.echo(f"Created link: {created.item_path} -> {created.target}")


@link.command("resolve")
@click.argument("path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def link_resolve(ctx, path, as_json):
    """Show what a link points at."""
    engine = _engine(ctx)
    found = _run(ctx, lambda: engine.links.get_link(path))
    resolution = engine.links.resolve_link(found)
    if as_json:
        output(_dump(resolution), as_json=True)
    else:
        click.echo(f"{resolution.kind}: {resolution.target}")


@link.command("list")
@click.argument("topic_path")
@click.pass_context
def link_list(ctx, topic_path):
    """List the links of a topic."""
    engine = _engine(ctx)
    result = _run(ctx, lambda: engine.links.get_links(topic_path))
    rows = [{"path": item.item_path, "target": item.target} for item in result]
    click.echo(format_table(rows, ["path", "target"], {"target": 60}) or "No links found.")


@link.command("delete")
@click.argument("path")
@click.pass_context
def link_delete(ctx, path):
    """Delete a link (no-op when absent)."""
    engine = _engine(ctx)
    _run(ctx, lambda: engine.links.delete_link(path))
    click.echo(f"Deleted link: {path}")


# ─────────────────────────────────────────────────────────────────────────────
# Scope Command Group
# ─────────────────────────────────────────────────────────────────────────────


@cli.group()
def scope():
    """List, switch, export and import scopes."""


@scope.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def scope_list(ctx, as_json):
    """List scopes."""
    engine = _engine(ctx)
    scopes = engine.scopes.list_scopes()
    if as_json:
        output(_dump(scopes), as_json=True)
        return
    rows = [
        {"id": s.id, "name": s.name, "type": s.type, "current": "*" if s.id == engine.scope_id else ""}
        for s in scopes
    ]
    click.echo(format_table(rows, ["id", "name", "type", "current"]))


@scope.command("switch")
@click.argument("scope_id")
@click.pass_context
def scope_switch(ctx, scope_id):
    """Switch to a scope, creating it if needed."""
    engine = _engine(ctx)
    _run(ctx, lambda: engine.scopes.switch_scope(scope_id))
    click.echo(f"Current scope: {scope_id}")


@scope.command("create")
@click.argument("scope_id")
@click.option("--name", help="Display name")
@click.option("--description", "-d", default="")
@click.option("--type", "scope_type", type=click.Choice(["local", "shared", "custom"]), default="custom")
@click.pass_context
def scope_create(ctx, scope_id, name, description, scope_type):
    """Create an empty scope."""
    engine = _engine(ctx)
    _run(ctx, lambda: engine.scopes.create_scope(scope_id, name, description, scope_type))
    click.echo(f"Created scope: {scope_id}")


@scope.command("delete")
@click.argument("scope_id")
@click.confirmation_option(prompt="Delete the scope and all of its content?")
@click.pass_context
def scope_delete(ctx, scope_id):
    """Delete a scope and its content."""
    engine = _engine(ctx)
    _run(ctx, lambda: engine.scopes.delete_scope(scope_id))
    click.echo(f"Deleted scope: {scope_id}")


@scope.command("export")
@click.option("--output", "-o", "output_file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--no-templates", is_flag=True, help="Leave template code out")
@click.option("--no-stats", is_flag=True, help="Leave favorites and usage out")
@click.pass_context
def scope_export(ctx, output_file, no_templates, no_stats):
    """Export the current scope as JSON."""
    engine = _engine(ctx)
    bundle = _run(ctx, lambda: engine.scopes.export_scope(not no_templates, not no_stats))
    text = json.dumps(bundle.to_dict(), indent=2, ensure_ascii=False)
    if output_file is None:
        click.echo(text)
        return
    output_file.write_text(text, encoding="utf-8")
    click.echo(f"Exported {len(bundle.topics)} topic(s) and {len(bundle.templates)} template(s) to {output_file}")


@scope.command("import")
@click.argument("bundle_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--overwrite", is_flag=True, help="Overwrite existing topics, templates and languages")
@click.option("--no-merge-topics", is_flag=True, help="Never touch existing topics")
@click.option("--no-merge-languages", is_flag=True, help="Leave languages untouched")
@click.option("--stats", "preserve_stats", is_flag=True, help="Import usage counts")
@click.option("--favorites", "preserve_favorites", is_flag=True, help="Import favorites")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def scope_import(ctx, bundle_file, overwrite, no_merge_topics, no_merge_languages, preserve_stats, preserve_favorites, as_json):
    """Import an exported bundle into the current scope."""
    from .errors import ImportValidationError
    from .models import ImportOptions

    try:
        data = json.loads(bundle_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        _handle_error(ctx, ImportValidationError(f"Not a JSON bundle: {e}"))

    options = ImportOptions(
        overwrite_existing=overwrite,
        merge_topics=not no_merge_topics,
        merge_languages=not no_merge_languages,
        preserve_stats=preserve_stats,
        preserve_favorites=preserve_favorites,
    )
    engine = _engine(ctx)
    result = _run(ctx, lambda: engine.scopes.import_scope(data, options))
    if as_json:
        output(_dump(result), as_json=True)
        return
    click.echo(
        f"Imported: {result.topics_created} topic(s), {result.templates_created} template(s), "
        f"{result.links_created} link(s), {result.languages_added} language(s); "
        f"updated {result.topics_updated + result.templates_updated + result.links_updated}; "
        f"skipped {result.skipped}"
    )
    for error in result.errors:
        click.echo(f"Warning: {error}", err=True)


@scope.command("add-language")
@click.argument("language_id")
@click.option("--name", help="Language name")
@click.option("--extension", "-e", default="", help="File extension, e.g. .py")
@click.option("--overwrite", is_flag=True, help="Replace an existing language")
@click.pass_context
def scope_add_language(ctx, language_id, name, extension, overwrite):
    """Register a language in the current scope."""
    from .models import Language

    engine = _engine(ctx)
    language = Language(id=language_id, name=name or language_id, display_name=name or language_id, extension=extension)
    added = _run(ctx, lambda: engine.scopes.add_language(language, overwrite=overwrite))
    click.echo(f"Language {'saved' if added else 'already registered'}: {language_id}")


@scope.command("languages")
@click.pass_context
def scope_languages(ctx):
    """List the languages of the current scope."""
    engine = _engine(ctx)
    rows = [{"id": lang.id, "name": lang.name, "extension": lang.extension} for lang in engine.scopes.get_languages()]
    click.echo(format_table(rows, ["id", "name", "extension"]) or "No languages registered.")


@scope.command("remove-language")
@click.argument("language_id")
@click.pass_context
def scope_remove_language(ctx, language_id):
    """Remove a language from the current scope."""
    engine = _engine(ctx)
    removed = _run(ctx, lambda: engine.scopes.remove_language(language_id))
    click.echo(f"Removed language: {language_id}" if removed else f"Language not registered: {language_id}")


# ─────────────────────────────────────────────────────────────────────────────
# Favorites and Usage
# ─────────────────────────────────────────────────────────────────────────────


@cli.group()
def fav():
    """Manage favorites of the current scope."""


@fav.command("add")
@click.argument("path")
@click.pass_context
def fav_add(ctx, path):
    engine = _engine(ctx)
    _run(ctx, lambda: engine.scopes.add_favorite(path))
    click.echo(f"Favorite: {path}")


@fav.command("remove")
@click.argument("path")
@click.pass_context
def fav_remove(ctx, path):
    engine = _engine(ctx)
    _run(ctx, lambda: engine.scopes.remove_favorite(path))
    click.echo(f"Removed favorite: {path}")


@fav.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def fav_list(ctx, as_json):
    favorites = _engine(ctx).scopes.get_favorites()
    if as_json:
        output(favorites, as_json=True)
    elif favorites:
        click.echo("\n".join(favorites))
    else:
        click.echo("No favorites.")


@cli.group()
def usage():
    """Usage statistics of the current scope."""


@usage.command("stats")
@click.option("--limit", "-n", default=10, help="Max items")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def usage_stats(ctx, limit, as_json):
    """Most used items."""
    stats = _engine(ctx).scopes.get_usage_stats(limit)
    if as_json:
        output(_dump(stats), as_json=True)
        return
    rows = [{"path": item.path, "uses": item.count} for item in stats.most_used]
    if rows:
        click.echo(format_table(rows, ["path", "uses"], {"path": 60}))
    click.echo(f"\n{stats.total_uses} use(s) across {stats.tracked_items} item(s); {stats.favorites_count} favorite(s)")


@usage.command("clear")
@click.pass_context
def usage_clear(ctx):
    """Reset every usage counter (favorites are kept)."""
    engine = _engine(ctx)
    _run(ctx, engine.scopes.clear_usage_stats)
    click.echo("Usage statistics cleared.")


# ─────────────────────────────────────────────────────────────────────────────
# Data Location Command Group
# ─────────────────────────────────────────────────────────────────────────────


@cli.group()
def data():
    """Inspect and move the data location."""


@data.command("info")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def data_info(ctx, as_json):
    """Show the current data location."""
    info = _engine(ctx).data_location.get_location_info()
    if as_json:
        output(_dump(info), as_json=True)
        return
    click.echo(f"Path:      {info.path} ({info.type}{', default' if info.is_default else ''})")
    click.echo(f"Scopes:    {', '.join(info.scopes) or '-'}")
    click.echo(f"Content:   {info.topic_count} topic(s), {info.template_count} template(s)")
    click.echo(f"Size:      {info.size_bytes} bytes")


@data.command("locations")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def data_locations(ctx, as_json):
    """List candidate data locations."""
    options = _engine(ctx).data_location.get_available_locations()
    if as_json:
        output(_dump(options), as_json=True)
        return
    rows = [
        {
            "id": o.id,
            "path": o.path,
            "flags": ",".join(
                flag
                for flag, on in (("recommended", o.recommended), ("current", o.current), ("unavailable", not o.available))
                if on
            ),
        }
        for o in options
    ]
    click.echo(format_table(rows, ["id", "path", "flags"], {"path": 70}))


@data.command("validate")
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def data_validate(ctx, path):
    """Check whether PATH can become the data location."""
    result = _engine(ctx).data_location.validate_path(path)
    click.echo(f"{'valid' if result.valid else 'invalid'}: {result.path}" + (f" ({result.reason})" if result.reason else ""))
    if not result.valid:
        sys.exit(1)


def _print_progress(progress) -> None:
    if progress.phase == "copy" and progress.files_total:
        click.echo(f"[copy] {progress.files_done}/{progress.files_total} {progress.message}", err=True)
    else:
        click.echo(f"[{progress.phase}] {progress.message}", err=True)


def _report_migration(ctx: click.Context, result, as_json: bool) -> None:
    if as_json:
        output(_dump(result), as_json=True)
    elif result.success:
        click.echo(f"Data location: {result.target_location} ({result.migrated_files} file(s) migrated)")
        if result.backup_path:
            click.echo(f"Backup: {result.backup_path}")
    else:
        click.echo("Error: Migration failed; the data location was not changed", err=True)
        for error in result.errors:
            click.echo(f"  - {error}", err=True)
    if not result.success:
        sys.exit(1)


@data.command("move")
@click.argument("path", type=click.Path(file_okay=False, path_type=Path))
@click.option("--no-migrate", is_flag=True, help="Switch without copying data")
@click.option("--no-backup", is_flag=True, help="Skip the backup copy")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def data_move(ctx, path, no_migrate, no_backup, as_json):
    """Move the data location to PATH."""
    engine = _engine(ctx)
    progress = None if as_json or ctx.obj.get("quiet") else _print_progress
    result = _run(
        ctx,
        lambda: engine.data_location.set_data_path(
            path, migrate_data=not no_migrate, create_backup=not no_backup, progress=progress
        ),
    )
    _report_migration(ctx, result, as_json)


@data.command("reset")
@click.option("--no-migrate", is_flag=True, help="Switch without copying data")
@click.option("--no-backup", is_flag=True, help="Skip the backup copy")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def data_reset(ctx, no_migrate, no_backup, as_json):
    """Move the data back to the system default location."""
    engine = _engine(ctx)
    result = _run(
        ctx,
        lambda: engine.data_location.reset_to_system_default(
            migrate_data=not no_migrate, create_backup=not no_backup
        ),
    )
    _report_migration(ctx, result, as_json)


@data.command("history")
@click.pass_context
def data_history(ctx):
    """Show past migrations."""
    records = _engine(ctx).data_location.get_migration_history()
    rows = [
        {
            "when": r.timestamp.strftime("%Y-%m-%d %H:%M"),
            "to": r.to_location,
            "files": r.files_count,
            "ok": "yes" if r.success else "no",
        }
        for r in records
    ]
    click.echo(format_table(rows, ["when", "to", "files", "ok"], {"to": 60}) or "No migrations yet.")


# ─────────────────────────────────────────────────────────────────────────────
# Entry Point
# ─────────────────────────────────────────────────────────────────────────────


def main():
    """Entry point for bricks CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
