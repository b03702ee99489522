"""Shared test fixtures for the codebricks test suite.

Design:
- settings_path: isolates HOME, the settings file and the environment
- tmp_root: empty data root in a temp directory
- engine: Engine opened on tmp_root (creates the default "local" scope)
- sample_engine: engine seeded with topics, templates, links and languages
- runner: CliRunner for CLI tests
"""

from pathlib import Path

import pytest
import pytest_asyncio
from click.testing import CliRunner

from codebricks import topics as topics_module
from codebricks.engine import Engine
from codebricks.models import Language, LinkCreate, TemplateCreate, TopicCreate


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def settings_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Settings file in a temp directory, with HOME and env isolated."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.delenv("CODEBRICKS_DATA_ROOT", raising=False)
    monkeypatch.delenv("CODEBRICKS_SCOPE", raising=False)

    path = tmp_path / "settings.yaml"
    monkeypatch.setenv("CODEBRICKS_CONFIG", str(path))
    return path


@pytest.fixture
def tmp_root(tmp_path: Path, settings_path: Path) -> Path:
    """Empty data root."""
    root = tmp_path / "data"
    root.mkdir()
    return root


@pytest.fixture
def engine(tmp_root: Path, settings_path: Path, tmp_path: Path) -> Engine:
    """Engine on an empty data root."""
    return Engine.open(data_root=tmp_root, settings_path=settings_path, cwd=tmp_path)


async def seed(engine: Engine) -> Engine:
    """Populate an engine with a small tree.

    Creates:
    - c/                      (root)
      - basics/               templates: hello, loop   links: docs (URL), see-py
      - advanced/
    - python/                 templates: main          links: see-hello
    - languages c, python
    """
    topics = engine.topics
    await topics.create_topic(TopicCreate(name="c", title="C"))
    await topics.create_topic(TopicCreate(name="basics", title="Basics"), "c")
    await topics.create_topic(TopicCreate(name="advanced", title="Advanced"), "c")
    await topics.create_topic(TopicCreate(name="python", title="Python"))

    templates = engine.templates
    await templates.create_template(
        TemplateCreate(name="hello", title="Hello", code='printf("hello\\n");', language="c"), "c/basics"
    )
    await templates.create_template(
        TemplateCreate(name="loop", code="for (int i = 0; i < n; i++) {}", language="c"), "c/basics"
    )
    await templates.create_template(
        TemplateCreate(name="main", code='if __name__ == "__main__":\n    main()', language="python"), "python"
    )

    links = engine.links
    await links.create_link(LinkCreate(name="docs", target="https://en.cppreference.com/w/c"), "c/basics")
    await links.create_link(LinkCreate(name="see-py", target="python"), "c/basics")
    await links.create_link(LinkCreate(name="see-hello", target="c/basics/templates/hello"), "python")

    await engine.scopes.add_language(Language(id="c", name="C", extension=".c"))
    await engine.scopes.add_language(Language(id="python", name="Python", extension=".py"))
    return engine


@pytest_asyncio.fixture
async def sample_engine(engine: Engine) -> Engine:
    """Engine seeded by ``seed``."""
    return await seed(engine)


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


def snapshot_files(root: Path) -> dict[str, bytes]:
    """Relative path -> bytes of every file under ``root``."""
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


def fail_writes_after(monkeypatch: pytest.MonkeyPatch, successes: int) -> None:
    """Make the document writer raise after ``successes`` writes."""
    real = topics_module._write_document
    calls = {"n": 0}

    def flaky(path, model):
        calls["n"] += 1
        if calls["n"] > successes:
            raise OSError("disk full")
        real(path, model)

    monkeypatch.setattr(topics_module, "_write_document", flaky)
