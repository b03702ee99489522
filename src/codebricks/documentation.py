"""Documentation resolution for topics and templates.

The engine never renders markdown. It resolves the documentation union into
raw content (reading file references with their YAML frontmatter) and hands
it to an external renderer.
"""

from pathlib import Path
from typing import Protocol

import frontmatter

from .models import DocumentationContent, FileDoc, MarkdownDoc, UrlDoc


class DocumentationRenderer(Protocol):
    """Turns resolved documentation into something displayable."""

    def render(self, content: DocumentationContent) -> str: ...


def resolve_documentation(doc: MarkdownDoc | FileDoc | UrlDoc, base_dir: Path) -> DocumentationContent:
    """Resolve documentation into content for a renderer.

    Args:
        doc: Documentation of a topic or template.
        base_dir: Directory file references are relative to (the scope
            directory).

    Returns:
        DocumentationContent. An unreadable file yields ``error`` set and
        empty content instead of raising.
    """
    match doc:
        case MarkdownDoc(content=content):
            return DocumentationContent(kind="markdown", content=content)
        case UrlDoc(url=url):
            return DocumentationContent(kind="url", content=url)
        case FileDoc(path=ref):
            return _load_file(base_dir, ref)
    raise TypeError(f"Unsupported documentation: {doc!r}")


def _load_file(base_dir: Path, ref: str) -> DocumentationContent:
    path = Path(ref).expanduser()
    if not path.is_absolute():
        path = base_dir / path

    if not path.is_file():
        return DocumentationContent(kind="file", content="", error=f"Documentation file not found: {ref}")

    try:
        post = frontmatter.load(str(path))
    except Exception as e:
        return DocumentationContent(kind="file", content="", error=f"Failed to read {ref}: {e}")

    metadata = dict(post.metadata)
    metadata.setdefault("source", str(path))
    return DocumentationContent(kind="file", content=post.content, metadata=metadata)
