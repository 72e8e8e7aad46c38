"""YAML frontmatter assembly and final whitespace cleanup."""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import yaml

from models import ConfluencePage

DEFAULT_EXPORTED_BY = 'confluence-markdown-exporter'


def build_frontmatter(page: ConfluencePage, macro_counts: Dict[str, int],
                      exported_by: str = DEFAULT_EXPORTED_BY,
                      exported_at: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the frontmatter mapping for a converted page.

    Keys are inserted in their output order. ``confluenceParentId`` and
    ``confluenceLabels`` are only present when the page has them.
    """
    frontmatter = {
        'title': page.title,
        'confluenceId': page.id,
        'confluenceSpaceKey': page.space_key,
        'confluenceUrl': page.url,
        'confluenceVersion': page.version,
        'confluenceCreatedBy': page.created_by,
        'confluenceCreatedAt': page.created_at,
        'confluenceUpdatedAt': page.updated_at,
    }

    if page.parent_id:
        frontmatter['confluenceParentId'] = page.parent_id
    if page.labels:
        frontmatter['confluenceLabels'] = list(page.labels)

    frontmatter['macros'] = {
        'mermaid': macro_counts.get('mermaid', 0),
        'code': macro_counts.get('code', 0),
        'diagrams': macro_counts.get('diagrams', 0),
        'panels': macro_counts.get('panels', 0),
    }
    frontmatter['exportedAt'] = exported_at or datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')
    frontmatter['exportedBy'] = exported_by or DEFAULT_EXPORTED_BY
    return frontmatter


def render_frontmatter(frontmatter: Dict[str, Any]) -> str:
    """Render a frontmatter mapping as a ``---`` delimited YAML block."""
    # default_flow_style=False keeps lists in block style
    yaml_str = yaml.dump(
        frontmatter,
        default_flow_style=False,
        allow_unicode=True,
        sort_keys=False,
        width=1000,
    )
    return f"---\n{yaml_str}---"


def cleanup_markdown(markdown: str) -> str:
    """Collapse runs of blank lines, trim the document, and end with exactly one newline."""
    markdown = '\n'.join('' if not line.strip() else line for line in markdown.split('\n'))
    markdown = re.sub(r'\n{3,}', '\n\n', markdown)
    return markdown.strip() + '\n'


__all__ = ['build_frontmatter', 'render_frontmatter', 'cleanup_markdown', 'DEFAULT_EXPORTED_BY']
