"""Second pass over rendered Markdown: swaps placeholder tokens for final content."""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from models import MacroKind, ResolvedMacroContent

from .placeholder_registry import PlaceholderRegistry

logger = logging.getLogger('confluence_markdown_exporter.converters.placeholderresolver')


HEADING_PATTERN = re.compile(r'^(#{1,6})\s+(.+?)\s*#*\s*$')
FENCE_PATTERN = re.compile(r'^\s*(```|~~~)')

# Inline markup removed from heading text before building anchors
HEADING_CLEANUP = [
    (re.compile(r'<!--.*?-->'), ''),
    (re.compile(r'<a\s+id="[^"]*"\s*>\s*</a>'), ''),
    (re.compile(r'!\[([^\]]*)\]\([^)]*\)'), r'\1'),
    (re.compile(r'\[([^\]]*)\]\([^)]*\)'), r'\1'),
    (re.compile(r'`([^`]*)`'), r'\1'),
    (re.compile(r'\*\*([^*]+)\*\*'), r'\1'),
    (re.compile(r'__([^_]+)__'), r'\1'),
    (re.compile(r'\*([^*]+)\*'), r'\1'),
    (re.compile(r'(?<!\w)_([^_]+)_(?!\w)'), r'\1'),
    (re.compile(r'~~([^~]+)~~'), r'\1'),
]


def clean_heading_text(text: str) -> str:
    """Strip inline Markdown from heading text."""
    for pattern, replacement in HEADING_CLEANUP:
        text = pattern.sub(replacement, text)
    return text.strip()


def slugify_heading(text: str) -> str:
    """Derive an anchor slug from heading text.

    Lowercases, drops characters other than word characters, whitespace,
    dots and hyphens, turns whitespace into hyphens and collapses repeats.
    ``"2.1 Payment (Beta)!"`` becomes ``"2.1-payment-beta"``.
    """
    slug = clean_heading_text(text).lower()
    slug = re.sub(r'[^\w\s.-]', '', slug)
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


def collect_headings(markdown: str, min_level: int = 1, max_level: int = 7) -> List[Tuple[int, str]]:
    """ATX headings within the level range, skipping fenced code."""
    headings = []
    in_fence = False
    for line in markdown.split('\n'):
        if FENCE_PATTERN.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = HEADING_PATTERN.match(line)
        if not match:
            continue
        level = len(match.group(1))
        if min_level <= level <= max_level:
            text = clean_heading_text(match.group(2))
            if text:
                headings.append((level, text))
    return headings


def generate_toc(markdown: str, min_level: int = 1, max_level: int = 7, printable: bool = True) -> str:
    """Build a nested bullet list of anchor links for the headings in ``markdown``.

    Returns an empty string when no heading qualifies.
    """
    headings = collect_headings(markdown, min_level, max_level)
    if not headings:
        return ''

    top = min(level for level, _ in headings)
    lines = []
    if printable:
        lines.append('<!-- Table of Contents -->')
    for level, text in headings:
        indent = '  ' * (level - top)
        lines.append(f"{indent}- [{text}](#{slugify_heading(text)})")
    return '\n'.join(lines)


def is_table_row(line: str) -> bool:
    stripped = line.strip()
    return len(stripped) > 1 and stripped.startswith('|') and stripped.endswith('|')


def indent_continuation(text: str, prefix: str) -> str:
    """Carry the line prefix in front of a token over to every further line of ``text``.

    Whitespace and list markers become plain indentation, blockquote markers
    are repeated. Any other prefix leaves ``text`` unchanged.
    """
    if '\n' not in text or not prefix:
        return text
    if re.fullmatch(r'[ \t]*(?:[-*+]|\d+[.)])[ \t]+', prefix):
        prefix = ' ' * len(prefix)
    elif not re.fullmatch(r'[ \t>]*', prefix):
        return text

    blank_prefix = prefix.rstrip()
    first, *rest = text.split('\n')
    return '\n'.join([first] + [prefix + line if line.strip() else blank_prefix for line in rest])


def token_patterns(token: str) -> List[re.Pattern]:
    """Textual forms a token may take after rendering, most specific first."""
    escaped = re.escape(token)
    return [
        re.compile(r'`\{\{' + escaped + r'\}\}`'),
        re.compile(r'\{\{' + escaped + r'\}\}'),
        re.compile(r'\\\{\\\{' + escaped + r'\\\}\\\}'),
        re.compile(r'\\\\\{\\\\\{' + escaped + r'\\\\\}\\\\\}'),
        re.compile(escaped),
    ]


class PlaceholderResolver:
    """
    Replaces every registered token in rendered Markdown with its content.

    Tokens are tried against a short list of escaping variants; a token
    that matches none of them is logged and left in the output. Tables of
    contents are generated last, from the headings of the otherwise final
    document. The registry is cleared once resolution finishes.
    """

    def __init__(self, config: Dict[str, Any] = None, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.converters.placeholderresolver')
        self.config = config or {}
        self.unmatched: List[str] = []

    def resolve(self, markdown: str, registry: PlaceholderRegistry) -> str:
        """Return ``markdown`` with all tokens substituted."""
        self.unmatched = []
        deferred = []

        try:
            for entry in registry.entries():
                if entry.content.kind == MacroKind.TABLE_OF_CONTENTS:
                    deferred.append(entry)
                    continue
                markdown = self._substitute(
                    markdown, entry.token, self.render(entry.content), self.render_cell(entry.content)
                )

            for entry in deferred:
                options = entry.content.options
                toc = generate_toc(
                    markdown,
                    min_level=options.get('min_level', 1),
                    max_level=options.get('max_level', 7),
                    printable=options.get('printable', True),
                )
                if not toc:
                    self.logger.debug("Table of contents has no qualifying headings")
                markdown = self._substitute(markdown, entry.token, toc, self._single_line(toc))
        finally:
            registry.clear()

        return markdown

    def _substitute(self, markdown: str, token: str, replacement: str, cell_replacement: str) -> str:
        for pattern in token_patterns(token):
            match = pattern.search(markdown)
            if not match:
                continue
            line_start = markdown.rfind('\n', 0, match.start()) + 1
            line_end = markdown.find('\n', match.end())
            line = markdown[line_start:len(markdown) if line_end == -1 else line_end]
            if is_table_row(line):
                text = cell_replacement
            else:
                text = indent_continuation(replacement, markdown[line_start:match.start()])
            return markdown[:match.start()] + text + markdown[match.end():]

        self.logger.warning(f"Placeholder {token} not found in rendered markdown")
        self.unmatched.append(token)
        return markdown

    def render(self, content: ResolvedMacroContent) -> str:
        """Final Markdown for one resolved macro."""
        if content.kind == MacroKind.DIAGRAM:
            return self._render_diagram(content)
        if content.kind == MacroKind.CODE:
            return self._render_code(content)
        if content.kind == MacroKind.PANEL:
            return self._render_panel(content)
        if content.kind == MacroKind.DIAGRAM_REFERENCE:
            return self._render_reference(content)
        if content.kind == MacroKind.STATUS:
            return content.content
        return content.content

    def _render_diagram(self, content: ResolvedMacroContent) -> str:
        source = content.content.rstrip('\n')
        markdown = f"```{content.language or 'mermaid'}\n{source}\n```"
        options = self._format_options(content.options, ('theme', 'width', 'height'))
        if options:
            markdown += f"\n<!-- Mermaid options: {options} -->"
        return markdown

    def _render_code(self, content: ResolvedMacroContent) -> str:
        if content.options.get('notice'):
            return content.content

        code = content.content
        if not code.endswith('\n'):
            code += '\n'
        markdown = f"```{content.language or ''}\n{code}```"
        options = self._format_options(content.options, ('title', 'linenumbers', 'theme', 'collapse'))
        if options:
            markdown += f"\n<!-- Code block options: {options} -->"
        return markdown

    def render_cell(self, content: ResolvedMacroContent) -> str:
        """One-line rendering for a macro that sits in a table cell."""
        if content.kind in (MacroKind.DIAGRAM, MacroKind.CODE) and not content.options.get('notice'):
            lines = [line.rstrip() for line in content.content.split('\n') if line.strip()]
            text = '<br>'.join(f'`{line}`' for line in lines)
        elif content.kind == MacroKind.PANEL:
            lines = [content.title] if content.title else []
            lines.extend(line.strip() for line in content.content.split('\n') if line.strip())
            text = '<br>'.join(lines)
        elif content.kind == MacroKind.DIAGRAM_REFERENCE:
            text = f"**{content.title or 'Diagram'}:** {content.attachment or 'unknown attachment'}"
            if content.content:
                text += f"<br>_{content.content}_"
        else:
            text = self._single_line(content.content)
        return text.replace('|', '\\|')

    @staticmethod
    def _single_line(markdown: str) -> str:
        return '<br>'.join(line.strip() for line in markdown.split('\n') if line.strip())

    def _render_panel(self, content: ResolvedMacroContent) -> str:
        lines = [f"> {content.title}"] if content.title else []
        body = content.content.strip()
        if body:
            if lines:
                lines.append('>')
            for line in body.split('\n'):
                lines.append(f"> {line}" if line.strip() else '>')
        return '\n'.join(lines)

    def _render_reference(self, content: ResolvedMacroContent) -> str:
        title = content.title or 'Diagram'
        lines = [f"> **{title}:** {content.attachment or 'unknown attachment'}"]
        if content.content:
            lines.append('>')
            lines.append(f"> _{content.content}_")
        return '\n'.join(lines)

    @staticmethod
    def _format_options(options: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
        parts = [f"{key}: {options[key]}" for key in keys if options.get(key)]
        return ', '.join(parts) if parts else None


__all__ = [
    'PlaceholderResolver',
    'generate_toc',
    'slugify_heading',
    'clean_heading_text',
    'collect_headings',
    'token_patterns',
]
