"""Resolves parsed storage macros into renderable content records."""

import logging
import re
from typing import Any, Dict, Mapping, Optional

from models import MacroKind, MacroOccurrence, ResolvedMacroContent

from .macro_parser import ATTACHMENT_PARAMETER_NAMES

logger = logging.getLogger('confluence_markdown_exporter.converters.macroextractor')


MERMAID_MACROS = ('mermaid', 'mermaid-cloud', 'mermaid-macro')
CODE_MACROS = ('code', 'html', 'xml', 'sql')
NOFORMAT_MACROS = ('noformat', 'preformatted')
PANEL_MACROS = ('info', 'warning', 'note', 'tip', 'expand')
DIAGRAM_REFERENCE_MACROS = ('drawio', 'gliffy', 'lucidchart')
TOC_MACROS = ('toc',)
STATUS_MACROS = ('status',)

MERMAID_KEYWORDS = (
    'graph', 'flowchart', 'sequencediagram', 'classdiagram', 'statediagram',
    'erdiagram', 'gantt', 'pie', 'journey', 'gitgraph', 'mindmap', 'timeline',
)

# Symbol and label shown on the first line of a rendered panel
PANEL_MARKERS = {
    'info': ('ℹ️', 'INFO'),
    'warning': ('⚠️', 'WARNING'),
    'note': ('📝', 'NOTE'),
    'tip': ('💡', 'TIP'),
    'expand': ('📂', 'DETAILS'),
}

STATUS_COLOURS = {
    'grey': '⚪',
    'red': '🔴',
    'yellow': '🟡',
    'green': '🟢',
    'blue': '🔵',
    'purple': '🟣',
}

_CDATA_PATTERN = re.compile(r'<!\[CDATA\[(.*?)\]\]>', re.DOTALL)
_PARAMETER_PATTERN = re.compile(r'<ac:parameter\b[^>]*?(?:/>|>.*?</ac:parameter>)', re.IGNORECASE | re.DOTALL)
_BR_PATTERN = re.compile(r'<br\s*/?>', re.IGNORECASE)
_BLOCK_END_PATTERN = re.compile(r'</(?:p|div|li|h[1-6]|tr|pre)>', re.IGNORECASE)
_TAG_PATTERN = re.compile(r'<[^>]+>')


def strip_rich_body(body: str) -> str:
    """Reduce a rich-text body to plain text.

    Line breaks become newlines, tags and nested macro parameters are
    dropped, CDATA sections keep their text and the standard entities are
    decoded. Whitespace inside lines is not preserved exactly.
    """
    if not body:
        return ''
    text = _PARAMETER_PATTERN.sub('', body)
    text = _CDATA_PATTERN.sub(lambda match: match.group(1) + '\n', text)
    text = _BR_PATTERN.sub('\n', text)
    text = _BLOCK_END_PATTERN.sub('\n', text)
    text = _TAG_PATTERN.sub('', text)
    text = (
        text.replace('&lt;', '<')
        .replace('&gt;', '>')
        .replace('&quot;', '"')
        .replace('&#39;', "'")
        .replace('&nbsp;', ' ')
        .replace('&amp;', '&')
    )
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


class MacroExtractor:
    """Maps each macro occurrence to a ResolvedMacroContent.

    Unrecognized macro names resolve to ``None`` and are left for the view
    rendering. Resolution reads the attachment cache but never fetches.
    """

    def __init__(self, attachment_cache: Optional[Mapping[str, str]] = None,
                 config: Dict[str, Any] = None, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.converters.macroextractor')
        self.attachment_cache = attachment_cache if attachment_cache is not None else {}
        self.config = config or {}

        diagram_references = list(DIAGRAM_REFERENCE_MACROS)
        if self.config.get('plantuml_as_diagram_reference', True):
            diagram_references.append('plantuml')

        # Register macro resolvers
        self.macro_resolvers = {}
        for name in MERMAID_MACROS:
            self.macro_resolvers[name] = self._resolve_mermaid
        for name in CODE_MACROS + NOFORMAT_MACROS:
            self.macro_resolvers[name] = self._resolve_code
        for name in PANEL_MACROS:
            self.macro_resolvers[name] = self._resolve_panel
        for name in diagram_references:
            self.macro_resolvers[name] = self._resolve_diagram_reference
        for name in TOC_MACROS:
            self.macro_resolvers[name] = self._resolve_toc
        for name in STATUS_MACROS:
            self.macro_resolvers[name] = self._resolve_status

    def supports(self, name: str) -> bool:
        return name.lower() in self.macro_resolvers

    def extract(self, occurrence: MacroOccurrence) -> Optional[ResolvedMacroContent]:
        """Resolve one occurrence, or return None for unrecognized macros."""
        resolver = self.macro_resolvers.get(occurrence.name.lower())
        if resolver is None:
            self.logger.debug(f"Leaving unrecognized macro '{occurrence.name}' to the view rendering")
            return None

        resolved = resolver(occurrence)
        resolved.macro_name = occurrence.name.lower()
        resolved.macro_id = occurrence.macro_id
        return resolved

    def _lookup_attachment(self, filename: str) -> Optional[str]:
        content = self.attachment_cache.get(filename)
        if content is None:
            self.logger.warning(f"Attachment '{filename}' not found in attachment cache")
        return content

    def _resolve_mermaid(self, occurrence: MacroOccurrence) -> ResolvedMacroContent:
        options = {}
        for key in ('theme', 'width', 'height'):
            value = occurrence.get_parameter(key)
            if value:
                options[key] = value

        if occurrence.has_plain_body and occurrence.body.strip():
            return self._diagram(occurrence.body.strip(), options)

        filename = occurrence.first_parameter(ATTACHMENT_PARAMETER_NAMES)
        if filename:
            cached = self._lookup_attachment(filename)
            if cached is not None and cached.strip():
                self.logger.debug(f"Resolved {occurrence.name} diagram from attachment '{filename}'")
                return self._diagram(cached.strip(), options)

        return ResolvedMacroContent(
            kind=MacroKind.DIAGRAM_REFERENCE,
            content='Diagram source not available. Download attachment to view.',
            family='mermaid',
            title='Mermaid Diagram',
            attachment=filename or 'unknown attachment',
            options=options,
        )

    def _diagram(self, source: str, options: Dict[str, str]) -> ResolvedMacroContent:
        if not source.lower().startswith(MERMAID_KEYWORDS):
            self.logger.debug("Mermaid source does not start with a known diagram keyword")
        return ResolvedMacroContent(
            kind=MacroKind.DIAGRAM,
            content=source,
            language='mermaid',
            family='mermaid',
            options=options,
        )

    def _resolve_code(self, occurrence: MacroOccurrence) -> ResolvedMacroContent:
        name = occurrence.name.lower()
        family = 'noformat' if name in NOFORMAT_MACROS else 'code'
        title = occurrence.get_parameter('title')
        options = {}
        if self.config.get('emit_code_options', True):
            if title:
                options['title'] = title
            if occurrence.get_parameter('linenumbers') == 'true':
                options['linenumbers'] = 'true'
            if occurrence.get_parameter('theme'):
                options['theme'] = occurrence.get_parameter('theme')
            if occurrence.get_parameter('collapse') == 'true':
                options['collapse'] = 'true'

        if family == 'noformat':
            language = ''
        elif name == 'code':
            language = (occurrence.get_parameter('language') or '').lower()
        else:
            language = (occurrence.get_parameter('language') or name).lower()

        code = None
        if occurrence.has_plain_body:
            code = occurrence.body
        elif occurrence.has_rich_body:
            self.logger.debug(f"Using stripped rich body for {name} macro")
            code = strip_rich_body(occurrence.body)

        if code is not None and code.strip():
            return ResolvedMacroContent(
                kind=MacroKind.CODE, content=code, language=language,
                family=family, title=title, options=options,
            )

        filename = occurrence.first_parameter(ATTACHMENT_PARAMETER_NAMES)
        if filename:
            cached = self.attachment_cache.get(filename)
            if cached is not None and cached.strip():
                return ResolvedMacroContent(
                    kind=MacroKind.CODE, content=cached, language=language,
                    family=family, title=title, options=options,
                )
            self.logger.info(f"Code macro references attachment '{filename}' that is not cached")
            return ResolvedMacroContent(
                kind=MacroKind.DIAGRAM_REFERENCE,
                content=f"Language: {language or 'Unknown'}. Source: [{filename}](<./assets/{filename}>)",
                family=family,
                title=title or 'Code Block',
                attachment=filename,
            )

        self.logger.warning(f"{name} macro found without content or attachment")
        return ResolvedMacroContent(
            kind=MacroKind.CODE,
            content=f"> **{title or 'Code Block'}** _(code content not available)_",
            language=language,
            family=family,
            title=title or 'Code Block',
            options={'notice': True},
        )

    def _resolve_panel(self, occurrence: MacroOccurrence) -> ResolvedMacroContent:
        name = occurrence.name.lower()
        symbol, label = PANEL_MARKERS[name]
        title = occurrence.get_parameter('title')
        marker = f"{symbol} **{label}**"
        if title:
            marker = f"{symbol} **{label}: {title}**"

        body = ''
        if occurrence.has_rich_body:
            body = strip_rich_body(occurrence.body)
        elif occurrence.has_plain_body:
            body = occurrence.body.strip()

        return ResolvedMacroContent(
            kind=MacroKind.PANEL,
            content=body,
            family='panel',
            title=marker,
        )

    def _resolve_diagram_reference(self, occurrence: MacroOccurrence) -> ResolvedMacroContent:
        name = occurrence.name.lower()
        diagram_name = occurrence.first_parameter(['diagramName'] + ATTACHMENT_PARAMETER_NAMES)
        details = []
        for key in ('pageId', 'url'):
            value = occurrence.get_parameter(key)
            if value:
                details.append(f"{key}: {value}")

        if diagram_name:
            notice = f"Exported as attachment: [{diagram_name}](<./assets/{diagram_name}>)"
        else:
            notice = f"{name} diagram source is not available"
        if details:
            notice += f" ({'; '.join(details)})"

        return ResolvedMacroContent(
            kind=MacroKind.DIAGRAM_REFERENCE,
            content=notice,
            family='diagram',
            title=f"{name.capitalize()} Diagram",
            attachment=diagram_name or 'Untitled diagram',
        )

    def _resolve_toc(self, occurrence: MacroOccurrence) -> ResolvedMacroContent:
        min_level = self._level(occurrence.get_parameter('minLevel'), 1)
        max_level = self._level(occurrence.get_parameter('maxLevel'), 7)
        outline = (occurrence.get_parameter('outline') or '').lower()
        toc_type = (occurrence.get_parameter('type') or '').lower()

        return ResolvedMacroContent(
            kind=MacroKind.TABLE_OF_CONTENTS,
            content='',
            family='toc',
            options={
                'min_level': min_level,
                'max_level': max(min_level, max_level),
                'printable': outline != 'false' and toc_type != 'flat',
            },
        )

    def _level(self, value: Optional[str], default: int) -> int:
        try:
            return min(7, max(1, int(value))) if value else default
        except ValueError:
            self.logger.warning(f"Ignoring non-numeric TOC level '{value}'")
            return default

    def _resolve_status(self, occurrence: MacroOccurrence) -> ResolvedMacroContent:
        title = occurrence.get_parameter('title') or 'Status'
        colour = (occurrence.get_parameter('colour') or occurrence.get_parameter('color') or 'grey').lower()
        badge = f"{STATUS_COLOURS.get(colour, '⚪')} **[{title.upper()}]**"
        if occurrence.get_parameter('subtle') == 'true':
            badge += ' *(subtle)*'
        return ResolvedMacroContent(kind=MacroKind.STATUS, content=badge, family='status')


__all__ = [
    'MacroExtractor',
    'strip_rich_body',
    'PANEL_MARKERS',
    'STATUS_COLOURS',
    'MERMAID_MACROS',
    'CODE_MACROS',
    'NOFORMAT_MACROS',
    'PANEL_MACROS',
    'DIAGRAM_REFERENCE_MACROS',
]
