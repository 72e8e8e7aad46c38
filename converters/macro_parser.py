"""Storage-format macro parser with interchangeable DOM and regex strategies."""

import html
import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup, CData, Comment, NavigableString, Tag

from models import BodyKind, MacroOccurrence

logger = logging.getLogger('confluence_markdown_exporter.converters.macroparser')


STRUCTURED_MACRO_TAG = 'ac:structured-macro'
ATTACHMENT_PARAMETER_NAMES = ['filename', 'attachment', 'name', 'file', 'src']

_CDATA_PATTERN = re.compile(r'<!\[CDATA\[(.*?)\]\]>', re.DOTALL)
_TAG_PATTERN = re.compile(r'<[^>]+>')
_RI_FILENAME_PATTERN = re.compile(r'ri:filename\s*=\s*["\']([^"\']*)["\']', re.IGNORECASE)


def mask_cdata(text: str) -> str:
    """Blank out CDATA contents so markup inside them is not scanned.

    Offsets and line breaks are kept, so positions found in the masked text
    address the same characters in the original.
    """
    return _CDATA_PATTERN.sub(
        lambda match: '<![CDATA[' + re.sub(r'[^\n]', ' ', match.group(1)) + ']]>',
        text
    )


def find_element_end(text: str, start: int, tag_name: str) -> int:
    """Return the offset just past the element that opens at ``start``.

    Nested elements with the same tag name are balanced. Self-closing tags
    end at their ``/>``. Unterminated elements run to the end of ``text``.
    CDATA contents are never taken for markup.
    """
    text = mask_cdata(text)
    open_end = text.find('>', start)
    if open_end == -1:
        return len(text)
    if text[open_end - 1] == '/':
        return open_end + 1

    token_pattern = re.compile(
        r'<(/?)' + re.escape(tag_name) + r'(?=[\s/>])[^>]*?(/?)>',
        re.IGNORECASE
    )
    depth = 1
    for match in token_pattern.finditer(text, open_end + 1):
        closing, self_closing = match.group(1), match.group(2)
        if closing:
            depth -= 1
            if depth == 0:
                return match.end()
        elif not self_closing:
            depth += 1
    return len(text)


class ParserStrategy(ABC):
    """Turns a storage document into macro occurrences."""

    name = 'base'

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.converters.macroparser')

    @abstractmethod
    def parse(self, storage: str) -> List[MacroOccurrence]:
        """Return macro occurrences in document order."""


class SoupParserStrategy(ParserStrategy):
    """Structural parser built on BeautifulSoup.

    Uses the ``html.parser`` builder because it keeps CDATA sections and
    records source positions, which are needed to recover exact spans.
    """

    name = 'soup'

    def parse(self, storage: str) -> List[MacroOccurrence]:
        soup = BeautifulSoup(storage, 'html.parser')
        line_offsets = self._line_offsets(storage)

        elements = soup.find_all(STRUCTURED_MACRO_TAG)
        if not elements:
            elements = [
                element for element in soup.find_all(self._is_named_ac_element)
            ]
            if elements:
                self.logger.debug(f"No {STRUCTURED_MACRO_TAG} elements, using {len(elements)} named ac: elements")

        occurrences = []
        for element in elements:
            try:
                occurrence = self._build_occurrence(element, storage, line_offsets, len(occurrences))
            except Exception as e:
                self.logger.warning(f"Skipping malformed macro element <{element.name}>: {e}")
                continue
            if occurrence:
                occurrences.append(occurrence)
        return occurrences

    @staticmethod
    def _is_named_ac_element(element: Tag) -> bool:
        if not element.name.startswith('ac:') or element.name == 'ac:parameter':
            return False
        return bool(element.get('ac:name') or element.get('name'))

    @staticmethod
    def _line_offsets(text: str) -> List[int]:
        offsets = [0]
        for match in re.finditer('\n', text):
            offsets.append(match.end())
        return offsets

    def _build_occurrence(self, element: Tag, storage: str, line_offsets: List[int],
                          index: int) -> Optional[MacroOccurrence]:
        name = (element.get('ac:name') or element.get('name') or '').strip()
        if not name:
            self.logger.warning("Skipping macro element without a name")
            return None

        parameters = []
        for param in self._own_children(element, 'ac:parameter'):
            param_name = param.get('ac:name') or param.get('name')
            if param_name is None:
                continue
            parameters.append((param_name, self._parameter_value(param)))

        body, body_kind = None, BodyKind.NONE
        plain = self._own_children(element, 'ac:plain-text-body')
        if plain:
            body, body_kind = self._plain_text(plain[0], storage, line_offsets), BodyKind.PLAIN_TEXT
        else:
            rich = self._own_children(element, 'ac:rich-text-body')
            if rich:
                body, body_kind = self._rich_text(rich[0], storage, line_offsets), BodyKind.RICH_HTML

        return MacroOccurrence(
            name=name,
            parameters=tuple(parameters),
            body=body,
            body_kind=body_kind,
            span=self._span(element, storage, line_offsets),
            macro_id=element.get('ac:macro-id'),
            index=index,
        )

    @staticmethod
    def _own_children(element: Tag, tag_name: str) -> List[Tag]:
        """Direct children with ``tag_name`` (never those of nested macros)."""
        return [child for child in element.find_all(tag_name, recursive=False)]

    @staticmethod
    def _parameter_value(param: Tag) -> str:
        attachment = param.find(attrs={'ri:filename': True})
        if attachment is not None:
            return attachment['ri:filename'].strip()
        return param.get_text().strip()

    @classmethod
    def _plain_text(cls, body: Tag, storage: str, line_offsets: List[int]) -> str:
        # CDATA is read from the source text; html.parser may not keep it as a node
        source = cls._source(body, storage, line_offsets)
        if source is not None:
            sections = _CDATA_PATTERN.findall(source)
            if sections:
                return ''.join(sections)

        sections = [str(child) for child in body.children if isinstance(child, CData)]
        if sections:
            return ''.join(sections)
        return ''.join(
            str(child) for child in body.children
            if isinstance(child, NavigableString) and not isinstance(child, Comment)
        )

    @classmethod
    def _rich_text(cls, body: Tag, storage: str, line_offsets: List[int]) -> str:
        """Raw markup between the rich-text-body tags."""
        source = cls._source(body, storage, line_offsets)
        if source is None:
            return body.decode_contents()
        closing = f'</{body.name}>'
        content_end = len(source) - len(closing) if source.lower().endswith(closing) else len(source)
        return source[source.find('>') + 1:content_end]

    @staticmethod
    def _source(element: Tag, storage: str, line_offsets: List[int]) -> Optional[str]:
        """Exact source text of ``element``, or None when positions are unavailable."""
        line = getattr(element, 'sourceline', None)
        column = getattr(element, 'sourcepos', None)
        if line is None or column is None or line > len(line_offsets):
            return None
        start = line_offsets[line - 1] + column
        if not storage.startswith('<', start):
            return None
        return storage[start:find_element_end(storage, start, element.name)]

    @classmethod
    def _span(cls, element: Tag, storage: str, line_offsets: List[int]) -> str:
        source = cls._source(element, storage, line_offsets)
        return source if source is not None else str(element)


class RegexParserStrategy(ParserStrategy):
    """Pattern-matching parser for contexts without a structural HTML parser.

    Nested macros are balanced by tag counting so the occurrence set matches
    the structural parser for well-formed input.
    """

    name = 'regex'

    STRUCTURED_OPEN = re.compile(r'<ac:structured-macro(?=[\s/>])[^>]*>', re.IGNORECASE)
    NAMED_OPEN = re.compile(r'<(ac:(?!parameter\b)[\w-]+)(?=\s)[^>]*?\b(?:ac:)?name\s*=\s*["\'][^"\']*["\'][^>]*>',
                            re.IGNORECASE)
    NAME_ATTR = re.compile(r'\s(?:ac:)?name\s*=\s*["\']([^"\']*)["\']', re.IGNORECASE)
    MACRO_ID_ATTR = re.compile(r'\sac:macro-id\s*=\s*["\']([^"\']*)["\']', re.IGNORECASE)
    PARAMETER = re.compile(
        r'<ac:parameter\b[^>]*?\s(?:ac:)?name\s*=\s*["\']([^"\']*)["\'][^>]*?(?:/>|>(.*?)</ac:parameter>)',
        re.IGNORECASE | re.DOTALL
    )
    PLAIN_BODY = re.compile(r'<ac:plain-text-body\s*>(.*?)</ac:plain-text-body>', re.IGNORECASE | re.DOTALL)
    RICH_BODY_OPEN = re.compile(r'<ac:rich-text-body\s*>', re.IGNORECASE)

    def parse(self, storage: str) -> List[MacroOccurrence]:
        # Structure is found in the masked copy, text is read from the original
        masked = mask_cdata(storage)
        spans = self._element_spans(masked, self.STRUCTURED_OPEN, STRUCTURED_MACRO_TAG)
        if not spans:
            spans = self._named_element_spans(masked)
            if spans:
                self.logger.debug(f"No {STRUCTURED_MACRO_TAG} elements, using {len(spans)} named ac: elements")

        occurrences = []
        for start, end, tag_name in spans:
            try:
                occurrence = self._build_occurrence(storage, masked, start, end, tag_name, spans, len(occurrences))
            except Exception as e:
                self.logger.warning(f"Skipping malformed macro at offset {start}: {e}")
                continue
            if occurrence:
                occurrences.append(occurrence)
        return occurrences

    @staticmethod
    def _element_spans(storage: str, pattern: re.Pattern, tag_name: str) -> List[Tuple[int, int, str]]:
        return [
            (match.start(), find_element_end(storage, match.start(), tag_name), tag_name)
            for match in pattern.finditer(storage)
        ]

    def _named_element_spans(self, storage: str) -> List[Tuple[int, int, str]]:
        return [
            (match.start(), find_element_end(storage, match.start(), match.group(1)), match.group(1))
            for match in self.NAMED_OPEN.finditer(storage)
        ]

    def _build_occurrence(self, storage: str, masked: str, start: int, end: int, tag_name: str,
                          spans: List[Tuple[int, int, str]], index: int) -> Optional[MacroOccurrence]:
        span = storage[start:end]
        open_tag = masked[start:masked.find('>', start) + 1]

        name_match = self.NAME_ATTR.search(open_tag)
        if not name_match or not name_match.group(1).strip():
            self.logger.warning("Skipping macro element without a name")
            return None
        id_match = self.MACRO_ID_ATTR.search(open_tag)

        inner_start = start + len(open_tag)
        inner_end = max(inner_start, end - len(f'</{tag_name}>') if not open_tag.endswith('/>') else inner_start)
        inner = storage[inner_start:inner_end]
        inner_masked = masked[inner_start:inner_end]
        shallow = self._without_nested(inner, inner_start, spans, start, end)
        shallow_masked = self._without_nested(inner_masked, inner_start, spans, start, end)

        parameters = []
        for match in self.PARAMETER.finditer(shallow_masked):
            raw = shallow[match.start(2):match.end(2)] if match.group(2) is not None else ''
            parameters.append((match.group(1), self._parameter_value(raw)))

        body, body_kind = None, BodyKind.NONE
        plain = self.PLAIN_BODY.search(shallow_masked)
        if plain:
            body, body_kind = self._plain_text(shallow[plain.start(1):plain.end(1)]), BodyKind.PLAIN_TEXT
        else:
            rich_open = self.RICH_BODY_OPEN.search(inner_masked)
            if rich_open:
                rich_end = find_element_end(inner_masked, rich_open.start(), 'ac:rich-text-body')
                closing = '</ac:rich-text-body>'
                content_end = rich_end - len(closing) if inner_masked[:rich_end].lower().endswith(closing) else rich_end
                body, body_kind = inner[rich_open.end():content_end], BodyKind.RICH_HTML

        return MacroOccurrence(
            name=name_match.group(1).strip(),
            parameters=tuple(parameters),
            body=body,
            body_kind=body_kind,
            span=span,
            macro_id=id_match.group(1) if id_match else None,
            index=index,
        )

    @staticmethod
    def _without_nested(inner: str, inner_start: int, spans: Iterable[Tuple[int, int, str]],
                        outer_start: int, outer_end: int) -> str:
        """Remove nested macro elements so only this macro's own markup remains."""
        pieces = []
        cursor = inner_start
        for start, end, _ in spans:
            if start <= outer_start or end > outer_end or start < cursor:
                continue
            pieces.append(inner[cursor - inner_start:start - inner_start])
            cursor = end
        pieces.append(inner[cursor - inner_start:])
        return ''.join(pieces)

    @staticmethod
    def _parameter_value(raw: str) -> str:
        attachment = _RI_FILENAME_PATTERN.search(raw)
        if attachment:
            return html.unescape(attachment.group(1)).strip()
        return html.unescape(_TAG_PATTERN.sub('', raw)).strip()

    @staticmethod
    def _plain_text(raw: str) -> str:
        sections = _CDATA_PATTERN.findall(raw)
        if sections:
            return ''.join(sections)
        return html.unescape(raw)


class MacroParser:
    """Parses Confluence storage format into a flat list of macro occurrences.

    The parsing technique is an injected strategy: ``soup`` (structural) or
    ``regex`` (pattern matching). Both yield equivalent occurrences for
    well-formed input. Parsing is best-effort and never raises for a single
    bad macro.
    """

    STRATEGIES = {
        SoupParserStrategy.name: SoupParserStrategy,
        RegexParserStrategy.name: RegexParserStrategy,
    }

    def __init__(self, strategy: Optional[ParserStrategy] = None, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.converters.macroparser')
        self.strategy = strategy or SoupParserStrategy(self.logger)

    @classmethod
    def with_strategy(cls, name: str, logger: logging.Logger = None) -> 'MacroParser':
        """Create a parser from a strategy name (``soup`` or ``regex``)."""
        strategy_cls = cls.STRATEGIES.get(name)
        if strategy_cls is None:
            raise ValueError(f"Unknown parser strategy '{name}'. Must be one of: {sorted(cls.STRATEGIES)}")
        return cls(strategy_cls(logger), logger)

    def parse(self, storage: str) -> List[MacroOccurrence]:
        if not storage:
            return []
        occurrences = self.strategy.parse(storage)
        self.logger.debug(f"Parsed {len(occurrences)} macros with {self.strategy.name} strategy")
        return occurrences

    def find_macros_by_name(self, storage: str, names: Iterable[str]) -> List[MacroOccurrence]:
        wanted = {name.lower() for name in names}
        return [occ for occ in self.parse(storage) if occ.name.lower() in wanted]

    @staticmethod
    def get_attachment_reference(occurrence: MacroOccurrence) -> Optional[str]:
        """First non-empty attachment-like parameter, in priority order."""
        return occurrence.first_parameter(ATTACHMENT_PARAMETER_NAMES)


__all__ = [
    'MacroParser',
    'ParserStrategy',
    'SoupParserStrategy',
    'RegexParserStrategy',
    'ATTACHMENT_PARAMETER_NAMES',
    'find_element_end',
]
