"""Injects placeholder tokens into view-format HTML in place of macro containers."""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from errors import HtmlProcessingError

from .placeholder_registry import PlaceholderRegistry, RegistryEntry

logger = logging.getLogger('confluence_markdown_exporter.converters.viewinjector')


PLACEHOLDER_ATTRIBUTE = 'data-macro-placeholder'

# Non-content elements rendered by Confluence around the page body
CHROME_SELECTORS = [
    'script',
    'style',
    'iframe[src*="stratus-addons"]',
    '.confluence-information-macro-icon',
    '.expand-control',
    '.page-metadata',
    '.footer-body',
    '#action-menu',
    '.like-button',
    '.watch-button',
    '.apple-interchange-newline',
    '.comment-thread',
    '.navmenu',
    '.plugin_pagetree',
]

UNSAFE_TAGS = ['object', 'embed']


def _macro_name_selectors(*names: str) -> List[str]:
    return [f'[data-macro-name="{name}"]' for name in names]


# View containers rendered for each macro family, in document order
FAMILY_SELECTORS = {
    'mermaid': _macro_name_selectors('mermaid', 'mermaid-cloud', 'mermaid-macro') + [
        '.mermaid-macro-container',
        'div.mermaid',
    ],
    'code': _macro_name_selectors('code', 'html', 'xml', 'sql') + [
        'div.code.panel',
        'div.code.pdl',
        '.code-macro',
    ],
    'noformat': _macro_name_selectors('noformat', 'preformatted') + [
        'div.preformatted',
        '.noformat',
    ],
    'diagram': _macro_name_selectors('drawio', 'gliffy', 'lucidchart', 'plantuml') + [
        '.drawio-macro',
        '.gliffy-container',
        '.lucidchart-macro',
    ],
    'toc': _macro_name_selectors('toc') + [
        '.toc-macro',
        '.client-side-toc-macro',
    ],
    'status': _macro_name_selectors('status') + [
        '.status-macro',
    ],
    'panel': _macro_name_selectors('info', 'warning', 'note', 'tip', 'expand') + [
        'div.confluence-information-macro',
        'div.expand-container',
    ],
}

# Panels go last so containers nested inside them are matched first
INJECTION_ORDER = ['mermaid', 'code', 'noformat', 'diagram', 'toc', 'status', 'panel']

INTERNAL_LINK_MARKERS = ('/wiki/spaces/', '/pages/', '/display/', 'viewpage.action')
ATTACHMENT_LINK_MARKERS = ('/download/attachments/', '/download/thumbnails/')
IMAGE_SOURCE_MARKERS = ('/download/', '/attachments/')

PAGE_ID_PATTERNS = [
    re.compile(r'/pages/viewpage\.action\?(?:.*&)?pageId=(\d+)'),
    re.compile(r'/pages/(\d+)'),
    re.compile(r'/display/[^/]+/(\d+)'),
    re.compile(r'/spaces/[^/]+/(\d+)'),
]

EMOTICON_MAP = {
    'smile': '😊',
    'sad': '😢',
    'wink': '😉',
    'laugh': '😄',
    'cheeky': '😏',
    'thumbs-up': '👍',
    'thumbs-down': '👎',
    'information': 'ℹ️',
    'warning': '⚠️',
    'error': '❌',
    'tick': '✅',
    'cross': '❌',
    'lightbulb-on': '💡',
    'lightbulb': '💡',
    'star': '⭐',
}


def extract_page_id(href: str) -> Optional[str]:
    """Extract a Confluence page id from a page URL."""
    for pattern in PAGE_ID_PATTERNS:
        match = pattern.search(href)
        if match:
            return match.group(1)
    return None


def attachment_filename(url: str) -> str:
    """Percent-decoded last path segment of an attachment URL."""
    path = urlparse(url).path
    return unquote(path.rstrip('/').rsplit('/', 1)[-1])


class ViewInjector:
    """Prepares view-format HTML for Markdown rendering.

    Removes Confluence chrome, tags links, images and tables for the
    renderer, and swaps each macro container for an inline-code element
    holding ``{{TOKEN}}``. Containers are correlated with registry entries
    by macro id when both sides carry one, then by order within a family.
    """

    def __init__(self, config: Dict[str, Any] = None, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.converters.viewinjector')
        self.config = config or {}
        self.match_by_macro_id = self.config.get('match_by_macro_id', True)
        self.stats = {}

    def inject(self, view_html: str, registry: PlaceholderRegistry) -> str:
        """Return the cleaned view HTML with placeholders injected."""
        try:
            soup = BeautifulSoup(view_html, 'lxml')
        except Exception as e:
            raise HtmlProcessingError(f"Could not parse view HTML: {e}") from e

        self.stats = {'injected': 0, 'absorbed': 0, 'unmatched_tokens': 0, 'unmatched_containers': 0}

        self._remove_chrome(soup)
        self._sanitize(soup)
        self._process_emoticons(soup)
        self._tag_links(soup)
        self._tag_images(soup)
        self._tag_tables(soup)

        for family in INJECTION_ORDER:
            entries = registry.entries(family)
            if not entries:
                continue
            containers = self._find_containers(soup, family)
            self._inject_family(soup, family, entries, containers, registry)

        self._cleanup_artifacts(soup)

        self.logger.debug(f"View injection: {self.stats}")
        body = soup.body
        return body.decode_contents() if body is not None else str(soup)

    def _remove_chrome(self, soup: BeautifulSoup) -> None:
        removed = 0
        for element in soup.select(', '.join(CHROME_SELECTORS)):
            if not element.decomposed:
                element.decompose()
                removed += 1
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()
        if removed:
            self.logger.debug(f"Removed {removed} chrome elements")

    def _sanitize(self, soup: BeautifulSoup) -> None:
        for element in soup.find_all(UNSAFE_TAGS):
            element.decompose()
        for element in soup.find_all(True):
            for attr in [attr for attr in element.attrs if attr.lower().startswith('on')]:
                del element[attr]

    def _process_emoticons(self, soup: BeautifulSoup) -> None:
        """Replace emoticon images with emoji or their alt text."""
        for img in soup.find_all('img', class_='emoticon'):
            src = img.get('src', '')
            alt = img.get('alt', '')
            name = ''
            match = re.search(r'/([^/]+)\.(?:svg|png|gif)$', src)
            if match:
                name = match.group(1)
            img.replace_with(EMOTICON_MAP.get(name, alt or f':{name or "emoticon"}:'))

    def _tag_links(self, soup: BeautifulSoup) -> None:
        for a in soup.find_all('a', href=True):
            href = a['href']
            if any(marker in href for marker in ATTACHMENT_LINK_MARKERS):
                a['data-attachment-link'] = 'true'
                a['data-attachment-filename'] = attachment_filename(href)
            elif any(marker in href for marker in INTERNAL_LINK_MARKERS):
                a['data-confluence-link'] = 'true'
                page_id = extract_page_id(href) or a.get('data-linked-resource-id')
                if page_id:
                    a['data-page-id'] = page_id

    def _tag_images(self, soup: BeautifulSoup) -> None:
        for img in soup.find_all('img', src=True):
            src = img['src']
            if not any(marker in src for marker in IMAGE_SOURCE_MARKERS):
                continue
            img['data-confluence-image'] = 'true'
            img['data-original-src'] = src
            img['data-attachment-filename'] = (
                img.get('data-linked-resource-default-alias') or attachment_filename(src)
            )

    def _tag_tables(self, soup: BeautifulSoup) -> None:
        for table in soup.find_all('table'):
            table['data-confluence-table'] = 'true'

    def _find_containers(self, soup: BeautifulSoup, family: str) -> List[Tag]:
        """Outermost elements matching the family selectors, in document order."""
        matches = soup.select(', '.join(FAMILY_SELECTORS[family]))
        selected = {id(element) for element in matches}
        containers = []
        for element in matches:
            if any(id(parent) in selected for parent in element.parents):
                continue
            if element.has_attr(PLACEHOLDER_ATTRIBUTE):
                continue
            containers.append(element)
        return containers

    def _correlate(self, entries: List[RegistryEntry],
                   containers: List[Tag]) -> Tuple[List[Tuple[RegistryEntry, Tag]], List[RegistryEntry], List[Tag]]:
        pairs = []
        remaining_entries = list(entries)
        remaining_containers = list(containers)

        if self.match_by_macro_id:
            by_id = {}
            for container in containers:
                macro_id = container.get('data-macro-id')
                if macro_id and macro_id not in by_id:
                    by_id[macro_id] = container
            remaining_entries = []
            used = set()
            for entry in entries:
                container = by_id.get(entry.content.macro_id) if entry.content.macro_id else None
                if container is not None and id(container) not in used:
                    pairs.append((entry, container))
                    used.add(id(container))
                else:
                    remaining_entries.append(entry)
            remaining_containers = [c for c in containers if id(c) not in used]

        for entry, container in zip(remaining_entries, remaining_containers):
            pairs.append((entry, container))

        count = min(len(remaining_entries), len(remaining_containers))
        return pairs, remaining_entries[count:], remaining_containers[count:]

    def _inject_family(self, soup: BeautifulSoup, family: str, entries: List[RegistryEntry],
                       containers: List[Tag], registry: PlaceholderRegistry) -> None:
        pairs, unmatched_entries, unmatched_containers = self._correlate(entries, containers)

        if unmatched_entries or unmatched_containers:
            self.logger.warning(
                f"{family} macros: {len(entries)} in storage, {len(containers)} in view; "
                f"{len(unmatched_entries)} token(s) left without a container"
            )
        self.stats['unmatched_tokens'] += len(unmatched_entries)
        self.stats['unmatched_containers'] += len(unmatched_containers)

        for entry, container in pairs:
            absorbed_tokens = {inner[PLACEHOLDER_ATTRIBUTE]
                               for inner in container.find_all(attrs={PLACEHOLDER_ATTRIBUTE: True})}
            for absorbed in sorted(absorbed_tokens):
                self.logger.debug(f"Placeholder {absorbed} absorbed by enclosing {family} macro")
                registry.discard(absorbed)
                self.stats['absorbed'] += 1
            container.replace_with(self._placeholder_element(soup, entry))
            self.stats['injected'] += 1

    @staticmethod
    def _placeholder_element(soup: BeautifulSoup, entry: RegistryEntry) -> Tag:
        code = soup.new_tag('code')
        code[PLACEHOLDER_ATTRIBUTE] = entry.token
        code.string = f'{{{{{entry.token}}}}}'
        if entry.content.is_inline:
            return code
        paragraph = soup.new_tag('p')
        paragraph[PLACEHOLDER_ATTRIBUTE] = entry.token
        paragraph.append(code)
        return paragraph

    def _cleanup_artifacts(self, soup: BeautifulSoup) -> None:
        """Remove leftover script fragments and empty blocks."""
        for text in soup.find_all(string=re.compile(r'//\s*<!\[CDATA\[|\]\]>')):
            if isinstance(text, NavigableString) and text.parent and text.parent.name not in ('pre', 'code'):
                cleaned = re.sub(r'//\s*<!\[CDATA\[.*?//\s*\]\]>', '', str(text), flags=re.DOTALL)
                text.replace_with(cleaned)

        removed = 0
        for element in soup.find_all(['p', 'div']):
            if element.find(True) or element.get_text(strip=True):
                continue
            element.decompose()
            removed += 1
        if removed:
            self.logger.debug(f"Removed {removed} empty elements")


__all__ = [
    'ViewInjector',
    'FAMILY_SELECTORS',
    'CHROME_SELECTORS',
    'INJECTION_ORDER',
    'PLACEHOLDER_ATTRIBUTE',
    'extract_page_id',
    'attachment_filename',
]
