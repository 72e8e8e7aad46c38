"""Markdown rendering rules for injected Confluence view HTML."""

import logging
import re
from typing import Any, Dict
from urllib.parse import unquote

from bs4 import NavigableString, Tag
from markdownify import MarkdownConverter as MarkdownifyConverter

from .view_injector import PLACEHOLDER_ATTRIBUTE, attachment_filename

logger = logging.getLogger('confluence_markdown_exporter.converters.markdownconverter')


class MarkdownConverter(MarkdownifyConverter):
    """
    Renders view HTML to Markdown with rules tuned for Confluence idioms.

    This class extends markdownify.MarkdownConverter to provide:
    - Attachment images and links rewritten to the local asset directory
    - Internal page links annotated with their page id
    - Rectangular tables built from the row and cell structure
    - Placeholder elements passed through untouched
    """

    def __init__(self, logger: logging.Logger = None, config: Dict[str, Any] = None, **kwargs):
        """Initialize markdown converter with logger and configuration."""
        self.config = config or {}

        # Setup converter options
        markdownify_options = {
            'heading_style': self.config.get('heading_style', 'ATX'),
            'bullets': '-',
            'escape_asterisks': False,
            'escape_underscores': False,
            'escape_misc': False,
            'wrap': False,
        }
        markdownify_options.update(kwargs)
        super().__init__(**markdownify_options)

        self.logger = logger or logging.getLogger('confluence_markdown_exporter.converters.markdownconverter')
        self.asset_directory = self.config.get('asset_directory', 'assets').strip('/') or 'assets'

    def convert_html(self, html: str) -> str:
        """Render an HTML fragment to Markdown."""
        self.logger.debug("Rendering view HTML to markdown")
        return self.convert(html)

    def asset_link(self, filename: str) -> str:
        """Relative asset target, angle-bracket wrapped so spaces and parentheses survive."""
        return f'<./{self.asset_directory}/{unquote(filename)}>'

    def convert_code(self, el, text, parent_tags=None, **kwargs):
        """Handle inline code, keeping placeholder tokens verbatim."""
        if el.has_attr(PLACEHOLDER_ATTRIBUTE):
            return f"`{{{{{el[PLACEHOLDER_ATTRIBUTE]}}}}}`"

        parent = el.parent
        if parent and parent.name == 'pre':
            return text

        if not text:
            return ''
        return f"`{text}`"

    def convert_pre(self, el, text, parent_tags=None, **kwargs):
        """Handle pre elements left over outside of code macros."""
        language = ''
        params = el.get('data-syntaxhighlighter-params', '')
        if params:
            language = self._parse_syntaxhighlighter_language(params)

        code_text = el.get_text().strip('\n')
        if not code_text.strip():
            return ''
        if language == 'text':
            language = ''
        return f"\n\n```{language}\n{code_text}\n```\n\n"

    def convert_img(self, el, text, parent_tags=None, **kwargs):
        """Handle images, pointing attachment images at the asset directory."""
        alt = el.get('alt', '') or el.get('title', '')
        src = el.get('src', '')

        if el.get('data-confluence-image'):
            filename = el.get('data-attachment-filename') or attachment_filename(src)
            markdown = f'![{alt}]({self.asset_link(filename)})'
            width = el.get('width') or el.get('data-width')
            height = el.get('height') or el.get('data-height')
            if width and height:
                markdown += f'<!-- Size: {width}x{height} -->'
            return markdown

        if not src:
            return alt
        return f'![{alt}]({src})'

    def convert_a(self, el, text, parent_tags=None, **kwargs):
        """Handle links, annotating internal links and localizing attachment links."""
        href = el.get('href', '')
        label = text.strip() or href

        if el.get('data-attachment-link'):
            filename = el.get('data-attachment-filename') or attachment_filename(href)
            return f'[{label or filename}]({self.asset_link(filename)})'

        if el.get('data-confluence-link'):
            markdown = f'[{label}]({href})'
            page_id = el.get('data-page-id')
            if page_id:
                markdown += f'<!-- Confluence Page ID: {page_id} -->'
            return markdown

        return super().convert_a(el, text, parent_tags=parent_tags if parent_tags is not None else set(), **kwargs)

    def convert_span(self, el, text, parent_tags=None, **kwargs):
        """Handle span elements, including Confluence anchors."""
        classes = el.get('class', [])

        if 'confluence-anchor-link' in classes:
            anchor_id = el.get('id', '')
            if anchor_id:
                return f'<a id="{anchor_id}"></a>'
            return ''

        return text

    def convert_blockquote(self, el, text, parent_tags=None, **kwargs):
        """Handle blockquotes."""
        text = text.strip()
        if not text:
            return ''

        quoted_lines = []
        for line in text.split('\n'):
            if line.startswith('>'):
                quoted_lines.append(f'>{line}')
            else:
                quoted_lines.append(f'> {line}' if line.strip() else '>')

        return '\n\n' + '\n'.join(quoted_lines) + '\n\n'

    def convert_table(self, el, text, parent_tags=None, **kwargs):
        """Build the table from its rows so irregular rows come out rectangular."""
        rows = [row for row in el.find_all('tr') if row.find_parent('table') is el]
        grid = []
        for row in rows:
            cells = row.find_all(['th', 'td'], recursive=False)
            if cells:
                grid.append([self._get_cell_text(cell) for cell in cells])

        if not grid:
            return ''

        columns = max(len(row) for row in grid)
        padded = [row + [' '] * (columns - len(row)) for row in grid]
        if any(len(row) < columns for row in grid):
            self.logger.debug(f"Padded irregular table rows to {columns} columns")

        markdown_rows = ['| ' + ' | '.join(padded[0]) + ' |']
        markdown_rows.append('| ' + ' | '.join('---' for _ in range(columns)) + ' |')
        for row in padded[1:]:
            markdown_rows.append('| ' + ' | '.join(row) + ' |')

        return '\n\n' + '\n'.join(markdown_rows) + '\n\n'

    def _get_cell_text(self, cell: Tag) -> str:
        """Render a table cell on a single line."""
        text = ''.join(self._render_cell_node(child) for child in cell.children)
        text = re.sub(r'[ \t]+', ' ', text)
        text = re.sub(r'\s*<br>\s*', '<br>', text)
        text = re.sub(r'(<br>)+', '<br>', text)
        text = re.sub(r'^(<br>)+|(<br>)+$', '', text.strip())
        text = text.replace('|', '\\|')
        return text.strip() or ' '

    def _render_cell_node(self, node) -> str:
        if isinstance(node, NavigableString):
            return str(node).replace('\n', ' ')
        if not isinstance(node, Tag):
            return ''

        if node.has_attr(PLACEHOLDER_ATTRIBUTE) and node.name == 'code':
            return f"`{{{{{node[PLACEHOLDER_ATTRIBUTE]}}}}}`"
        if node.name == 'br':
            return '<br>'
        if node.name in ('code', 'pre'):
            lines = [line.rstrip() for line in node.get_text().split('\n') if line.strip()]
            return '<br>'.join(f'`{line}`' for line in lines)
        if node.name == 'img':
            return self.convert_img(node, '')
        if node.name == 'a':
            return self.convert_a(node, self._render_children(node).strip())

        inner = self._render_children(node)
        if node.name in ('strong', 'b'):
            return f'**{inner.strip()}**' if inner.strip() else ''
        if node.name in ('em', 'i'):
            return f'*{inner.strip()}*' if inner.strip() else ''
        if node.name in ('p', 'div', 'li') or re.match(r'h[1-6]$', node.name):
            return f'{inner.strip()}<br>' if inner.strip() else ''
        if node.name in ('ul', 'ol'):
            items = [self._render_children(li).strip() for li in node.find_all('li', recursive=False)]
            return '<br>'.join(f'• {item}' for item in items if item) + '<br>'
        return inner

    def _render_children(self, node: Tag) -> str:
        return ''.join(self._render_cell_node(child) for child in node.children)

    def _parse_syntaxhighlighter_language(self, params: str) -> str:
        """Parse language from syntaxhighlighter params string."""
        for param in params.split(';'):
            param = param.strip()
            if param.startswith('brush:'):
                language = param.replace('brush:', '').strip()
                language_map = {
                    'bash': 'bash',
                    'shell': 'bash',
                    'sh': 'bash',
                    'py': 'python',
                    'js': 'javascript',
                    'yml': 'yaml',
                    'plain': 'text',
                }
                return language_map.get(language.lower(), language.lower())
        return ''


__all__ = ['MarkdownConverter']
