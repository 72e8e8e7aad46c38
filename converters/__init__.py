"""Converters package for Confluence storage + view to Markdown conversion."""

import logging

from .macro_extractor import MacroExtractor
from .macro_parser import MacroParser
from .markdown_converter import MarkdownConverter
from .page_converter import PageConverter
from .placeholder_registry import PlaceholderRegistry
from .placeholder_resolver import PlaceholderResolver
from .view_injector import ViewInjector

logger = logging.getLogger('confluence_markdown_exporter.converters')


def convert_page(page, attachment_cache=None, config=None, logger=None):
    """
    Convenience function to convert a ConfluencePage to Markdown.

    This runs the full placeholder pipeline:
    1. Storage macros parsed and resolved against the attachment cache
    2. Placeholder tokens injected into the view HTML
    3. Markdown generation using markdownify
    4. Token substitution and table of contents generation
    5. YAML frontmatter and whitespace cleanup

    Args:
        page: ConfluencePage with ``storage`` and ``view`` bodies
        attachment_cache: Optional mapping of attachment filename to text
        config: Optional configuration dictionary
        logger: Optional logger instance (uses module logger if not provided)

    Returns:
        ConvertedDocument

    Example:
        >>> from converters import convert_page
        >>> from models import ConfluencePage
        >>> page = ConfluencePage(id='123', title='Test', space_key='DEMO',
        ...                       storage='<p>Hi</p>', view='<p>Hi</p>')
        >>> document = convert_page(page)
        >>> print(document.markdown)
    """
    if logger is None:
        logger = logging.getLogger('confluence_markdown_exporter.converters')

    converter = PageConverter(config=config, logger=logger)
    return converter.convert(page, attachment_cache)


__all__ = [
    'convert_page',
    'PageConverter',
    'MacroParser',
    'MacroExtractor',
    'PlaceholderRegistry',
    'ViewInjector',
    'MarkdownConverter',
    'PlaceholderResolver',
]
