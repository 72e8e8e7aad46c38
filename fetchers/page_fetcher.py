"""Retrieves pages with both storage and view bodies."""

import logging
from typing import Any, Dict, List, Optional

from models import ConfluencePage

logger = logging.getLogger('confluence_markdown_exporter.fetchers.pagefetcher')


PAGE_EXPAND = [
    'body.storage',
    'body.view',
    'version',
    'history',
    'space',
    'ancestors',
    'metadata.labels',
]


class PageFetcher:
    """Fetches pages through a ConfluenceClient and builds ConfluencePage objects."""

    def __init__(self, client, config: Dict[str, Any] = None, logger: logging.Logger = None):
        self.client = client
        self.config = config or {}
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.fetchers.pagefetcher')
        self.base_url = (self.config.get('confluence', {}) or {}).get('base_url') or getattr(client, 'base_url', None)

    def fetch_page(self, page_id: str, expand: Optional[List[str]] = None) -> ConfluencePage:
        """
        Fetch one page with storage and view bodies and its metadata.

        Raises:
            FetcherError: When the page cannot be retrieved
        """
        self.logger.debug(f"Fetching page {page_id}")
        data = self.client.get_page(page_id, expand=expand or PAGE_EXPAND)
        page = ConfluencePage.from_api(data, base_url=self.base_url)
        if not page.has_required_content:
            self.logger.warning(f"Page {page_id} came back without storage or view body")
        return page

    def fetch_space_page_ids(self, space_key: str) -> List[str]:
        """Ids of every page in ``space_key``."""
        return self.client.get_space_page_ids(space_key)


__all__ = ['PageFetcher', 'PAGE_EXPAND']
