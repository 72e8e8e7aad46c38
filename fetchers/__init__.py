"""Fetchers package for retrieving Confluence pages and attachments."""

from .attachment_cache import AttachmentCache, AttachmentPrefetcher, is_diagram_attachment
from .page_fetcher import PAGE_EXPAND, PageFetcher

__all__ = [
    'AttachmentCache',
    'AttachmentPrefetcher',
    'is_diagram_attachment',
    'PageFetcher',
    'PAGE_EXPAND',
]
