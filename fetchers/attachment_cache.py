"""Prefetching of text attachments that hold diagram source."""

import logging
import sys
from collections.abc import Mapping
from typing import Dict, Iterator, List, Optional

import requests
from tqdm import tqdm

from errors import AttachmentDownloadError
from models import ConfluenceAttachment

logger = logging.getLogger('confluence_markdown_exporter.fetchers.attachmentcache')


DIAGRAM_EXTENSIONS = ('.mmd', '.mermaid')


def is_diagram_attachment(filename: str, media_type: Optional[str] = None) -> bool:
    """True for attachments that may carry diagram source text.

    Matches ``.mmd``/``.mermaid`` files, and extensionless ``text/plain``
    files such as the ones diagram plugins store their source in.
    """
    if not filename:
        return False
    if filename.lower().endswith(DIAGRAM_EXTENSIONS):
        return True
    media_type = (media_type or '').split(';')[0].strip().lower()
    return media_type == 'text/plain' and '.' not in filename


class AttachmentCache(Mapping):
    """Read-only mapping of attachment filename to decoded text."""

    def __init__(self, contents: Optional[Dict[str, str]] = None):
        self._contents = dict(contents or {})

    def __getitem__(self, filename: str) -> str:
        return self._contents[filename]

    def __iter__(self) -> Iterator[str]:
        return iter(self._contents)

    def __len__(self) -> int:
        return len(self._contents)

    def __repr__(self) -> str:
        return f"AttachmentCache({sorted(self._contents)})"


class AttachmentPrefetcher:
    """
    Downloads diagram-bearing attachments of a page before conversion.

    The returned cache is complete before any macro is resolved; a failed
    download is logged and simply leaves the file out of the cache.
    """

    def __init__(self, client, config: Optional[Dict] = None, logger: logging.Logger = None):
        self.client = client
        self.config = config or {}
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.fetchers.attachmentcache')
        self.stats = {'listed': 0, 'downloaded': 0, 'failed': 0}

    def prefetch(self, page_id: str,
                 attachments: Optional[List[ConfluenceAttachment]] = None) -> AttachmentCache:
        """
        Build the attachment cache for ``page_id``.

        Args:
            page_id: Page whose attachments are listed
            attachments: Already listed attachments (skips the listing call)

        Returns:
            AttachmentCache with the decoded text of every downloaded file
        """
        if attachments is None:
            attachments = self.list_attachments(page_id)

        candidates = [att for att in attachments if is_diagram_attachment(att.filename, att.media_type)]
        self.stats['listed'] += len(attachments)
        if not candidates:
            self.logger.debug(f"No diagram attachments on page {page_id}")
            return AttachmentCache()

        self.logger.info(f"Prefetching {len(candidates)} diagram attachment(s) for page {page_id}")

        contents = {}
        for attachment in self._progress(candidates, page_id):
            try:
                data = self.client.download_attachment(attachment.download_url, attachment.filename)
            except AttachmentDownloadError as e:
                self.logger.warning(f"Skipping attachment: {e}")
                self.stats['failed'] += 1
                continue
            contents[attachment.filename] = data.decode('utf-8', errors='replace')
            self.stats['downloaded'] += 1

        return AttachmentCache(contents)

    def list_attachments(self, page_id: str) -> List[ConfluenceAttachment]:
        """Attachments of ``page_id``; a failed listing yields an empty list."""
        try:
            results = self.client.get_attachments(page_id)
        except requests.exceptions.RequestException as e:
            self.logger.warning(f"Could not list attachments of page {page_id}: {e}")
            return []
        return [ConfluenceAttachment.from_api(data, page_id) for data in results]

    def _progress(self, attachments: List[ConfluenceAttachment], page_id: str):
        # Progress bars only on an interactive terminal
        return tqdm(
            attachments,
            desc=f"Attachments: {page_id}",
            leave=False,
            disable=not sys.stdout.isatty(),
        )


__all__ = ['AttachmentCache', 'AttachmentPrefetcher', 'is_diagram_attachment', 'DIAGRAM_EXTENSIONS']
