"""Writes converted documents and their assets to the output directory."""

import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from errors import AttachmentDownloadError
from models import ConfluenceAttachment, ConfluencePage, ConvertedDocument

logger = logging.getLogger('confluence_markdown_exporter.exporters.markdownexporter')


def sanitize_filename(title: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_.-]`` with ``_``."""
    sanitized = re.sub(r'[^A-Za-z0-9_.-]', '_', title or '')
    return sanitized or 'untitled'


class MarkdownExporter:
    """
    Writes Markdown documents to ``<output>/<SPACE>/<sanitized-title>.md``.

    Attachments, when requested, land in ``<output>/<SPACE>/<asset_directory>``
    so the ``./assets/<filename>`` links in the documents resolve.
    """

    def __init__(self, config: Dict[str, Any], logger: Optional[logging.Logger] = None,
                 output_dir: Optional[str] = None):
        """
        Initialize the markdown exporter.

        Args:
            config: Configuration dictionary with export settings
            logger: Logger instance
            output_dir: Optional output directory override (takes precedence over config)
        """
        self.config = config or {}
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.exporters.markdownexporter')

        export_config = self.config.get('export', {}) or {}
        self.output_directory = Path(output_dir) if output_dir else Path(export_config.get('output_directory', './exports'))
        self.asset_directory = export_config.get('asset_directory', 'assets').strip('/') or 'assets'

        self.stats = {
            'pages_written': 0,
            'attachments_saved': 0,
            'attachments_failed': 0,
        }
        self.exported_files: List[Path] = []
        self._stats_lock = threading.Lock()

    def page_path(self, page: ConfluencePage) -> Path:
        space = sanitize_filename(page.space_key or 'NO_SPACE')
        return self.output_directory / space / f"{sanitize_filename(page.title)}.md"

    def write(self, document: ConvertedDocument, page: ConfluencePage) -> Path:
        """
        Write ``document`` to disk and return its path.

        Raises:
            OSError: When the file cannot be written
        """
        path = self.page_path(page)
        path.parent.mkdir(parents=True, exist_ok=True)

        if path in self.exported_files:
            self.logger.warning(f"Two pages map to {path}; page {page.id} overwrites the earlier file")

        path.write_text(document.markdown, encoding='utf-8')
        self.exported_files.append(path)
        self.stats['pages_written'] += 1
        self.logger.info(f"Wrote page {page.id} to {path}")
        return path

    def save_attachments(self, page: ConfluencePage, attachments: List[ConfluenceAttachment], client,
                         attachment_cache: Optional[Mapping[str, str]] = None) -> int:
        """
        Download ``attachments`` into the page's asset directory.

        Failed downloads are logged and counted, never raised.

        Returns:
            Number of attachments saved
        """
        return self.write_attachments(page, self.download_attachments(page, attachments, client, attachment_cache))

    def download_attachments(self, page: ConfluencePage, attachments: List[ConfluenceAttachment], client,
                             attachment_cache: Optional[Mapping[str, str]] = None) -> List[Tuple[str, bytes]]:
        """
        Fetch attachment contents without touching the output directory.

        Files already held in ``attachment_cache`` are taken from it instead
        of being downloaded again.

        Returns:
            ``(filename, data)`` pairs for every attachment that could be read
        """
        attachment_cache = attachment_cache or {}
        files = []

        for attachment in attachments:
            cached = attachment_cache.get(attachment.filename)
            if cached is not None:
                files.append((attachment.filename, cached.encode('utf-8')))
                continue
            try:
                data = client.download_attachment(attachment.download_url, attachment.filename)
            except AttachmentDownloadError as e:
                self.logger.warning(f"Skipping attachment for page {page.id}: {e}")
                with self._stats_lock:
                    self.stats['attachments_failed'] += 1
                continue
            files.append((attachment.filename, data))

        return files

    def write_attachments(self, page: ConfluencePage, files: List[Tuple[str, bytes]]) -> int:
        """Write downloaded ``(filename, data)`` pairs into the page's asset directory."""
        asset_dir = self.page_path(page).parent / self.asset_directory

        for filename, data in files:
            asset_dir.mkdir(parents=True, exist_ok=True)
            target = asset_dir / Path(filename).name
            target.write_bytes(data)
            self.logger.debug(f"Saved attachment {filename} ({len(data)} bytes)")

        with self._stats_lock:
            self.stats['attachments_saved'] += len(files)
        return len(files)

    def get_stats(self) -> Dict[str, int]:
        """Get export statistics."""
        return self.stats.copy()


__all__ = ['MarkdownExporter', 'sanitize_filename']
