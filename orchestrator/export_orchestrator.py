"""
Export orchestrator for batch conversion of Confluence pages.

Sequences fetch → attachment prefetch → convert → write for every page,
running pages concurrently on a bounded thread pool. Each page gets its
own placeholder registry inside PageConverter; the only state shared
between workers is the client session and the exporter, which is guarded
by a lock.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional

from converters import PageConverter
from errors import ConverterError
from exporters import MarkdownExporter
from fetchers import AttachmentPrefetcher, PageFetcher
from logger import ProgressTracker, log_section

logger = logging.getLogger('confluence_markdown_exporter.orchestrator')


class ExportOrchestrator:
    """Central coordinator for exporting a set of pages to Markdown."""

    def __init__(
        self,
        config: Dict[str, Any],
        client=None,
        page_fetcher: Optional[PageFetcher] = None,
        prefetcher: Optional[AttachmentPrefetcher] = None,
        converter: Optional[PageConverter] = None,
        exporter: Optional[MarkdownExporter] = None,
        logger: Optional[logging.Logger] = None,
        dry_run: bool = False
    ):
        """
        Initialize export orchestrator.

        Args:
            config: Configuration dictionary
            client: ConfluenceClient used by the default fetcher and prefetcher
            page_fetcher: Optional page fetcher override
            prefetcher: Optional attachment prefetcher override
            converter: Optional page converter override
            exporter: Optional exporter override
            logger: Optional logger instance
            dry_run: Convert pages without writing files
        """
        self.config = config or {}
        self.client = client
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.orchestrator')
        self.dry_run = dry_run

        self.page_fetcher = page_fetcher or PageFetcher(client, self.config, self.logger)
        self.prefetcher = prefetcher or AttachmentPrefetcher(client, self.config, self.logger)
        self.converter = converter or PageConverter(self.config, self.logger)
        self.exporter = exporter or MarkdownExporter(self.config, self.logger)

        export_config = self.config.get('export', {}) or {}
        self.include_attachments = export_config.get('include_attachments', False)
        self.max_workers = max(1, int((self.config.get('advanced', {}) or {}).get('max_workers', 5)))

        self._write_lock = threading.Lock()

    def export_space(self, space_key: str) -> Dict[str, Any]:
        """Export every page of ``space_key``."""
        log_section(f"Space {space_key}")
        page_ids = self.page_fetcher.fetch_space_page_ids(space_key)
        return self.export_pages(page_ids)

    def export_pages(self, page_ids: List[str]) -> Dict[str, Any]:
        """
        Export the given pages.

        Args:
            page_ids: Confluence page ids

        Returns:
            Report dictionary with ``exported``, ``failed``, ``errors``,
            ``macro_totals``, ``warnings``, ``files`` and ``duration``
        """
        log_section("Export")
        start_time = time.time()

        report = {
            'exported': 0,
            'failed': 0,
            'errors': [],
            'warnings': {},
            'files': [],
            'macro_totals': {'mermaid': 0, 'code': 0, 'diagrams': 0, 'panels': 0, 'toc': 0},
            'dry_run': self.dry_run,
        }
        if not page_ids:
            self.logger.warning("No pages to export")
            report['duration'] = 0.0
            return report

        self.logger.info(f"Exporting {len(page_ids)} page(s) with {self.max_workers} worker(s)")

        with ProgressTracker(total_items=len(page_ids), item_type='pages') as tracker:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {executor.submit(self.export_page, page_id): page_id for page_id in page_ids}
                for future in as_completed(futures):
                    page_id = futures[future]
                    try:
                        result = future.result()
                    except ConverterError as e:
                        self.logger.error(f"Page {page_id} failed: {e}")
                        report['failed'] += 1
                        report['errors'].append({'page_id': page_id, **e.to_dict()})
                        tracker.increment(success=False)
                        continue
                    except Exception as e:
                        self.logger.error(f"Page {page_id} failed unexpectedly: {e}", exc_info=True)
                        report['failed'] += 1
                        report['errors'].append({
                            'page_id': page_id,
                            'name': type(e).__name__,
                            'code': 'UNEXPECTED_ERROR',
                            'message': str(e),
                            'details': {},
                        })
                        tracker.increment(success=False)
                        continue

                    report['exported'] += 1
                    for key, value in result['macro_counts'].items():
                        report['macro_totals'][key] = report['macro_totals'].get(key, 0) + value
                    if result['warnings']:
                        report['warnings'][page_id] = result['warnings']
                    if result['path']:
                        report['files'].append(result['path'])
                    tracker.increment(success=True)

        report['duration'] = time.time() - start_time
        self.logger.info(
            f"Export complete: {report['exported']} exported, {report['failed']} failed "
            f"in {report['duration']:.1f}s"
        )
        return report

    def export_page(self, page_id: str) -> Dict[str, Any]:
        """
        Fetch, convert and write a single page.

        Raises:
            ConverterError: For fetch failures and document-fatal conversion errors
        """
        page = self.page_fetcher.fetch_page(page_id)

        # Prefetch must finish before conversion starts
        attachments = self.prefetcher.list_attachments(page.id)
        attachment_cache = self.prefetcher.prefetch(page.id, attachments)

        document = self.converter.convert(page, attachment_cache)

        path = None
        if self.dry_run:
            self.logger.info(f"[dry-run] Would write page {page.id} to {self.exporter.page_path(page)}")
        else:
            files = []
            if self.include_attachments and attachments:
                files = self.exporter.download_attachments(page, attachments, self.client, attachment_cache)
            with self._write_lock:
                path = str(self.exporter.write(document, page))
                if files:
                    self.exporter.write_attachments(page, files)

        return {
            'page_id': page.id,
            'path': path,
            'macro_counts': dict(document.macro_counts),
            'warnings': list(document.warnings),
        }


__all__ = ['ExportOrchestrator']
