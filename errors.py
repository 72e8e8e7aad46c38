"""Exception hierarchy for the exporter.

Only document-level failures propagate to callers. Per-macro and
per-attachment problems are logged where they happen and degrade to notices.
"""

from typing import Any, Dict, Optional


class ConverterError(Exception):
    """Base exception carrying a machine-readable code."""

    code = 'CONVERTER_ERROR'

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': type(self).__name__,
            'code': self.code,
            'message': self.message,
            'details': dict(self.details),
        }


class MissingContentError(ConverterError):
    """A page lacks its storage or view representation."""

    code = 'MISSING_CONTENT'

    def __init__(self, page_id: str, missing: Optional[list] = None):
        super().__init__(
            f"Page {page_id} is missing required content formats (storage or view)",
            details={'page_id': page_id, 'missing': list(missing or [])}
        )
        self.page_id = page_id


class ConversionError(ConverterError):
    """Unexpected failure while converting a page."""

    code = 'CONVERSION_FAILED'

    def __init__(self, page_id: str, reason: str):
        super().__init__(
            f"Conversion failed for page {page_id}: {reason}",
            details={'page_id': page_id, 'reason': reason}
        )
        self.page_id = page_id


class HtmlProcessingError(ConverterError):
    """The view document could not be processed."""

    code = 'HTML_PROCESSING_FAILED'


class AttachmentDownloadError(ConverterError):
    """An attachment could not be downloaded."""

    code = 'ATTACHMENT_DOWNLOAD_FAILED'

    def __init__(self, filename: str, reason: str):
        super().__init__(
            f"Failed to download attachment '{filename}': {reason}",
            details={'filename': filename, 'reason': reason}
        )
        self.filename = filename


class FetcherError(ConverterError):
    """Page content could not be fetched from Confluence."""

    code = 'FETCH_FAILED'


__all__ = [
    'ConverterError',
    'MissingContentError',
    'ConversionError',
    'HtmlProcessingError',
    'AttachmentDownloadError',
    'FetcherError',
]
