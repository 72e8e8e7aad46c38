"""Exporters package for writing converted pages to disk."""

from .markdown_exporter import MarkdownExporter, sanitize_filename

__all__ = [
    'MarkdownExporter',
    'sanitize_filename',
]
