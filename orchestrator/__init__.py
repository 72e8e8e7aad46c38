"""
Orchestration package for batch exports.

Sequences fetch → prefetch → convert → write for each page of an export.
"""

from .export_orchestrator import ExportOrchestrator

__all__ = [
    'ExportOrchestrator'
]
