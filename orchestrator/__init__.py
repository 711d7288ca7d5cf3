"""
Orchestration package for coordinating import pipeline phases.

This package provides the orchestration layer that sequences the import
phases: Fetch → Parse → Render → Relocate images → Publish → Report.
"""

from .import_orchestrator import ImportOrchestrator
from .import_report import ImportReport

__all__ = [
    'ImportOrchestrator',
    'ImportReport'
]
