"""
Import report generator for summarizing a single Notion to note.com import.

This module turns an ImportResult into a report dictionary and formats it
for console display, JSON export, and CSV export.
"""

import csv
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from logger import format_elapsed
from models import ImportResult


class ImportReport:
    """Generates import reports from an ImportResult."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize import report generator.

        Args:
            logger: Optional logger instance
        """
        self.logger = logger or logging.getLogger('notion_note_importer.orchestrator.import_report')

    def generate_report(
        self,
        result: ImportResult,
        page_id: str,
        duration: float,
        title: Optional[str] = None,
        status: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Generate import report.

        Args:
            result: Outcome of the import
            page_id: Source Notion page ID
            duration: Import duration in seconds
            title: Optional note title
            status: Optional note status ("draft" or "published")

        Returns:
            Import report dictionary
        """
        stats = result.stats
        if stats.images_total > 0:
            image_success_rate = stats.images_success / stats.images_total
        else:
            image_success_rate = 1.0

        report = {
            'summary': {
                'success': result.success,
                'page_id': page_id,
                'note_id': result.note_id,
                'title': title,
                'status': status,
                'duration_seconds': duration,
                'duration_formatted': format_elapsed(duration),
                'image_success_rate': image_success_rate,
                'total_warnings': len(result.warnings),
            },
            'stats': stats.to_dict(),
            'warnings': list(result.warnings),
            'error': {'message': result.error, 'code': result.error_code} if result.error else None,
            'timestamp': datetime.now().isoformat(),
        }

        self.logger.info(
            f"Report generated: {stats.converted_blocks}/{stats.total_blocks} blocks, "
            f"{stats.images_success}/{stats.images_total} images, {len(result.warnings)} warnings"
        )
        return report

    def format_console_report(self, report: Dict[str, Any]) -> str:
        """
        Format report for console display.

        Args:
            report: Import report dictionary

        Returns:
            Formatted console string
        """
        sections = []

        sections.append("=" * 60)
        sections.append("IMPORT REPORT")
        sections.append("=" * 60)
        sections.append("")

        summary = report.get('summary', {})
        sections.append("Summary:")
        sections.append(f"  Page:     {summary.get('page_id', 'unknown')}")
        if summary.get('title'):
            sections.append(f"  Title:    {summary['title']}")
        sections.append(f"  Result:   {'SUCCESS' if summary.get('success') else 'FAILED'}")
        if summary.get('note_id'):
            sections.append(f"  Note ID:  {summary['note_id']} ({summary.get('status') or 'draft'})")
        sections.append(f"  Duration: {summary.get('duration_formatted', '0s')}")
        sections.append("")

        stats = report.get('stats', {})
        sections.append("Blocks:")
        sections.append("-" * 60)
        sections.append(
            f"  {stats.get('total_blocks', 0)} total, "
            f"{stats.get('converted_blocks', 0)} converted, "
            f"{stats.get('skipped_blocks', 0)} skipped"
        )
        sections.append("")

        sections.append("Images:")
        sections.append("-" * 60)
        sections.append(
            f"  {stats.get('images_total', 0)} total, "
            f"{stats.get('images_success', 0)} uploaded, "
            f"{stats.get('images_failed', 0)} failed"
        )
        if stats.get('images_total', 0) > 0:
            sections.append(f"  Success:  {summary.get('image_success_rate', 0) * 100:.1f}%")
        sections.append("")

        warnings = report.get('warnings') or []
        if warnings:
            sections.append(f"Warnings ({len(warnings)}):")
            sections.append("-" * 60)
            for warning in warnings[:10]:
                sections.append(f"  - {warning}")
            if len(warnings) > 10:
                sections.append(f"  ... and {len(warnings) - 10} more")
            sections.append("")

        error = report.get('error')
        if error:
            sections.append("Error:")
            sections.append("-" * 60)
            sections.append(f"  [{error.get('code') or 'UNKNOWN'}] {error.get('message')}")
            sections.append("")

        sections.append("=" * 60)
        return "\n".join(sections)

    def export_json_report(self, report: Dict[str, Any], filepath: str) -> None:
        """
        Export report to JSON file.

        Args:
            report: Import report dictionary
            filepath: Output file path
        """
        try:
            with open(filepath, 'w', encoding='utf-8') as f:
                json.dump(report, f, indent=2, ensure_ascii=False, default=str)

            self.logger.info(f"JSON report exported to {filepath}")

        except OSError as e:
            self.logger.error(f"Failed to export JSON report: {str(e)}")

    def export_csv_summary(self, report: Dict[str, Any], filepath: str) -> None:
        """
        Export summary statistics to CSV.

        Args:
            report: Import report dictionary
            filepath: Output file path
        """
        rows = [('metric', 'value')]
        rows.extend((key, value) for key, value in report.get('summary', {}).items())
        rows.extend((key, value) for key, value in report.get('stats', {}).items())

        try:
            with open(filepath, 'w', encoding='utf-8', newline='') as f:
                csv.writer(f).writerows(rows)

            self.logger.info(f"CSV summary exported to {filepath}")

        except OSError as e:
            self.logger.error(f"Failed to export CSV summary: {str(e)}")


__all__ = ['ImportReport']
