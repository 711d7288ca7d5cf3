"""Tests for import report generation and export."""

import csv
import json
import os
import tempfile
import unittest

from models import ImportResult, ImportStats
from orchestrator import ImportReport


def stats(**values):
    defaults = dict(total_blocks=10, converted_blocks=9, skipped_blocks=1,
                    images_total=3, images_success=2, images_failed=1)
    defaults.update(values)
    return ImportStats(**defaults)


class TestImportReport(unittest.TestCase):
    def setUp(self):
        self.reporter = ImportReport()
        self.success = ImportResult(
            success=True,
            stats=stats(),
            note_id='123',
            warnings=('Failed to upload image b.png: Storage upload failed: 403',),
        )

    def test_generate_report(self):
        report = self.reporter.generate_report(self.success, 'page-1', 75.0, title='Doc', status='draft')

        summary = report['summary']
        self.assertTrue(summary['success'])
        self.assertEqual(summary['note_id'], '123')
        self.assertEqual(summary['duration_formatted'], '1m 15s')
        self.assertAlmostEqual(summary['image_success_rate'], 2 / 3)
        self.assertEqual(summary['total_warnings'], 1)
        self.assertEqual(report['stats']['images_failed'], 1)
        self.assertIsNone(report['error'])

    def test_failure_report(self):
        result = ImportResult(success=False, stats=stats(images_total=0), error='Page not found', error_code='PAGE_NOT_FOUND')

        report = self.reporter.generate_report(result, 'page-1', 0.4)
        console = self.reporter.format_console_report(report)

        self.assertEqual(report['error'], {'message': 'Page not found', 'code': 'PAGE_NOT_FOUND'})
        self.assertEqual(report['summary']['image_success_rate'], 1.0)
        self.assertIn('FAILED', console)
        self.assertIn('[PAGE_NOT_FOUND] Page not found', console)

    def test_console_report(self):
        report = self.reporter.generate_report(self.success, 'page-1', 2.0, title='Doc', status='published')

        console = self.reporter.format_console_report(report)

        self.assertIn('IMPORT REPORT', console)
        self.assertIn('SUCCESS', console)
        self.assertIn('123 (published)', console)
        self.assertIn('10 total, 9 converted, 1 skipped', console)
        self.assertIn('3 total, 2 uploaded, 1 failed', console)
        self.assertIn('Failed to upload image b.png', console)

    def test_console_report_truncates_warnings(self):
        result = ImportResult(success=True, stats=stats(), warnings=tuple(f'warning {i}' for i in range(12)))

        console = self.reporter.format_console_report(self.reporter.generate_report(result, 'page-1', 1.0))

        self.assertIn('Warnings (12):', console)
        self.assertIn('... and 2 more', console)
        self.assertNotIn('warning 11', console)

    def test_exports(self):
        report = self.reporter.generate_report(self.success, 'page-1', 1.0)

        with tempfile.TemporaryDirectory() as directory:
            json_path = os.path.join(directory, 'report.json')
            csv_path = os.path.join(directory, 'summary.csv')
            self.reporter.export_json_report(report, json_path)
            self.reporter.export_csv_summary(report, csv_path)

            with open(json_path, encoding='utf-8') as f:
                exported = json.load(f)
            with open(csv_path, encoding='utf-8', newline='') as f:
                rows = list(csv.reader(f))

        self.assertEqual(exported['summary']['note_id'], '123')
        self.assertEqual(rows[0], ['metric', 'value'])
        self.assertIn(['images_success', '2'], rows)


if __name__ == '__main__':
    unittest.main()
