#!/usr/bin/env python3
"""
Notion to note.com Import Tool - Main CLI Entry Point

This script provides the command-line interface for listing, inspecting,
previewing and importing Notion pages into note.com. Every command prints a
JSON payload on stdout: ``{"success": true, ...}`` or
``{"success": false, "error": ..., "code": ...}``.
"""

import argparse
import json
import logging
import os
import sys
import time
from typing import Any, Dict, List, Optional

import yaml

from config_loader import ConfigLoader, get_nested
from logger import LOGGER_NAME, log_config, log_section, setup_logging
from notion_api import NotionApiError
from orchestrator import ImportOrchestrator, ImportReport

__version__ = "1.0.0"

DEFAULT_CONFIG_PATH = 'config.yaml'


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog='notion-import',
        description="Import Notion pages into note.com",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List pages of a Notion database
  notion-import list <database-id> --page-size 50

  # Show page metadata and block outline
  notion-import get <page-id>

  # Preview the converted note body
  notion-import preview <page-id>

  # Import as a draft with tags
  notion-import import <page-id> --tags "python,notion"

  # Publish immediately and save a JSON report
  notion-import import <page-id> --publish --report-path report.json

  # Verbose logging
  notion-import -vv preview <page-id>
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help=f'Path to configuration YAML file (default: {DEFAULT_CONFIG_PATH} when present)'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Write logs to a rotating log file'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    list_parser = subparsers.add_parser('list', help='List pages in a Notion database')
    list_parser.add_argument('database_id', help='Notion database ID')
    list_parser.add_argument(
        '--page-size',
        type=int,
        default=20,
        help='Number of pages to retrieve, 1-100 (default: 20)'
    )
    list_parser.add_argument('--start-cursor', type=str, help='Cursor returned by a previous call')

    get_parser = subparsers.add_parser('get', help='Show page metadata and block outline')
    get_parser.add_argument('page_id', help='Notion page ID')

    preview_parser = subparsers.add_parser('preview', help='Preview the converted note body')
    preview_parser.add_argument('page_id', help='Notion page ID')
    preview_parser.add_argument('--max-depth', type=int, help='Maximum block nesting depth')

    import_parser = subparsers.add_parser('import', help='Import a Notion page into note.com')
    import_parser.add_argument('page_id', help='Notion page ID')
    import_parser.add_argument('--tags', type=str, help='Comma-separated tags (e.g., python,notion)')
    import_parser.add_argument(
        '--publish',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Publish immediately instead of saving a draft'
    )
    import_parser.add_argument('--report-path', type=str, help='Write the import report as JSON')
    import_parser.add_argument('--max-depth', type=int, help='Maximum block nesting depth')

    return parser


def emit(payload: Dict[str, Any]) -> None:
    """Print a JSON payload on stdout."""
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def error_payload(message: str, code: Optional[str] = None) -> Dict[str, Any]:
    return {'success': False, 'error': message, 'code': code}


def resolve_config_path(path: Optional[str]) -> Optional[str]:
    if path:
        return path
    return DEFAULT_CONFIG_PATH if os.path.exists(DEFAULT_CONFIG_PATH) else None


def run_command(args: argparse.Namespace, config: Dict[str, Any], logger: logging.Logger) -> int:
    """Dispatch a parsed subcommand and print its result."""
    orchestrator = ImportOrchestrator.from_config(config, logger=logger)

    if args.command == 'list':
        if not 1 <= args.page_size <= 100:
            emit(error_payload("--page-size must be between 1 and 100", 'INVALID_ARGUMENT'))
            return 1
        result = orchestrator.list_documents(
            args.database_id, page_size=args.page_size, start_cursor=args.start_cursor
        )
        emit({'success': True, **result})
        return 0

    if args.command == 'get':
        emit({'success': True, **orchestrator.get_document(args.page_id)})
        return 0

    if args.command == 'preview':
        emit({'success': True, **orchestrator.preview_document(args.page_id)})
        return 0

    save_as_draft = get_nested(config, 'import.save_as_draft', True)
    tags: List[str] = get_nested(config, 'import.tags', []) or []

    start_time = time.time()
    result = orchestrator.import_document(args.page_id, tags=tags, save_as_draft=save_as_draft)
    duration = time.time() - start_time

    reporter = ImportReport(logger=logger)
    report = reporter.generate_report(
        result,
        args.page_id,
        duration,
        status='draft' if save_as_draft else 'published'
    )
    print(reporter.format_console_report(report), file=sys.stderr)

    report_path = get_nested(config, 'import.report_path')
    if report_path:
        reporter.export_json_report(report, report_path)

    if result.success:
        emit({
            'success': True,
            'note_id': result.note_id,
            'stats': result.stats.to_dict(),
            'warnings': list(result.warnings),
            'message': "Successfully imported Notion page to note.com",
        })
        return 0

    payload = error_payload(result.error or "Failed to import Notion page", result.error_code)
    payload['stats'] = result.stats.to_dict()
    payload['warnings'] = list(result.warnings)
    emit(payload)
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    logger = setup_logging(verbosity=args.verbose)

    try:
        log_section("Notion to note.com Import Tool")
        logger.info(f"Version: {__version__}")

        config_path = resolve_config_path(args.config)
        logger.info(f"Loading configuration from {config_path or 'defaults and environment'}")
        config = ConfigLoader.load(config_path)

        # CLI arguments take precedence over the file
        config = ConfigLoader.merge_with_args(config, args)
        ConfigLoader.validate(config, require_note_auth=False)

        logging_config = config.get('logging', {})
        logger = setup_logging(
            verbosity=args.verbose,
            log_file=logging_config.get('file'),
            level=logging_config.get('level') if not args.verbose else None
        )
        log_config(config)

        return run_command(args, config, logging.getLogger(LOGGER_NAME))

    except FileNotFoundError as e:
        emit(error_payload(f"File not found: {e}", 'CONFIG_ERROR'))
        return 1
    except yaml.YAMLError as e:
        emit(error_payload(f"Invalid YAML configuration: {e}", 'CONFIG_ERROR'))
        return 1
    except ValueError as e:
        emit(error_payload(f"Configuration error: {e}", 'CONFIG_ERROR'))
        return 1
    except NotionApiError as e:
        emit(error_payload(e.message, e.code.value))
        return 1
    except KeyboardInterrupt:
        print("\nImport interrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
