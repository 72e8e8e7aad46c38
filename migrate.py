#!/usr/bin/env python3
"""
Confluence to Markdown Export Tool - Main CLI Entry Point

Converts Confluence pages to Markdown files with YAML frontmatter, using
the storage format for macro source (diagrams, code, panels, TOC) and the
view format for everything else.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to Python path for relative imports
current_dir = Path(__file__).parent
sys.path.insert(0, str(current_dir))

from config_loader import ConfigLoader, get_nested
from confluence_client import ConfluenceClient
from converters import PageConverter
from errors import ConverterError
from exporters import MarkdownExporter
from logger import log_config, log_section, setup_logging
from models import ConfluencePage
from orchestrator import ExportOrchestrator

__version__ = "1.0.0"

DEFAULT_CONFIG_PATH = 'config.yaml'


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        description="Export Confluence pages to Markdown with YAML frontmatter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export single pages
  python migrate.py --config config.yaml --page-id 123456 --page-id 234567

  # Export a whole space
  python migrate.py --config config.yaml --space ENG

  # Convert a saved page offline
  python migrate.py --storage-file page.storage.xml --view-file page.view.html

  # Use the regex macro parser
  python migrate.py --space ENG --parser regex

  # Dry-run mode (convert without writing)
  python migrate.py --space ENG --dry-run

  # Verbose logging
  python migrate.py --space ENG -vv
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
        help=f'Path to configuration YAML file (default: {DEFAULT_CONFIG_PATH} if present)'
    )

    parser.add_argument(
        '--page-id',
        action='append',
        default=[],
        help='Page ID to export (repeatable)'
    )

    parser.add_argument(
        '--space',
        type=str,
        help='Space key to export'
    )

    parser.add_argument(
        '--storage-file',
        type=str,
        help='Storage-format file of a saved page (requires --view-file)'
    )

    parser.add_argument(
        '--view-file',
        type=str,
        help='View-format HTML file of a saved page (requires --storage-file)'
    )

    parser.add_argument(
        '--title',
        type=str,
        help='Page title for offline conversion (default: storage file name)'
    )

    parser.add_argument(
        '--output-dir',
        type=str,
        help='Output directory (overrides export.output_directory)'
    )

    parser.add_argument(
        '--parser',
        choices=['soup', 'regex'],
        help='Macro parser strategy (overrides conversion.parser_strategy)'
    )

    parser.add_argument(
        '--include-attachments',
        action='store_true',
        help='Download all page attachments into the asset directory'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Convert pages without writing files'
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
        help='Also write logs to this file'
    )

    return parser


def load_configuration(args: argparse.Namespace) -> dict:
    """Load the config file (when given or present) and apply CLI overrides."""
    if args.config:
        config = ConfigLoader.load(args.config)
    elif os.path.exists(DEFAULT_CONFIG_PATH):
        config = ConfigLoader.load(DEFAULT_CONFIG_PATH)
    else:
        config = ConfigLoader.with_defaults({})

    return ConfigLoader.merge_with_args(config, args)


def convert_offline(config: dict, args: argparse.Namespace, logger: logging.Logger) -> int:
    """Convert a page saved as a storage file plus a view file."""
    log_section("Offline Conversion")

    storage = Path(args.storage_file).read_text(encoding='utf-8')
    view = Path(args.view_file).read_text(encoding='utf-8')

    page = ConfluencePage(
        id=args.page_id[0] if args.page_id else 'local',
        title=args.title or Path(args.storage_file).stem.split('.')[0],
        space_key=args.space or 'LOCAL',
        storage=storage,
        view=view,
    )

    try:
        document = PageConverter(config, logger).convert(page)
    except ConverterError as e:
        logger.error(f"Conversion failed: {e}")
        return 1

    for warning in document.warnings:
        logger.warning(warning)

    if args.dry_run:
        sys.stdout.write(document.markdown)
        return 0

    path = MarkdownExporter(config, logger).write(document, page)
    print(f"Wrote {path}")
    return 0


def run_export(config: dict, args: argparse.Namespace, logger: logging.Logger) -> int:
    """Export pages from a Confluence instance."""
    client = ConfluenceClient.from_config(config)
    orchestrator = ExportOrchestrator(config, client=client, logger=logger, dry_run=args.dry_run)

    if args.space:
        report = orchestrator.export_space(args.space)
    else:
        report = orchestrator.export_pages(args.page_id)

    print(f"Exported: {report['exported']}  Failed: {report['failed']}  "
          f"Macros: {report['macro_totals']}")
    for error in report['errors']:
        print(f"  page {error['page_id']}: [{error['code']}] {error['message']}", file=sys.stderr)

    return 1 if report['failed'] else 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    offline = bool(args.storage_file or args.view_file)
    if offline and not (args.storage_file and args.view_file):
        parser.error("--storage-file and --view-file must be given together")
    if not offline and not (args.page_id or args.space):
        parser.error("one of --page-id, --space or --storage-file/--view-file is required")

    try:
        setup_logging(verbosity=args.verbose, log_file=args.log_file)
        logger = logging.getLogger('confluence_markdown_exporter.cli')

        log_section("Confluence to Markdown Export Tool")
        logger.info(f"Version: {__version__}")

        config = load_configuration(args)
        ConfigLoader.validate(config, require_connection=not offline)

        # Reconfigure logging with config file settings
        setup_logging(
            verbosity=args.verbose,
            log_file=get_nested(config, 'logging.file'),
            level=None if args.verbose else get_nested(config, 'logging.level'),
        )
        log_config(config)

        if offline:
            return convert_offline(config, args, logger)
        return run_export(config, args, logger)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nExport interrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"ERROR: Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
