#!/usr/bin/env python3
"""
cfs - Cloud resources as files

Downloads the resources of an AWS account into .cfs/ (one JSON file per
resource) so they can be listed, searched with grep, browsed, versioned, or
post-processed by plugins.

Usage:
    cfs                        # sync all enabled regions into ./.cfs
    cfs --region eu-west-1     # sync a single region
    cfs ls                     # list resource files
    cfs find "m5.large"        # search file names and contents
    cfs browse                 # search UI on http://localhost:3000
    cfs clean                  # delete the output directory
"""
import argparse
import logging
import math
import os
import shutil
import sys
import time
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console

import cfslib
from aws_sync import RESOURCE_KINDS, get_session, sync_account
from cfslib.config import generate_sample_config, load_config
from cfslib.constants import (
    DEFAULT_BROWSE_HOST,
    DEFAULT_BROWSE_PORT,
    DEFAULT_OUTPUT_DIR,
    ERRORS_LOG_FILE,
    GITIGNORE_FILE,
)
from cfslib.errors import CliPluginError, CliUserError, ErrorCollector, summary_message, write_error_log
from cfslib.plugins import start_plugins
from cfslib.server import start_server
from cfslib.store import find_resources, list_resource_paths, load_resources
from cfslib.utils import ProgressTracker, print_summary_table, setup_logging

logger = logging.getLogger(__name__)

console = Console(soft_wrap=True)
error_console = Console(stderr=True, soft_wrap=True)

REPOSITORY_URL = "https://github.com/khalidx/cfs"

LOGO = """
┌─┐┌─┐┌─┐
│  ├┤ └─┐
└─┘└  └─┘
"""


# =============================================================================
# Commands
# =============================================================================

def command_sync(args) -> None:
    """Replace the output tree with a fresh copy of the account's resources."""
    output = args.output
    os.makedirs(output, exist_ok=True)
    with open(os.path.join(output, GITIGNORE_FILE), 'w') as f:
        f.write('*\n')

    errors_log = os.path.join(output, ERRORS_LOG_FILE)
    if os.path.exists(errors_log):
        os.remove(errors_log)

    session = get_session(args.profile)
    errors = ErrorCollector()

    started = time.monotonic()
    with ProgressTracker(total_kinds=len(RESOURCE_KINDS)) as tracker:
        files_by_kind = sync_account(
            session, output, errors,
            region=args.region,
            max_workers=args.max_workers,
            tracker=tracker,
        )
    duration = math.ceil(time.monotonic() - started)

    if not len(errors):
        start_plugins(output)

    print_summary_table(files_by_kind, duration)

    if len(errors):
        report = errors.get_formatted_errors()
        write_error_log(report, errors_log)
        raise CliUserError(summary_message(report, errors_log))

    console.print("[green]Success[/green]")


def command_list(args) -> None:
    for path in list_resource_paths(args.output):
        print(os.path.join(args.output, path))


def command_find(args) -> None:
    if not args.text:
        raise CliUserError('Please provide the text to search for, like `cfs find "m5.large"`.')
    if not list_resource_paths(args.output):
        raise CliUserError(f"There are no resources in {args.output}/ to search. Run `cfs` first.")
    for path in find_resources(args.output, args.text):
        print(os.path.join(args.output, path))


def command_browse(args) -> None:
    resources = load_resources(args.output)
    start_server(
        resources,
        host=args.host or DEFAULT_BROWSE_HOST,
        port=args.port or DEFAULT_BROWSE_PORT,
        open_browser=args.open != 'false',
    )


def command_clean(args) -> None:
    if os.path.exists(args.output):
        shutil.rmtree(args.output)
        logger.info(f"Removed {args.output}")


def command_help(args) -> None:
    console.print(LOGO, style="blue", highlight=False)
    console.print(f"version    [yellow]v{cfslib.__version__}[/yellow]")
    console.print(f"repository [yellow]{REPOSITORY_URL}[/yellow]")
    console.print()
    console.print("[italic]commands[/italic]")
    console.print(f"  cfs              [bold]Outputs all discovered resources to `{args.output}/`.[/bold]")
    console.print("  cfs [blue]ls[/blue]           [bold]Lists the names of all resource files.[/bold]")
    console.print("  cfs [blue]find[/blue] [yellow]<text>[/yellow]  "
                  "[bold]Search for text across all resource file names and contents.[/bold]")
    console.print("  cfs [blue]browse[/blue]       [bold]Opens the browser for exploring resources.[/bold]")
    console.print(f"  cfs [blue]clean[/blue]        Deletes the `{args.output}/` directory.")
    console.print("  cfs [blue]help[/blue]         Outputs this help message.")
    console.print()


COMMANDS = {
    'sync': command_sync,
    'list': command_list,
    'ls': command_list,
    'find': command_find,
    'browse': command_browse,
    'clean': command_clean,
    'help': command_help,
}


# =============================================================================
# Entry Point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='cfs',
        description='cfs - Cloud resources as files',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sync every enabled region of the default profile
  cfs

  # Sync one region with a named profile
  cfs --region eu-west-1 --profile prod

  # Search the mirrored tree
  cfs find "m5.large"

  # Browse without opening a browser
  cfs browse --open false --port 8080
"""
    )
    parser.add_argument('command', nargs='?', default='sync',
                        help='sync (default), list/ls, find, browse, clean, help')
    parser.add_argument('text', nargs='?', help='Text to search for (find)')

    parser.add_argument('--config', '-c', help='Path to YAML config file')
    parser.add_argument('--generate-config', action='store_true',
                        help='Generate a sample config file and exit')
    parser.add_argument('--region', help='Restrict discovery to a single region')
    parser.add_argument('--output', '-o', help=f'Output directory (default: {DEFAULT_OUTPUT_DIR})')
    parser.add_argument('--profile', help='AWS profile name')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    parser.add_argument('--log-dir', help='Also write logs to a file in this directory')
    parser.add_argument('--max-workers', type=int, default=None, metavar='N',
                        help='Upper bound on concurrent workers per fan-out (default: one per branch)')

    # browse
    parser.add_argument('--host', help=f'Browse server host (default: {DEFAULT_BROWSE_HOST})')
    parser.add_argument('--port', type=int, default=None, help=f'Browse server port (default: {DEFAULT_BROWSE_PORT})')
    parser.add_argument('--open', choices=['true', 'false'], default='true',
                        help='Open the browser when the server starts (default: true)')
    return parser


def run(args) -> None:
    """Dispatch a parsed command line; raises on failure."""
    handler = COMMANDS.get(args.command)
    if handler is None:
        raise CliUserError(f'The provided command is invalid: "{args.command}"')
    handler(args)


def report_validation_error(error: ValidationError) -> None:
    for issue in error.errors(include_url=False):
        location = '/'.join(str(part) for part in issue.get('loc', ()))
        error_console.print(f"Error: {issue.get('type')} {location} {issue.get('msg')}", markup=False)
    error_console.print("This is most likely a schema validation issue.")
    error_console.print("Please open a Github issue.")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        return 0

    try:
        load_config(args)
    except FileNotFoundError as e:
        error_console.print(f"Error: {e}", markup=False)
        return 1

    args.output = args.output or DEFAULT_OUTPUT_DIR
    setup_logging(args.log_level or 'INFO', args.log_dir)

    try:
        run(args)
    except ValidationError as e:
        report_validation_error(e)
        return 1
    except (CliUserError, CliPluginError) as e:
        error_console.print(f"Error: {e}", markup=False)
        return 1
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        error_console.print(f"Error: {e}", markup=False)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
