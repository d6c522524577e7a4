import argparse
import logging
import os
import sys

from .collector import collect_stats
from .config import DEFAULT_OUTPUT_DIR, DEFAULT_PORT, build_settings, load_environment
from .dashboard import run_dashboard
from .gateway import GitHubGateway
from .reports import consolidate_daily_batches, display_summary, display_team_stats, save_results

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

EPILOG = """Examples:
  github-code-stats --org my-org --from 2025-01-01 --to 2025-01-31
  github-code-stats --org my-org --teams "Backend,Frontend" --include-prs

Environment variables:
  GITHUB_TOKEN       GitHub personal access token (required)
  GITHUB_ORG         Default organization
  START_DATE         Default start date (YYYY-MM-DD)
  END_DATE           Default end date (YYYY-MM-DD)
  REPOS_CONFIG_PATH  Repositories config (default: config/repos.json)
  TEAMS_CONFIG_PATH  Default teams config (default: config/teams.json)
  OUTPUT_DIR         Output directory (default: output)
"""


def configure_logging():
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def build_parser():
    parser = argparse.ArgumentParser(
        description='GitHub organization code statistics with Copilot AI-assistance estimates',
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--from', dest='start_date', type=str, help='Start date (YYYY-MM-DD)')
    parser.add_argument('--to', dest='end_date', type=str, help='End date (YYYY-MM-DD)')
    parser.add_argument('--org', type=str, help='GitHub organization name')
    parser.add_argument('--teams', type=str, help='Comma-separated list of team names to include')
    parser.add_argument('--output-dir', dest='output_dir', type=str, help=f"Directory for CSV output (default: {DEFAULT_OUTPUT_DIR})")
    parser.add_argument('--include-prs', dest='include_prs', action='store_true', help='Also analyze merged pull requests')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    load_environment()
    configure_logging()

    try:
        settings = build_settings(args)
    except ValueError as e:
        logging.error(str(e))
        sys.exit(1)

    gateway = GitHubGateway(settings.token)
    result = collect_stats(gateway, settings)
    if result is None:
        logging.error("Failed to collect code statistics.")
        sys.exit(1)

    display_summary(result)
    display_team_stats(result.aggregation, settings.start_date, settings.end_date)
    save_results(result, settings.output_dir)


def dashboard_main(argv=None):
    parser = argparse.ArgumentParser(description='Serve the code statistics dashboard')
    parser.add_argument('--output-dir', dest='output_dir', type=str, help=f"Directory holding the CSV output (default: {DEFAULT_OUTPUT_DIR})")
    parser.add_argument('--port', type=int, help=f"Port to listen on (default: $PORT or {DEFAULT_PORT})")
    parser.add_argument('--host', type=str, default='127.0.0.1', help='Interface to bind (default: 127.0.0.1)')
    parser.add_argument('--debug', action='store_true', help='Run Dash in debug mode')
    args = parser.parse_args(argv)
    load_environment()
    configure_logging()

    output_dir = args.output_dir or os.getenv('OUTPUT_DIR') or DEFAULT_OUTPUT_DIR
    port = args.port or int(os.getenv('PORT') or DEFAULT_PORT)
    run_dashboard(output_dir, host=args.host, port=port, debug=args.debug)


def consolidate_main(argv=None):
    parser = argparse.ArgumentParser(description='Merge daily batch CSV files into a single file')
    parser.add_argument('--output-dir', dest='output_dir', type=str, help=f"Directory holding the CSV output (default: {DEFAULT_OUTPUT_DIR})")
    args = parser.parse_args(argv)
    load_environment()
    configure_logging()

    output_dir = args.output_dir or os.getenv('OUTPUT_DIR') or DEFAULT_OUTPUT_DIR
    if consolidate_daily_batches(output_dir) is None:
        logging.error(f"No daily batch CSV files found in '{output_dir}'.")
        sys.exit(1)
