import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_TEAMS = ['Engineering']
DEFAULT_TEAMS_CONFIG_PATH = 'config/teams.json'
DEFAULT_REPOS_CONFIG_PATH = 'config/repos.json'
DEFAULT_OUTPUT_DIR = 'output'
DEFAULT_BRANCH = 'main'
DEFAULT_PORT = 3000

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


@dataclass
class RepositoryConfig:
    name: str
    branch: Optional[str] = None


@dataclass
class Settings:
    token: str
    org: str
    teams: list
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    repos_config_path: str = DEFAULT_REPOS_CONFIG_PATH
    output_dir: str = DEFAULT_OUTPUT_DIR
    include_pull_requests: bool = False


def load_environment():
    # Variables already set in the environment win over both files.
    for candidate in ('env/.env', '.env'):
        if Path(candidate).exists():
            load_dotenv(candidate, override=False)


def parse_date(value):
    """Parse a YYYY-MM-DD string, raising ValueError for anything else."""
    if value is None or value == '':
        return None
    if not DATE_PATTERN.match(value):
        raise ValueError(f"'{value}' is not in YYYY-MM-DD format")
    return date.fromisoformat(value)


def parse_team_list(value):
    if not value:
        return []
    return [team.strip() for team in value.split(',') if team.strip()]


def load_default_teams(path=None):
    path = path or os.getenv('TEAMS_CONFIG_PATH') or DEFAULT_TEAMS_CONFIG_PATH
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError:
        logging.warning(f"Teams config '{path}' not found, using fallback teams {DEFAULT_TEAMS}")
        return list(DEFAULT_TEAMS)
    except (OSError, json.JSONDecodeError) as e:
        logging.warning(f"Could not read teams config '{path}', using fallback teams: {e}")
        return list(DEFAULT_TEAMS)

    teams = data.get('defaultTargetTeams') if isinstance(data, dict) else None
    if not isinstance(teams, list) or not teams:
        logging.warning(f"Invalid teams config format in '{path}', using fallback teams")
        return list(DEFAULT_TEAMS)
    return teams


def load_repositories_config(org, path=None):
    """
    Repositories of ``org`` listed in the repos config file.

    Returns ``None`` when the file does not exist so that callers can fall
    back to listing the organization's repositories through the API.
    """
    path = path or os.getenv('REPOS_CONFIG_PATH') or DEFAULT_REPOS_CONFIG_PATH
    if not Path(path).exists():
        return None
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logging.error(f"Error reading repositories from '{path}': {e}")
        return []

    entries = data.get('repositories') if isinstance(data, dict) else None
    if not isinstance(entries, list):
        logging.error(f"Invalid repos config format in '{path}': missing \"repositories\" array")
        return []

    repositories = []
    for entry in entries:
        full_name = entry.get('repo', '') if isinstance(entry, dict) else ''
        repo_org, _, name = full_name.partition('/')
        if repo_org == org and name:
            repositories.append(RepositoryConfig(name=name, branch=entry.get('branch') or DEFAULT_BRANCH))
    logging.info(f"Found {len(repositories)} repositories for '{org}' in '{path}'")
    return repositories


def build_settings(args):
    """
    Combine command line arguments with environment fallbacks.

    Raises ValueError with a user-facing message for missing or invalid input.
    """
    token = os.getenv('GITHUB_TOKEN', '').strip()
    if not token:
        raise ValueError("GITHUB_TOKEN environment variable is required. Set it with: export GITHUB_TOKEN=your_token_here")

    org = (args.org or os.getenv('GITHUB_ORG') or '').strip()
    if not org:
        raise ValueError("Organization is required. Provide it via '--org' or the GITHUB_ORG environment variable.")

    start_raw = args.start_date or os.getenv('START_DATE')
    end_raw = args.end_date or os.getenv('END_DATE')
    try:
        start_date = parse_date(start_raw)
    except ValueError:
        raise ValueError('Start date must be in YYYY-MM-DD format')
    try:
        end_date = parse_date(end_raw)
    except ValueError:
        raise ValueError('End date must be in YYYY-MM-DD format')
    if start_date and end_date and start_date > end_date:
        raise ValueError('Start date must not be after end date')

    teams = parse_team_list(args.teams) if args.teams else load_default_teams()

    return Settings(
        token=token,
        org=org,
        teams=teams,
        start_date=start_date,
        end_date=end_date,
        repos_config_path=os.getenv('REPOS_CONFIG_PATH') or DEFAULT_REPOS_CONFIG_PATH,
        output_dir=args.output_dir or os.getenv('OUTPUT_DIR') or DEFAULT_OUTPUT_DIR,
        include_pull_requests=bool(getattr(args, 'include_prs', False)),
    )
