import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from github import GithubException, UnknownObjectException

from .aggregation import aggregate
from .attribution import canonicalize, sort_records
from .config import load_repositories_config
from .gateway import end_of_day, start_of_day
from .heuristics import estimate_ai_lines, estimate_pull_request_ai_lines, estimate_repository_ai_lines
from .models import (
    SUMMARY_CONTRIBUTOR,
    SUMMARY_MESSAGE,
    SUMMARY_REPOSITORY,
    SUMMARY_SHA,
    Aggregation,
    CommitRecord,
    PullRequestRecord,
    TeamContributionRecord,
)


@dataclass
class CollectionResult:
    org: str
    start_date: object
    end_date: object
    repositories: int
    total_commits: int
    teams: list = field(default_factory=list)
    commits: list = field(default_factory=list)
    records: list = field(default_factory=list)
    canonical: dict = field(default_factory=dict)
    aggregation: Aggregation = field(default_factory=Aggregation)
    pull_requests: list = field(default_factory=list)
    ai_lines: int = 0

    @property
    def team_filtered_commits(self):
        return len(self.commits)

    @property
    def additions(self):
        return sum(c.additions for c in self.commits)

    @property
    def deletions(self):
        return sum(c.deletions for c in self.commits)

    @property
    def total_lines(self):
        return self.additions + self.deletions


def resolve_repositories(gateway, settings):
    """(name, branch) pairs from the repos config, or every unarchived org repository."""
    configured = load_repositories_config(settings.org, settings.repos_config_path)
    if configured is not None:
        for repo in configured:
            logging.info(f"- {repo.name} (branch: {repo.branch})")
        return [(repo.name, repo.branch) for repo in configured]
    try:
        names = gateway.list_repositories(settings.org)
    except GithubException as e:
        logging.error(f"GitHub API error listing repositories for '{settings.org}': {e}")
        return []
    except Exception as e:
        logging.exception(f"Error listing repositories for '{settings.org}': {e}")
        return []
    logging.info(f"Fetched {len(names)} unarchived repositories for '{settings.org}'.")
    return [(name, None) for name in names]


def resolve_teams(gateway, settings):
    logging.info("Filtering contributions by the following teams:")
    for name in settings.teams:
        logging.info(f"- {name}")
    try:
        teams = gateway.list_teams(settings.org, settings.teams)
    except GithubException as e:
        logging.error(f"Error fetching organization teams: {e}")
        return [], {}
    except Exception as e:
        logging.exception(f"Error fetching organization teams: {e}")
        return [], {}

    resolved = []
    members = {}
    for team in teams:
        try:
            logins = gateway.list_team_members(settings.org, team.slug)
        except GithubException as e:
            logging.error(f"Error fetching members for team '{team.slug}': {e}")
            logins = []
        except Exception as e:
            logging.exception(f"Error fetching members for team '{team.slug}': {e}")
            logins = []
        logging.info(f"Team {team.name} ({team.slug}) has {len(logins)} members")
        resolved.append(replace(team, members=len(logins)))
        members[team.slug] = logins
    return resolved, members


def team_membership(teams, members):
    membership = {}
    for team in teams:
        for login in members.get(team.slug, []):
            membership.setdefault(login, []).append(team)
    return membership


def fetch_team_commits(gateway, org, repo, branch, membership, since, until):
    """
    Commits of ``repo`` authored by a member of any target team.

    Returns ``(seen, commits)``; a commit whose detail cannot be fetched is
    logged and skipped. Listing errors propagate.
    """
    refs = gateway.list_commits(org, repo, since=since, until=until, branch=branch)
    commits = []
    for ref in refs:
        if ref.contributor not in membership or ref.date is None:
            continue
        try:
            detail = gateway.get_commit_detail(org, repo, ref.sha)
        except GithubException as e:
            logging.warning(f"Skipping commit {ref.sha[:8]} in '{repo}': {e}")
            continue
        except Exception as e:
            logging.exception(f"Error fetching commit {ref.sha[:8]} in '{repo}': {e}")
            continue
        commits.append(CommitRecord(
            sha=ref.sha,
            repository=repo,
            contributor=ref.contributor,
            date=ref.date,
            additions=detail.additions,
            deletions=detail.deletions,
            message=ref.message,
        ))
    return len(refs), commits


def repository_fallback_records(gateway, org, repo, membership, team_metrics, start_date=None, end_date=None):
    """
    Team summary records from weekly contributor statistics, used when the
    commit list of a repository cannot be read.
    """
    try:
        stats = gateway.get_contributor_stats(org, repo)
    except GithubException as e:
        logging.error(f"Contributor stats unavailable for '{repo}': {e}")
        return []
    except Exception as e:
        logging.exception(f"Error fetching contributor stats for '{repo}': {e}")
        return []
    if stats is None:
        logging.info(f"GitHub is computing stats for '{repo}', skipping it for now")
        return []

    weekly = {}
    for contributor in stats:
        teams = membership.get(contributor['author'])
        if not teams:
            continue
        for week in contributor['weeks']:
            day = week['week']
            if (start_date and day < start_date) or (end_date and day > end_date):
                continue
            code_lines = week['additions'] + week['deletions']
            if code_lines <= 0:
                continue
            # Same rule as commit de-duplication: highest estimate wins, first team on ties.
            best = max(teams, key=lambda t: estimate_repository_ai_lines(code_lines, team_metrics.get(t.slug)))
            totals = weekly.setdefault((best, day), [0, 0])
            totals[0] += week['additions']
            totals[1] += week['deletions']

    records = []
    for (team, day), (additions, deletions) in weekly.items():
        commit = CommitRecord(
            sha=SUMMARY_SHA,
            repository=SUMMARY_REPOSITORY,
            contributor=SUMMARY_CONTRIBUTOR,
            date=day,
            additions=additions,
            deletions=deletions,
            message=f"{SUMMARY_MESSAGE} ({repo})",
        )
        ai_lines = estimate_repository_ai_lines(commit.code_lines, team_metrics.get(team.slug))
        records.append(TeamContributionRecord(team=team, commit=commit, ai_lines=ai_lines))
    logging.info(f"Using weekly contributor stats for '{repo}': {len(records)} team summary rows")
    return records


def fetch_pull_requests(gateway, org, repo, membership, org_metrics, since, until):
    try:
        pulls = gateway.list_merged_pull_requests(org, repo, since=since, until=until)
    except UnknownObjectException:
        logging.error(f"Repository {org}/{repo} not found or not accessible")
        return []
    except GithubException as e:
        logging.error(f"Error fetching PRs for '{repo}': {e}")
        return []
    except Exception as e:
        logging.exception(f"Error fetching PRs for '{repo}': {e}")
        return []

    records = []
    for pr in pulls:
        if pr.contributor not in membership:
            continue
        try:
            files = gateway.get_pull_request_files(org, repo, pr.number)
        except GithubException as e:
            logging.warning(f"Skipping PR #{pr.number} in '{repo}': {e}")
            continue
        except Exception as e:
            logging.exception(f"Error fetching files of PR #{pr.number} in '{repo}': {e}")
            continue
        record = PullRequestRecord(
            number=pr.number,
            repository=repo,
            contributor=pr.contributor,
            title=pr.title,
            merged_at=pr.merged_at,
            additions=sum(f['additions'] for f in files),
            deletions=sum(f['deletions'] for f in files),
            merge_commit_sha=pr.merge_commit_sha,
        )

        merge_commit = None
        if pr.merge_commit_sha:
            try:
                detail = gateway.get_commit_detail(org, repo, pr.merge_commit_sha)
                merge_commit = CommitRecord(
                    sha=detail.sha,
                    repository=repo,
                    contributor=pr.contributor,
                    date=pr.merged_at.date() if pr.merged_at else None,
                    additions=detail.additions,
                    deletions=detail.deletions,
                    message=detail.message,
                )
            except GithubException as e:
                logging.warning(f"Error fetching merge commit of PR #{pr.number}: {e}")
            except Exception as e:
                logging.exception(f"Error fetching merge commit of PR #{pr.number}: {e}")

        estimate = estimate_pull_request_ai_lines(record, org_metrics, merge_commit)
        records.append(replace(record, ai_lines=estimate.ai_lines, reason=estimate.reason))
    return records


def collect_stats(gateway, settings) -> Optional[CollectionResult]:
    org = settings.org
    logging.info(f"Organization: {org}")

    try:
        login = gateway.authenticated_login()
    except GithubException as e:
        logging.error(f"Token validation failed: {e}")
        logging.error("Please provide a valid GitHub token with the appropriate permissions (https://github.com/settings/tokens).")
        return None
    except Exception as e:
        logging.exception(f"Error validating token: {e}")
        return None
    logging.info(f"Authenticated as: {login}")

    try:
        org_name = gateway.verify_organization(org)
    except UnknownObjectException:
        logging.error(f"Organization '{org}' not found or you don't have access to it.")
        return None
    except GithubException as e:
        logging.error(f"Cannot access organization '{org}': {e}")
        return None
    except Exception as e:
        logging.exception(f"Error accessing organization '{org}': {e}")
        return None
    logging.info(f"Organization '{org}' found: {org_name}")

    repositories = resolve_repositories(gateway, settings)
    if not repositories:
        logging.error("No repositories found or accessible. Cannot calculate code stats.")
        return None

    teams, members = resolve_teams(gateway, settings)
    if not teams:
        logging.error("No matching teams found or access denied to team data.")
        return None
    membership = team_membership(teams, members)

    if settings.start_date or settings.end_date:
        logging.info(f"Date filter: {settings.start_date or 'beginning'} to {settings.end_date or 'present'}")
    since = start_of_day(settings.start_date)
    until = end_of_day(settings.end_date)

    org_metrics = gateway.get_copilot_metrics(org, settings.start_date, settings.end_date)
    team_metrics = {
        team.slug: gateway.get_copilot_metrics(org, settings.start_date, settings.end_date, team_slug=team.slug)
        for team in teams
    }

    result = CollectionResult(
        org=org,
        start_date=settings.start_date,
        end_date=settings.end_date,
        repositories=len(repositories),
        total_commits=0,
        teams=teams,
    )

    for repo, branch in repositories:
        logging.info(f"Analyzing commits in {repo}...")
        try:
            seen, commits = fetch_team_commits(gateway, org, repo, branch, membership, since, until)
        except GithubException as e:
            logging.error(f"Error fetching commits for '{repo}': {e}")
            result.records.extend(repository_fallback_records(
                gateway, org, repo, membership, team_metrics, settings.start_date, settings.end_date,
            ))
            continue
        except Exception as e:
            logging.exception(f"Error fetching commits for '{repo}': {e}")
            continue
        result.total_commits += seen
        result.commits.extend(commits)

        for commit in commits:
            for team in membership[commit.contributor]:
                estimate = estimate_ai_lines(commit, team_metrics.get(team.slug))
                result.records.append(TeamContributionRecord(team=team, commit=commit, ai_lines=estimate.ai_lines))

        if settings.include_pull_requests:
            logging.info(f"Fetching merged PRs for {repo}...")
            result.pull_requests.extend(fetch_pull_requests(gateway, org, repo, membership, org_metrics, since, until))

    logging.info(f"Found {result.team_filtered_commits} commits from target team members out of {result.total_commits} total commits")

    for commit in result.commits:
        estimate = estimate_ai_lines(commit, org_metrics)
        if estimate.is_ai_assisted:
            result.ai_lines += estimate.ai_lines
            logging.info(f"Commit {commit.sha[:8]} by {commit.contributor} is AI-assisted: {estimate.reason} (~{estimate.ai_lines} lines)")

    result.records = sort_records(result.records)
    result.canonical = canonicalize(result.records)
    result.aggregation = aggregate(result.canonical, teams)
    logging.info(f"Canonicalized {len(result.records)} team records into {len(result.canonical)} attributions")
    return result
