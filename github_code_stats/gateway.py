import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import NamedTuple, Optional

from github import Auth, Github, GithubException

from .models import CopilotMetrics, Team

PAGE_SIZE = 100
MAX_COMMIT_PAGES = 5
RATE_LIMIT_WARNING_THRESHOLD = 10
# The Copilot metrics API only serves the last 28 days.
COPILOT_MAX_DAYS = 28


class CommitRef(NamedTuple):
    sha: str
    contributor: str
    date: Optional[date]
    message: str


class CommitDetail(NamedTuple):
    sha: str
    contributor: str
    additions: int
    deletions: int
    message: str


class PullRequestRef(NamedTuple):
    number: int
    contributor: str
    title: str
    merged_at: Optional[datetime]
    merge_commit_sha: Optional[str]


class TeamMembersCache:
    """Team member logins keyed by (org, team slug), scoped to one run."""

    def __init__(self):
        self._members = {}

    def get(self, org, slug):
        return self._members.get((org, slug))

    def put(self, org, slug, members):
        self._members[(org, slug)] = list(members)

    def __contains__(self, key):
        return key in self._members

    def __len__(self):
        return len(self._members)


def to_utc(value):
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(day):
    return datetime.combine(day, time.min, tzinfo=timezone.utc) if day else None


def end_of_day(day):
    return datetime.combine(day, time(23, 59, 59, 999999), tzinfo=timezone.utc) if day else None


def _iso(value):
    return value.strftime('%Y-%m-%dT%H:%M:%SZ')


def copilot_window(since=None, until=None, now=None):
    now = now or datetime.now(timezone.utc)
    params = {}
    if since:
        earliest = now - timedelta(days=COPILOT_MAX_DAYS)
        params['since'] = _iso(max(start_of_day(since), earliest))
    if until:
        params['until'] = _iso(min(end_of_day(until), now))
    return params


def parse_copilot_metrics(data):
    total = 0
    daily = {}
    if isinstance(data, list):
        for day in data:
            day_total = 0
            completions = day.get('copilot_ide_code_completions') or {}
            for editor in completions.get('editors') or []:
                for model in editor.get('models') or []:
                    for language in model.get('languages') or []:
                        day_total += language.get('total_code_lines_accepted') or 0
            if day.get('date'):
                daily[day['date']] = daily.get(day['date'], 0) + day_total
            total += day_total
    elif isinstance(data, dict) and data.get('total_code_lines_accepted'):
        total = data['total_code_lines_accepted']
    return CopilotMetrics(total_code_lines_accepted=total, success=True, daily=daily)


class GitHubGateway:
    def __init__(self, token=None, cache=None, client=None):
        self._gh = client if client is not None else Github(auth=Auth.Token(token), per_page=PAGE_SIZE)
        self.cache = cache if cache is not None else TeamMembersCache()
        self._orgs = {}
        self._repos = {}

    def _check_rate_limit(self):
        remaining, _limit = self._gh.rate_limiting
        if 0 <= remaining < RATE_LIMIT_WARNING_THRESHOLD:
            logging.warning(f"GitHub API rate limit getting low: {remaining} requests remaining")

    def _paginate(self, paginated, max_pages=None, before=None, timestamp=None):
        # `before` only makes sense for lists sorted newest first.
        page = 0
        while max_pages is None or page < max_pages:
            items = paginated.get_page(page)
            self._check_rate_limit()
            for item in items:
                if before is not None and to_utc(timestamp(item)) < before:
                    return
                yield item
            if len(items) < PAGE_SIZE:
                return
            page += 1

    def _organization(self, org):
        if org not in self._orgs:
            self._orgs[org] = self._gh.get_organization(org)
        return self._orgs[org]

    def _repo(self, org, repo):
        full_name = f"{org}/{repo}"
        if full_name not in self._repos:
            self._repos[full_name] = self._gh.get_repo(full_name)
        return self._repos[full_name]

    def authenticated_login(self):
        login = self._gh.get_user().login
        scopes = self._gh.oauth_scopes
        if scopes:
            logging.info(f"Token scopes: {', '.join(scopes)}")
        return login

    def verify_organization(self, org):
        organization = self._organization(org)
        return organization.name or organization.login

    def list_repositories(self, org):
        repos = self._organization(org).get_repos(type='all')
        return [repo.name for repo in self._paginate(repos) if not repo.archived]

    def list_teams(self, org, name_filter=None):
        wanted = {name.strip().lower() for name in name_filter or [] if name.strip()}
        teams = list(self._paginate(self._organization(org).get_teams()))
        matched = [Team(name=t.name, slug=t.slug) for t in teams if not wanted or t.name.lower() in wanted]
        logging.info(f"Found {len(matched)} matching teams out of {len(teams)} total teams")
        return matched

    def list_team_members(self, org, team_slug):
        members = self.cache.get(org, team_slug)
        if members is None:
            team = self._organization(org).get_team_by_slug(team_slug)
            members = [member.login for member in self._paginate(team.get_members())]
            self.cache.put(org, team_slug, members)
        return members

    def list_commits(self, org, repo, since=None, until=None, branch=None):
        kwargs = {}
        if branch:
            kwargs['sha'] = branch
        if since:
            kwargs['since'] = since
        if until:
            kwargs['until'] = until
        commits = self._repo(org, repo).get_commits(**kwargs)
        return [_commit_ref(commit) for commit in self._paginate(commits, max_pages=MAX_COMMIT_PAGES)]

    def get_commit_detail(self, org, repo, sha):
        commit = self._repo(org, repo).get_commit(sha)
        stats = commit.stats
        ref = _commit_ref(commit)
        return CommitDetail(
            sha=commit.sha,
            contributor=ref.contributor,
            additions=stats.additions if stats else 0,
            deletions=stats.deletions if stats else 0,
            message=ref.message,
        )

    def list_merged_pull_requests(self, org, repo, since=None, until=None):
        pulls = self._repo(org, repo).get_pulls(state='closed', sort='updated', direction='desc')
        merged = []
        for pr in self._paginate(pulls, before=since, timestamp=lambda p: p.updated_at):
            if not pr.merged_at:
                continue
            merged_at = to_utc(pr.merged_at)
            if since and merged_at < since:
                continue
            if until and merged_at > until:
                continue
            merged.append(PullRequestRef(
                number=pr.number,
                contributor=pr.user.login if pr.user else 'Unknown',
                title=pr.title,
                merged_at=merged_at,
                merge_commit_sha=pr.merge_commit_sha,
            ))
        logging.info(f"Found {len(merged)} merged PRs for '{repo}' in the requested range")
        return merged

    def get_pull_request_files(self, org, repo, number):
        files = self._repo(org, repo).get_pull(number).get_files()
        return [
            {'filename': f.filename, 'additions': f.additions or 0, 'deletions': f.deletions or 0}
            for f in self._paginate(files)
        ]

    def get_copilot_metrics(self, org, since=None, until=None, team_slug=None):
        if team_slug:
            url = f"/orgs/{org}/team/{team_slug}/copilot/metrics"
            target = f"team '{team_slug}'"
        else:
            url = f"/orgs/{org}/copilot/metrics"
            target = f"organization '{org}'"
        params = copilot_window(since, until)
        try:
            _headers, data = self._gh.requester.requestJsonAndCheck('GET', url, parameters=params or None)
        except GithubException as e:
            logging.warning(f"Unable to fetch Copilot metrics for {target}: {e}")
            return CopilotMetrics(total_code_lines_accepted=0, success=False)
        except Exception as e:
            logging.exception(f"Error fetching Copilot metrics for {target}: {e}")
            return CopilotMetrics(total_code_lines_accepted=0, success=False)
        metrics = parse_copilot_metrics(data)
        logging.info(f"GitHub Copilot metrics for {target}: {metrics.total_code_lines_accepted} lines accepted over {len(metrics.daily)} days")
        return metrics

    def get_contributor_stats(self, org, repo):
        # PyGithub returns None while GitHub answers 202 (stats still being computed).
        stats = self._repo(org, repo).get_stats_contributors()
        self._check_rate_limit()
        if stats is None:
            return None
        contributors = []
        for contributor in stats:
            contributors.append({
                'author': contributor.author.login if contributor.author else 'Unknown',
                'weeks': [
                    {'week': to_utc(week.w).date(), 'additions': week.a or 0, 'deletions': week.d or 0, 'commits': week.c or 0}
                    for week in contributor.weeks or []
                ],
            })
        return contributors


def _commit_ref(commit):
    git_author = commit.commit.author
    if commit.author is not None:
        contributor = commit.author.login
    elif git_author is not None and git_author.email:
        contributor = git_author.email
    else:
        contributor = 'Unknown'
    authored = to_utc(git_author.date) if git_author is not None and git_author.date else None
    return CommitRef(
        sha=commit.sha,
        contributor=contributor,
        date=authored.date() if authored else None,
        message=commit.commit.message or '',
    )
