from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests
from github import GithubException, UnknownObjectException

from github_code_stats.collector import collect_stats, repository_fallback_records, team_membership
from github_code_stats.config import Settings
from github_code_stats.gateway import CommitDetail, CommitRef, PullRequestRef
from github_code_stats.models import CopilotMetrics, Team

BACKEND = Team(name='Backend', slug='backend')
QA = Team(name='QA', slug='qa')

COMMITS = {
    'a': ('alice', 100, 0),
    'X': ('carlos', 200, 31),
    'd': ('dave', 5, 5),
}


def ref(sha):
    return CommitRef(sha=sha, contributor=COMMITS[sha][0], date=date(2025, 1, 15), message=f"commit {sha}")


def detail(org, repo, sha):
    if sha == 'm1':
        return CommitDetail(sha='m1', contributor='alice', additions=30, deletions=10, message='Merge')
    contributor, additions, deletions = COMMITS[sha]
    return CommitDetail(sha=sha, contributor=contributor, additions=additions, deletions=deletions, message='')


def copilot(org, since=None, until=None, team_slug=None):
    if team_slug == 'qa':
        return CopilotMetrics(total_code_lines_accepted=500, success=True)
    if team_slug is None:
        return CopilotMetrics(total_code_lines_accepted=1000, success=True)
    return CopilotMetrics(success=False)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        token='token',
        org='acme',
        teams=['Backend', 'QA'],
        repos_config_path=str(tmp_path / 'missing.json'),
        output_dir=str(tmp_path / 'output'),
    )


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.authenticated_login.return_value = 'octocat'
    gateway.verify_organization.return_value = 'Acme Inc'
    gateway.list_repositories.return_value = ['api']
    gateway.list_teams.return_value = [BACKEND, QA]
    gateway.list_team_members.side_effect = lambda org, slug: {'backend': ['alice', 'carlos'], 'qa': ['carlos']}[slug]
    gateway.list_commits.return_value = [ref('a'), ref('X'), ref('d')]
    gateway.get_commit_detail.side_effect = detail
    gateway.get_copilot_metrics.side_effect = copilot
    return gateway


def test_collect_stats_attributes_each_commit_once(gateway, settings):
    result = collect_stats(gateway, settings)

    assert result.total_commits == 3
    assert result.team_filtered_commits == 2
    assert len(result.records) == 3
    assert len(result.canonical) == 2
    assert [t.members for t in result.teams] == [2, 1]

    by_sha = {a.commit.sha: a for a in result.canonical.values()}
    assert by_sha['a'].team.name == 'Backend'
    assert by_sha['a'].ai_lines == 0
    assert by_sha['X'].team.name == 'QA'
    assert by_sha['X'].ai_lines == 50

    assert result.aggregation.by_team['QA'].total_code_lines == 231
    assert result.aggregation.by_team['Backend'].total_code_lines == 100
    assert result.ai_lines == 170
    assert result.additions == 300
    assert result.total_lines == 331
    assert not result.pull_requests


def test_commit_detail_failure_is_skipped(gateway, settings):
    def flaky(org, repo, sha):
        if sha == 'X':
            raise GithubException(500, {'message': 'boom'}, None)
        return detail(org, repo, sha)
    gateway.get_commit_detail.side_effect = flaky

    result = collect_stats(gateway, settings)

    assert [c.sha for c in result.commits] == ['a']
    assert result.total_commits == 3


def test_network_error_on_commit_detail_is_skipped(gateway, settings):
    def flaky(org, repo, sha):
        if sha == 'a':
            raise requests.exceptions.ConnectionError('connection reset')
        return detail(org, repo, sha)
    gateway.get_commit_detail.side_effect = flaky

    result = collect_stats(gateway, settings)

    assert [c.sha for c in result.commits] == ['X']
    assert len(result.canonical) == 1


def test_invalid_token_is_fatal(gateway, settings):
    gateway.authenticated_login.side_effect = GithubException(401, {'message': 'Bad credentials'}, None)
    assert collect_stats(gateway, settings) is None


def test_unknown_organization_is_fatal(gateway, settings):
    gateway.verify_organization.side_effect = UnknownObjectException(404, {'message': 'Not Found'}, None)
    assert collect_stats(gateway, settings) is None


def test_no_repositories_is_fatal(gateway, settings):
    gateway.list_repositories.return_value = []
    assert collect_stats(gateway, settings) is None


def test_no_matching_teams_is_fatal(gateway, settings):
    gateway.list_teams.return_value = []
    assert collect_stats(gateway, settings) is None


def test_repositories_from_config_file(gateway, settings, tmp_path):
    config = tmp_path / 'repos.json'
    config.write_text('{"repositories": [{"repo": "acme/web", "branch": "develop"}, {"repo": "other/api"}]}')
    settings.repos_config_path = str(config)

    result = collect_stats(gateway, settings)

    assert result.repositories == 1
    gateway.list_repositories.assert_not_called()
    assert gateway.list_commits.call_args.kwargs['branch'] == 'develop'
    assert gateway.list_commits.call_args.args[:2] == ('acme', 'web')


def test_commit_listing_failure_falls_back_to_contributor_stats(gateway, settings):
    gateway.list_commits.side_effect = GithubException(409, {'message': 'Git Repository is empty.'}, None)
    gateway.get_contributor_stats.return_value = [
        {'author': 'carlos', 'weeks': [{'week': date(2025, 1, 5), 'additions': 80, 'deletions': 20, 'commits': 3}]},
        {'author': 'dave', 'weeks': [{'week': date(2025, 1, 5), 'additions': 999, 'deletions': 0, 'commits': 1}]},
    ]

    result = collect_stats(gateway, settings)

    (summary,) = result.canonical.values()
    assert summary.is_summary
    assert summary.team.name == 'QA'
    assert summary.code_lines == 100
    assert summary.ai_lines == 40
    assert summary.commit.contributor == 'Team Summary'
    assert summary.commit.message == 'Aggregated daily activity (api)'
    assert result.aggregation.by_team['QA'].commit_count == 0
    assert result.aggregation.by_team['QA'].total_code_lines == 100


def test_fallback_waits_for_computed_stats():
    gateway = MagicMock()
    gateway.get_contributor_stats.return_value = None
    membership = team_membership([QA], {'qa': ['carlos']})
    assert repository_fallback_records(gateway, 'acme', 'api', membership, {}) == []


def test_fallback_respects_date_range():
    gateway = MagicMock()
    gateway.get_contributor_stats.return_value = [
        {'author': 'carlos', 'weeks': [
            {'week': date(2024, 12, 29), 'additions': 10, 'deletions': 0, 'commits': 1},
            {'week': date(2025, 1, 5), 'additions': 20, 'deletions': 5, 'commits': 1},
        ]},
    ]
    membership = team_membership([QA], {'qa': ['carlos']})

    records = repository_fallback_records(gateway, 'acme', 'api', membership, {}, date(2025, 1, 1), date(2025, 1, 31))

    assert [(r.commit.date, r.commit.additions, r.commit.deletions, r.ai_lines) for r in records] == [
        (date(2025, 1, 5), 20, 5, 0),
    ]


def test_pull_requests_are_estimated_from_merge_commit(gateway, settings):
    settings.include_pull_requests = True
    merged_at = datetime(2025, 1, 16, tzinfo=timezone.utc)
    gateway.list_merged_pull_requests.return_value = [
        PullRequestRef(number=5, contributor='alice', title='Feature', merged_at=merged_at, merge_commit_sha='m1'),
        PullRequestRef(number=6, contributor='dave', title='Outside', merged_at=merged_at, merge_commit_sha='m2'),
    ]
    gateway.get_pull_request_files.return_value = [
        {'filename': 'a.py', 'additions': 20, 'deletions': 10},
        {'filename': 'b.py', 'additions': 10, 'deletions': 0},
    ]

    result = collect_stats(gateway, settings)

    (pr,) = result.pull_requests
    assert (pr.number, pr.additions, pr.deletions) == (5, 30, 10)
    assert pr.ai_lines == 21
    assert pr.reason == 'Based on GitHub Copilot metrics API'
