from datetime import date

import pytest

from github_code_stats.models import CommitRecord, CopilotMetrics, Team, TeamContributionRecord


def build_team(name, slug=None, members=3):
    return Team(name=name, slug=slug or name.lower().replace(' ', '-'), members=members)


def build_record(team, contributor='alice', sha='abc1234', repository='api', day=date(2025, 1, 15),
                 additions=100, deletions=0, ai_lines=0, message='Update'):
    if isinstance(team, str):
        team = build_team(team)
    commit = CommitRecord(
        sha=sha,
        repository=repository,
        contributor=contributor,
        date=day,
        additions=additions,
        deletions=deletions,
        message=message,
    )
    return TeamContributionRecord(team=team, commit=commit, ai_lines=ai_lines)


@pytest.fixture
def make_team():
    return build_team


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def metrics():
    def factory(accepted=500, success=True):
        return CopilotMetrics(total_code_lines_accepted=accepted, success=success)
    return factory
