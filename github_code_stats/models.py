from dataclasses import dataclass, field
from datetime import date, datetime
from typing import NamedTuple, Optional

SUMMARY_SHA = 'N/A'
SUMMARY_CONTRIBUTOR = 'Team Summary'
SUMMARY_REPOSITORY = 'Multiple'
SUMMARY_MESSAGE = 'Aggregated daily activity'


def is_summary_sha(sha):
    return not sha or sha.strip() in ('', SUMMARY_SHA)


@dataclass(frozen=True)
class Team:
    name: str
    slug: str
    members: int = 0


@dataclass(frozen=True)
class CommitRecord:
    sha: str
    repository: str
    contributor: str
    date: date
    additions: int = 0
    deletions: int = 0
    message: str = ''

    @property
    def code_lines(self):
        return self.additions + self.deletions


@dataclass(frozen=True)
class TeamContributionRecord:
    team: Team
    commit: CommitRecord
    ai_lines: int = 0

    @property
    def code_lines(self):
        return self.commit.code_lines

    @property
    def ai_percentage(self):
        return percentage(self.ai_lines, self.code_lines)


class CommitKey(NamedTuple):
    contributor: str
    commit_sha: str
    repository: str
    # Set only for records that must never collide (missing or "N/A" sha).
    ordinal: Optional[int] = None


@dataclass(frozen=True)
class CanonicalAttribution:
    key: CommitKey
    team: Team
    commit: CommitRecord
    ai_lines: int

    @property
    def code_lines(self):
        return self.commit.code_lines

    @property
    def ai_percentage(self):
        return percentage(self.ai_lines, self.code_lines)

    @property
    def is_summary(self):
        return is_summary_sha(self.commit.sha)


@dataclass
class DailyStats:
    team: str
    date: date
    code_lines: int = 0
    ai_lines: int = 0
    commit_count: int = 0
    contributors: set = field(default_factory=set)
    attributions: list = field(default_factory=list)

    @property
    def ai_percentage(self):
        return percentage(self.ai_lines, self.code_lines)


@dataclass
class TeamSummary:
    team: str
    slug: str = ''
    members: int = 0
    total_code_lines: int = 0
    total_ai_lines: int = 0
    commit_count: int = 0
    contributors: set = field(default_factory=set)
    repositories: set = field(default_factory=set)
    active_days: set = field(default_factory=set)

    @property
    def ai_percentage(self):
        return percentage(self.total_ai_lines, self.total_code_lines)


@dataclass
class RepoSummary:
    repository: str
    total_code_lines: int = 0
    total_ai_lines: int = 0
    commit_count: int = 0
    contributors: set = field(default_factory=set)
    teams: set = field(default_factory=set)

    @property
    def ai_percentage(self):
        return percentage(self.total_ai_lines, self.total_code_lines)


@dataclass
class Aggregation:
    by_team: dict = field(default_factory=dict)
    by_repository: dict = field(default_factory=dict)
    by_date: dict = field(default_factory=dict)


@dataclass(frozen=True)
class TimeSeriesRow:
    date: date
    team: str
    slug: str
    daily_code_lines: int
    daily_ai_lines: int
    cumulative_code_lines: int
    cumulative_ai_lines: int
    active_contributors: int
    commit_count: int

    @property
    def daily_ai_percentage(self):
        return percentage(self.daily_ai_lines, self.daily_code_lines)

    @property
    def cumulative_ai_percentage(self):
        return percentage(self.cumulative_ai_lines, self.cumulative_code_lines)


@dataclass(frozen=True)
class CopilotMetrics:
    total_code_lines_accepted: int = 0
    success: bool = False
    daily: dict = field(default_factory=dict)


@dataclass(frozen=True)
class AIEstimate:
    is_ai_assisted: bool
    ai_lines: int
    reason: str = ''


@dataclass(frozen=True)
class PullRequestRecord:
    number: int
    repository: str
    contributor: str
    title: str
    merged_at: Optional[datetime]
    additions: int = 0
    deletions: int = 0
    merge_commit_sha: Optional[str] = None
    ai_lines: int = 0
    reason: str = ''

    @property
    def code_lines(self):
        return self.additions + self.deletions

    @property
    def ai_percentage(self):
        return percentage(self.ai_lines, self.code_lines)


def percentage(part, whole):
    """Share of ``part`` in ``whole`` as a percentage; 0.0 when ``whole`` is not positive."""
    if not whole or whole <= 0:
        return 0.0
    return part / whole * 100
