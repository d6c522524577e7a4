"""
Team attribution and de-duplication.

A contributor that belongs to several teams shows up once per team for the
very same commit, and every copy carries its own AI estimate. The functions
here collapse those copies so each commit is counted once, for one team.
"""
from datetime import date

from .models import CanonicalAttribution, CommitKey, TeamContributionRecord, is_summary_sha


def commit_key(record, position=0):
    commit = record.commit
    if is_summary_sha(commit.sha):
        return CommitKey(commit.contributor, commit.sha or '', commit.repository, position)
    return CommitKey(commit.contributor, commit.sha, commit.repository)


def canonicalize(records):
    canonical = {}
    summaries = 0
    for record in records:
        key = commit_key(record, summaries)
        if key.ordinal is not None:
            summaries += 1
        current = canonical.get(key)
        if current is None:
            canonical[key] = CanonicalAttribution(key=key, team=record.team, commit=record.commit, ai_lines=record.ai_lines)
        elif record.ai_lines > current.ai_lines:
            # The team whose context produced the higher estimate takes the commit.
            canonical[key] = CanonicalAttribution(key=key, team=record.team, commit=current.commit, ai_lines=record.ai_lines)
    return canonical


def as_records(canonical):
    return [
        TeamContributionRecord(team=attribution.team, commit=attribution.commit, ai_lines=attribution.ai_lines)
        for attribution in canonical.values()
    ]


def sort_records(records):
    return sorted(records, key=lambda r: (r.commit.date, r.team.name, r.commit.contributor))


def as_filter_set(value):
    if value is None or value == '':
        return None
    if isinstance(value, str):
        return {value}
    values = {v for v in value if v}
    return values or None


def as_filter_date(value):
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def filter_records(records, teams=None, contributors=None, repositories=None, start=None, end=None):
    teams = as_filter_set(teams)
    contributors = as_filter_set(contributors)
    repositories = as_filter_set(repositories)
    start = as_filter_date(start)
    end = as_filter_date(end)

    filtered = []
    for record in records:
        commit = record.commit
        if teams and record.team.name not in teams and record.team.slug not in teams:
            continue
        if contributors and commit.contributor not in contributors:
            continue
        if repositories and commit.repository not in repositories:
            continue
        if start and commit.date < start:
            continue
        if end and commit.date > end:
            continue
        filtered.append(record)
    return filtered
