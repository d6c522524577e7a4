from datetime import timedelta

from .models import Aggregation, DailyStats, RepoSummary, TeamSummary, TimeSeriesRow, percentage

ai_percentage = percentage


def aggregate(canonical, teams=()):
    """
    Roll canonical attributions up into per-team, per-repository and
    per-(team, date) statistics.

    ``teams`` seeds ``by_team`` so that teams without any activity still show
    up in summaries and in the time series.
    """
    result = Aggregation()
    for team in teams:
        result.by_team.setdefault(team.name, TeamSummary(team=team.name, slug=team.slug, members=team.members))

    attributions = canonical.values() if hasattr(canonical, 'values') else canonical
    for attribution in attributions:
        team = attribution.team
        commit = attribution.commit

        team_summary = result.by_team.get(team.name)
        if team_summary is None:
            team_summary = result.by_team[team.name] = TeamSummary(team=team.name, slug=team.slug, members=team.members)
        repo_summary = result.by_repository.get(commit.repository)
        if repo_summary is None:
            repo_summary = result.by_repository[commit.repository] = RepoSummary(repository=commit.repository)
        daily = result.by_date.get((team.name, commit.date))
        if daily is None:
            daily = result.by_date[(team.name, commit.date)] = DailyStats(team=team.name, date=commit.date)

        for stats in (team_summary, repo_summary):
            stats.total_code_lines += attribution.code_lines
            stats.total_ai_lines += attribution.ai_lines
        daily.code_lines += attribution.code_lines
        daily.ai_lines += attribution.ai_lines
        daily.attributions.append(attribution)
        team_summary.active_days.add(commit.date)

        # Team summary rows carry lines only, they are not commits of a contributor.
        if attribution.is_summary:
            continue
        team_summary.commit_count += 1
        team_summary.contributors.add(commit.contributor)
        team_summary.repositories.add(commit.repository)
        repo_summary.commit_count += 1
        repo_summary.contributors.add(commit.contributor)
        repo_summary.teams.add(team.name)
        daily.commit_count += 1
        daily.contributors.add(commit.contributor)

    return result


def _calendar(dates, start=None, end=None):
    if not dates and not (start and end):
        return []
    first = min(dates) if dates else start
    last = max(dates) if dates else end
    if start and start < first:
        first = start
    if end and end > last:
        last = end
    days = []
    day = first
    while day <= last:
        days.append(day)
        day += timedelta(days=1)
    return days


def time_series(aggregation, start=None, end=None):
    """
    Daily and running totals for every team on every calendar day between the
    first and last active day (widened to ``start``/``end`` when given).
    """
    dates = _calendar({d for (_, d) in aggregation.by_date}, start, end)
    rows = []
    cumulative = {name: [0, 0] for name in aggregation.by_team}
    for day in dates:
        for name, summary in aggregation.by_team.items():
            daily = aggregation.by_date.get((name, day))
            totals = cumulative[name]
            if daily is not None:
                totals[0] += daily.code_lines
                totals[1] += daily.ai_lines
            rows.append(TimeSeriesRow(
                date=day,
                team=name,
                slug=summary.slug,
                daily_code_lines=daily.code_lines if daily else 0,
                daily_ai_lines=daily.ai_lines if daily else 0,
                cumulative_code_lines=totals[0],
                cumulative_ai_lines=totals[1],
                active_contributors=len(daily.contributors) if daily else 0,
                commit_count=daily.commit_count if daily else 0,
            ))
    return rows


def grand_totals(aggregation):
    teams = aggregation.by_team.values()
    code_lines = sum(t.total_code_lines for t in teams)
    ai_lines = sum(t.total_ai_lines for t in teams)
    contributors = set()
    for t in teams:
        contributors |= t.contributors
    return {
        'total_code_lines': code_lines,
        'total_ai_lines': ai_lines,
        'ai_percentage': ai_percentage(ai_lines, code_lines),
        'total_commits': sum(t.commit_count for t in teams),
        'active_teams': sum(1 for t in teams if t.commit_count or t.total_code_lines),
        'contributors': len(contributors),
        'repositories': sum(1 for r in aggregation.by_repository.values() if r.commit_count),
    }


def team_performance(aggregation):
    rows = []
    for name, summary in aggregation.by_team.items():
        active_days = len(summary.active_days)
        rows.append({
            'team': name,
            'slug': summary.slug,
            'members': summary.members,
            'total_code_lines': summary.total_code_lines,
            'total_ai_lines': summary.total_ai_lines,
            'ai_percentage': summary.ai_percentage,
            'avg_daily_code_lines': summary.total_code_lines / active_days if active_days else 0.0,
            'avg_daily_ai_lines': summary.total_ai_lines / active_days if active_days else 0.0,
            'active_days': active_days,
            'total_commits': summary.commit_count,
            'unique_contributors': len(summary.contributors),
        })
    return rows
