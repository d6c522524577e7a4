import logging
import os
from datetime import date
from pathlib import Path

import pandas as pd
from toolz import groupby

from .aggregation import grand_totals, team_performance, time_series
from .attribution import canonicalize
from .models import (
    SUMMARY_CONTRIBUTOR,
    SUMMARY_MESSAGE,
    SUMMARY_REPOSITORY,
    SUMMARY_SHA,
    CommitRecord,
    Team,
    TeamContributionRecord,
    percentage,
)

DAILY_BATCH_DIR = 'daily-batches'
SUMMARY_DIR = 'summary'
CONSOLIDATED_FILENAME = 'consolidated_daily_batches.csv'
MESSAGE_LIMIT = 200
ACTIVITY_MESSAGE_LIMIT = 300

DAILY_BATCH_COLUMNS = [
    'Date', 'Team', 'TeamSlug', 'TeamMembers', 'Repository', 'Contributor', 'CommitSHA', 'CommitMessage',
    'CodeLines', 'AILines', 'AIPercentage', 'Additions', 'Deletions', 'TotalChanges',
]
TIME_SERIES_COLUMNS = [
    'Date', 'Team', 'TeamSlug', 'DailyCodeLines', 'DailyAILines', 'DailyAIPercentage',
    'CumulativeCodeLines', 'CumulativeAILines', 'CumulativeAIPercentage', 'ActiveContributors', 'CommitCount',
]
TEAM_PERFORMANCE_COLUMNS = [
    'Team', 'TeamSlug', 'Members', 'TotalCodeLines', 'TotalAILines', 'AIPercentage',
    'AvgDailyCodeLines', 'AvgDailyAILines', 'ActiveDays', 'TotalCommits', 'UniqueContributors',
]
REPOSITORY_ACTIVITY_COLUMNS = [
    'Date', 'Repository', 'Author', 'CommitSHA', 'Message', 'Additions', 'Deletions', 'TotalChanges',
    'DayOfWeek', 'WeekNumber',
]
PULL_REQUEST_COLUMNS = [
    'Repository', 'Number', 'Contributor', 'Title', 'MergedAt', 'Additions', 'Deletions', 'TotalChanges',
    'AILines', 'AIPercentage', 'Reason',
]
INTEGER_COLUMNS = ['TeamMembers', 'CodeLines', 'AILines', 'Additions', 'Deletions', 'TotalChanges']


def format_percentage(value):
    return f"{value:.1f}%"


def clean_message(message, limit=MESSAGE_LIMIT):
    return (message or '').replace('\r\n', ' ').replace('\n', ' ')[:limit]


def range_label(start_date, end_date):
    return f"{start_date or 'all'}_to_{end_date or 'all'}"


def output_dirs(output_dir):
    daily_dir = Path(output_dir) / DAILY_BATCH_DIR
    summary_dir = Path(output_dir) / SUMMARY_DIR
    for d in (Path(output_dir), daily_dir, summary_dir):
        d.mkdir(parents=True, exist_ok=True)
    return daily_dir, summary_dir


def daily_batch_row(attribution):
    team = attribution.team
    commit = attribution.commit
    row = {
        'Date': commit.date.isoformat(),
        'Team': team.name,
        'TeamSlug': team.slug,
        'TeamMembers': team.members,
        'Repository': commit.repository,
        'Contributor': commit.contributor,
        'CommitSHA': commit.sha,
        'CommitMessage': clean_message(commit.message),
        'CodeLines': attribution.code_lines,
        'AILines': attribution.ai_lines,
        'AIPercentage': format_percentage(attribution.ai_percentage),
        'Additions': commit.additions,
        'Deletions': commit.deletions,
        'TotalChanges': commit.code_lines,
    }
    if attribution.is_summary:
        row.update({
            'Repository': SUMMARY_REPOSITORY,
            'Contributor': SUMMARY_CONTRIBUTOR,
            'CommitSHA': SUMMARY_SHA,
            'CommitMessage': row['CommitMessage'] or SUMMARY_MESSAGE,
        })
    return row


def save_daily_batches(canonical, org, daily_dir):
    by_day = groupby(lambda a: a.commit.date, canonical.values())
    saved = []
    for day in sorted(by_day):
        attributions = sorted(
            by_day[day], key=lambda a: (a.team.name, a.is_summary, a.commit.repository, a.commit.contributor, a.commit.sha),
        )
        filename = Path(daily_dir) / f"{org}_daily_{day.isoformat()}.csv"
        pd.DataFrame([daily_batch_row(a) for a in attributions], columns=DAILY_BATCH_COLUMNS).to_csv(filename, index=False)
        saved.append(filename)
    return saved


def save_time_series(aggregation, org, start_date, end_date, summary_dir):
    rows = [
        {
            'Date': row.date.isoformat(),
            'Team': row.team,
            'TeamSlug': row.slug,
            'DailyCodeLines': row.daily_code_lines,
            'DailyAILines': row.daily_ai_lines,
            'DailyAIPercentage': format_percentage(row.daily_ai_percentage),
            'CumulativeCodeLines': row.cumulative_code_lines,
            'CumulativeAILines': row.cumulative_ai_lines,
            'CumulativeAIPercentage': format_percentage(row.cumulative_ai_percentage),
            'ActiveContributors': row.active_contributors,
            'CommitCount': row.commit_count,
        }
        for row in time_series(aggregation, start_date, end_date)
    ]
    filename = Path(summary_dir) / f"{org}_time_series_{range_label(start_date, end_date)}.csv"
    pd.DataFrame(rows, columns=TIME_SERIES_COLUMNS).to_csv(filename, index=False)
    return filename


def save_team_performance(aggregation, org, start_date, end_date, summary_dir):
    rows = [
        {
            'Team': row['team'],
            'TeamSlug': row['slug'],
            'Members': row['members'],
            'TotalCodeLines': row['total_code_lines'],
            'TotalAILines': row['total_ai_lines'],
            'AIPercentage': format_percentage(row['ai_percentage']),
            'AvgDailyCodeLines': f"{row['avg_daily_code_lines']:.1f}",
            'AvgDailyAILines': f"{row['avg_daily_ai_lines']:.1f}",
            'ActiveDays': row['active_days'],
            'TotalCommits': row['total_commits'],
            'UniqueContributors': row['unique_contributors'],
        }
        for row in team_performance(aggregation)
    ]
    filename = Path(summary_dir) / f"{org}_team_performance_{range_label(start_date, end_date)}.csv"
    pd.DataFrame(rows, columns=TEAM_PERFORMANCE_COLUMNS).to_csv(filename, index=False)
    return filename


def save_repository_activity(commits, org, start_date, end_date, summary_dir):
    rows = [
        {
            'Date': commit.date.isoformat(),
            'Repository': commit.repository,
            'Author': commit.contributor,
            'CommitSHA': commit.sha,
            'Message': clean_message(commit.message, ACTIVITY_MESSAGE_LIMIT),
            'Additions': commit.additions,
            'Deletions': commit.deletions,
            'TotalChanges': commit.code_lines,
            'DayOfWeek': commit.date.strftime('%A'),
            'WeekNumber': commit.date.isocalendar()[1],
        }
        for commit in commits
    ]
    filename = Path(summary_dir) / f"{org}_repository_activity_{range_label(start_date, end_date)}.csv"
    pd.DataFrame(rows, columns=REPOSITORY_ACTIVITY_COLUMNS).to_csv(filename, index=False)
    return filename


def save_pull_requests(pull_requests, org, start_date, end_date, summary_dir):
    rows = [
        {
            'Repository': pr.repository,
            'Number': pr.number,
            'Contributor': pr.contributor,
            'Title': clean_message(pr.title),
            'MergedAt': pr.merged_at.isoformat() if pr.merged_at else '',
            'Additions': pr.additions,
            'Deletions': pr.deletions,
            'TotalChanges': pr.code_lines,
            'AILines': pr.ai_lines,
            'AIPercentage': format_percentage(pr.ai_percentage),
            'Reason': pr.reason,
        }
        for pr in pull_requests
    ]
    filename = Path(summary_dir) / f"{org}_pull_requests_{range_label(start_date, end_date)}.csv"
    pd.DataFrame(rows, columns=PULL_REQUEST_COLUMNS).to_csv(filename, index=False)
    return filename


def save_results(result, output_dir):
    """Write every CSV report for a collection result; returns the written paths."""
    logging.info("Saving results to daily batch CSV files")
    if not result.canonical:
        logging.info("No daily statistics available for CSV export.")
        return []

    try:
        daily_dir, summary_dir = output_dirs(output_dir)
        saved = save_daily_batches(result.canonical, result.org, daily_dir)
        logging.info(f"Daily batches: {daily_dir}/ ({len(saved)} files)")
        summaries = [
            save_time_series(result.aggregation, result.org, result.start_date, result.end_date, summary_dir),
            save_team_performance(result.aggregation, result.org, result.start_date, result.end_date, summary_dir),
            save_repository_activity(result.commits, result.org, result.start_date, result.end_date, summary_dir),
        ]
        if result.pull_requests:
            summaries.append(save_pull_requests(result.pull_requests, result.org, result.start_date, result.end_date, summary_dir))
        for filename in summaries:
            logging.info(f"Summary file saved to '{filename}'.")
        return saved + summaries
    except OSError as e:
        logging.exception(f"Error saving CSV files: {e}")
        return []


def list_csv_files(directory):
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix == '.csv')


def read_csv_frames(paths, columns=None):
    frames = []
    for path in paths:
        try:
            frame = pd.read_csv(path, dtype=str, keep_default_na=False)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logging.warning(f"Could not load '{path}': {e}")
            continue
        frames.append(frame)
        logging.info(f"Loaded {os.path.basename(path)}: {len(frame)} records")
    if not frames:
        return pd.DataFrame(columns=columns or [])
    return pd.concat(frames, ignore_index=True)


def normalize_daily_batches(frame):
    frame = frame.copy()
    for column in DAILY_BATCH_COLUMNS:
        if column not in frame.columns:
            frame[column] = ''
    for column in INTEGER_COLUMNS:
        frame[column] = pd.to_numeric(frame[column], errors='coerce').fillna(0).astype(int)
    frame['AIPercentage'] = pd.to_numeric(
        frame['AIPercentage'].astype(str).str.replace('%', '', regex=False), errors='coerce',
    ).fillna(0.0)
    return frame[DAILY_BATCH_COLUMNS]


def records_from_frame(frame):
    """TeamContributionRecords from a daily-batch DataFrame; rows without a valid date are skipped."""
    records = []
    for row in normalize_daily_batches(frame).to_dict('records'):
        try:
            day = date.fromisoformat(str(row['Date'])[:10])
        except ValueError:
            logging.warning(f"Skipping row with invalid date '{row['Date']}'")
            continue
        additions, deletions = row['Additions'], row['Deletions']
        if additions + deletions == 0 and row['CodeLines'] > 0:
            additions = row['CodeLines']
        commit = CommitRecord(
            sha=row['CommitSHA'],
            repository=row['Repository'],
            contributor=row['Contributor'],
            date=day,
            additions=additions,
            deletions=deletions,
            message=row['CommitMessage'],
        )
        team = Team(name=row['Team'], slug=row['TeamSlug'], members=row['TeamMembers'])
        records.append(TeamContributionRecord(team=team, commit=commit, ai_lines=max(0, row['AILines'])))
    return records


def load_daily_batch_records(output_dir):
    frame = read_csv_frames(list_csv_files(Path(output_dir) / DAILY_BATCH_DIR), DAILY_BATCH_COLUMNS)
    return records_from_frame(frame)


def consolidate_daily_batches(output_dir):
    """Merge every daily batch CSV into one file sorted by date; returns (path, frame) or None."""
    daily_dir = Path(output_dir) / DAILY_BATCH_DIR
    files = list_csv_files(daily_dir)
    logging.info(f"Found {len(files)} CSV files to consolidate in '{daily_dir}'")
    if not files:
        return None

    frame = normalize_daily_batches(read_csv_frames(files, DAILY_BATCH_COLUMNS))
    frame = frame.sort_values('Date', kind='stable').reset_index(drop=True)
    frame['AIPercentage'] = frame['AIPercentage'].map(format_percentage)
    path = Path(output_dir) / CONSOLIDATED_FILENAME
    frame.to_csv(path, index=False)

    canonical = canonicalize(records_from_frame(frame))
    code_lines = sum(a.code_lines for a in canonical.values())
    ai_lines = sum(a.ai_lines for a in canonical.values())
    dates = sorted(d for d in frame['Date'] if d)
    logging.info("CONSOLIDATION SUMMARY")
    logging.info(f"Date Range: {dates[0] if dates else 'N/A'} to {dates[-1] if dates else 'N/A'}")
    logging.info(f"Teams: {frame['Team'].nunique()}")
    logging.info(f"Contributors: {frame['Contributor'].nunique()}")
    logging.info(f"Repositories: {frame['Repository'].nunique()}")
    logging.info(f"Total Records: {len(frame)}")
    logging.info(f"Unique Commits: {sum(1 for a in canonical.values() if not a.is_summary)}")
    logging.info(f"Total Code Lines: {code_lines}")
    logging.info(f"Total AI Lines: {ai_lines}")
    logging.info(f"Average AI Assistance: {format_percentage(percentage(ai_lines, code_lines))}")
    logging.info(f"Consolidated data saved to '{path}'.")
    return path, frame


def team_stats_table(aggregation):
    rows = [
        {
            'Team Name': name,
            'Members': summary.members,
            'Total Code Lines': summary.total_code_lines,
            'Total AI Lines': summary.total_ai_lines,
            'AI %': format_percentage(summary.ai_percentage),
        }
        for name, summary in aggregation.by_team.items()
    ]
    return pd.DataFrame(rows, columns=['Team Name', 'Members', 'Total Code Lines', 'Total AI Lines', 'AI %'])


def daily_breakdown_table(aggregation):
    rows = []
    for (team, day), daily in sorted(aggregation.by_date.items(), key=lambda item: (item[0][1], item[0][0])):
        for attribution in daily.attributions:
            rows.append({
                'Date': day.isoformat(),
                'Team Name': team,
                'Code Lines': attribution.code_lines,
                'AI Lines': attribution.ai_lines,
                'AI %': format_percentage(attribution.ai_percentage),
                'Commit ID': attribution.commit.sha[:8] if not attribution.is_summary else SUMMARY_SHA,
                'Contributor': attribution.commit.contributor[:18] if not attribution.is_summary else 'Multiple/Unknown',
            })
    return pd.DataFrame(rows, columns=['Date', 'Team Name', 'Code Lines', 'AI Lines', 'AI %', 'Commit ID', 'Contributor'])


def display_team_stats(aggregation, start_date=None, end_date=None):
    logging.info("TEAM DAILY STATISTICS REPORT")
    logging.info(f"Date Range: {start_date or 'All time'} to {end_date or 'Present'}")
    if not aggregation.by_date:
        logging.info("No daily statistics available for the specified date range.")
        return
    logging.info("TEAM SUMMARY:\n" + team_stats_table(aggregation).to_string(index=False))
    logging.info("DAILY BREAKDOWN:\n" + daily_breakdown_table(aggregation).to_string(index=False))
    totals = grand_totals(aggregation)
    logging.info(
        f"GRAND TOTAL: {totals['total_code_lines']} code lines, {totals['total_ai_lines']} AI lines "
        f"({format_percentage(totals['ai_percentage'])})"
    )


def display_summary(result):
    logging.info("=== Summary ===")
    logging.info(f"Total repositories analyzed: {result.repositories}")
    logging.info(f"Total commits from target teams: {result.team_filtered_commits}")
    logging.info(f"- Additions: {result.additions}")
    logging.info(f"- Deletions: {result.deletions}")
    logging.info(f"- Total lines modified: {result.total_lines}")
    logging.info(f"- Estimated AI-assisted lines: {result.ai_lines}")
    if result.pull_requests:
        logging.info(f"- Merged PRs analyzed: {len(result.pull_requests)}")
