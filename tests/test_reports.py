import logging
from datetime import date, datetime, timezone
from unittest.mock import patch

import pandas as pd
import pytest

from github_code_stats.aggregation import aggregate
from github_code_stats.attribution import canonicalize
from github_code_stats.collector import CollectionResult
from github_code_stats.models import PullRequestRecord
from github_code_stats.reports import (
    CONSOLIDATED_FILENAME,
    DAILY_BATCH_COLUMNS,
    PULL_REQUEST_COLUMNS,
    REPOSITORY_ACTIVITY_COLUMNS,
    TEAM_PERFORMANCE_COLUMNS,
    TIME_SERIES_COLUMNS,
    clean_message,
    consolidate_daily_batches,
    load_daily_batch_records,
    range_label,
    save_results,
    team_stats_table,
)


def read(path):
    return pd.read_csv(path, dtype=str, keep_default_na=False)


@pytest.fixture
def result(make_record, make_team):
    backend = make_team('Backend', members=2)
    qa = make_team('QA Automation', slug='qa-automation-team', members=1)
    records = [
        make_record(backend, contributor='carlos', sha='X', repository='R', additions=200, deletions=31, day=date(2025, 1, 2)),
        make_record(qa, contributor='carlos', sha='X', repository='R', additions=200, deletions=31, ai_lines=15, day=date(2025, 1, 2)),
        make_record(backend, contributor='alice', sha='Y', repository='api', additions=50, ai_lines=5,
                    day=date(2025, 1, 4), message='First line\nsecond line'),
        make_record(backend, contributor='Team Summary', sha='N/A', repository='Multiple', additions=70, deletions=30,
                    ai_lines=40, day=date(2025, 1, 4), message='Aggregated daily activity (api)'),
    ]
    canonical = canonicalize(records)
    commits = [r.commit for r in records if r.commit.sha != 'N/A' and r.team == backend]
    return CollectionResult(
        org='acme',
        start_date=date(2025, 1, 1),
        end_date=date(2025, 1, 5),
        repositories=2,
        total_commits=5,
        teams=[backend, qa],
        commits=commits,
        records=records,
        canonical=canonical,
        aggregation=aggregate(canonical, [backend, qa]),
    )


def test_save_results_writes_daily_batches_and_summaries(result, tmp_path):
    saved = save_results(result, tmp_path)

    daily = tmp_path / 'daily-batches'
    summary = tmp_path / 'summary'
    assert sorted(p.name for p in daily.iterdir()) == ['acme_daily_2025-01-02.csv', 'acme_daily_2025-01-04.csv']
    assert sorted(p.name for p in summary.iterdir()) == [
        'acme_repository_activity_2025-01-01_to_2025-01-05.csv',
        'acme_team_performance_2025-01-01_to_2025-01-05.csv',
        'acme_time_series_2025-01-01_to_2025-01-05.csv',
    ]
    assert len(saved) == 5

    first_day = read(daily / 'acme_daily_2025-01-02.csv')
    assert first_day.columns.tolist() == DAILY_BATCH_COLUMNS
    assert first_day.to_dict('records') == [{
        'Date': '2025-01-02',
        'Team': 'QA Automation',
        'TeamSlug': 'qa-automation-team',
        'TeamMembers': '1',
        'Repository': 'R',
        'Contributor': 'carlos',
        'CommitSHA': 'X',
        'CommitMessage': 'Update',
        'CodeLines': '231',
        'AILines': '15',
        'AIPercentage': '6.5%',
        'Additions': '200',
        'Deletions': '31',
        'TotalChanges': '231',
    }]


def test_team_summary_rows(result, tmp_path):
    save_results(result, tmp_path)
    rows = read(tmp_path / 'daily-batches' / 'acme_daily_2025-01-04.csv').to_dict('records')

    commit, summary = rows
    assert commit['CommitMessage'] == 'First line second line'
    assert summary['Repository'] == 'Multiple'
    assert summary['Contributor'] == 'Team Summary'
    assert summary['CommitSHA'] == 'N/A'
    assert summary['CommitMessage'] == 'Aggregated daily activity (api)'
    assert (summary['CodeLines'], summary['Additions'], summary['Deletions']) == ('100', '70', '30')
    assert summary['AIPercentage'] == '40.0%'


def test_summary_file_schemas(result, tmp_path):
    save_results(result, tmp_path)
    summary = tmp_path / 'summary'

    series = read(summary / 'acme_time_series_2025-01-01_to_2025-01-05.csv')
    assert series.columns.tolist() == TIME_SERIES_COLUMNS
    assert len(series) == 10
    backend = series[series['Team'] == 'Backend']
    assert backend['CumulativeCodeLines'].tolist() == ['0', '0', '0', '150', '150']
    assert backend['DailyAIPercentage'].tolist()[3] == '30.0%'

    performance = read(summary / 'acme_team_performance_2025-01-01_to_2025-01-05.csv')
    assert performance.columns.tolist() == TEAM_PERFORMANCE_COLUMNS
    assert performance.set_index('Team').loc['Backend', 'TotalCommits'] == '1'

    activity = read(summary / 'acme_repository_activity_2025-01-01_to_2025-01-05.csv')
    assert activity.columns.tolist() == REPOSITORY_ACTIVITY_COLUMNS
    assert activity['DayOfWeek'].tolist() == ['Thursday', 'Saturday']
    assert activity['WeekNumber'].tolist() == ['1', '1']


def test_pull_requests_file(result, tmp_path):
    result.pull_requests = [PullRequestRecord(
        number=5, repository='api', contributor='alice', title='Feature', merged_at=datetime(2025, 1, 3, tzinfo=timezone.utc),
        additions=30, deletions=10, merge_commit_sha='m1', ai_lines=21, reason='Based on GitHub Copilot metrics API',
    )]
    save_results(result, tmp_path)

    frame = read(tmp_path / 'summary' / 'acme_pull_requests_2025-01-01_to_2025-01-05.csv')
    assert frame.columns.tolist() == PULL_REQUEST_COLUMNS
    assert frame.loc[0, 'AIPercentage'] == '52.5%'
    assert frame.loc[0, 'TotalChanges'] == '40'


def test_nothing_to_save(tmp_path):
    empty = CollectionResult(org='acme', start_date=None, end_date=None, repositories=0, total_commits=0)
    assert save_results(empty, tmp_path / 'out') == []
    assert not (tmp_path / 'out').exists()


def test_write_failure_is_logged(result, tmp_path, caplog):
    with patch.object(pd.DataFrame, 'to_csv', side_effect=OSError('disk full')):
        with caplog.at_level(logging.ERROR):
            assert save_results(result, tmp_path) == []
    assert 'disk full' in caplog.text


def test_daily_batches_read_back_to_the_same_totals(result, tmp_path):
    save_results(result, tmp_path)

    canonical = canonicalize(load_daily_batch_records(tmp_path))

    assert len(canonical) == len(result.canonical)
    assert sum(a.code_lines for a in canonical.values()) == sum(a.code_lines for a in result.canonical.values())
    assert sum(a.ai_lines for a in canonical.values()) == sum(a.ai_lines for a in result.canonical.values())
    assert sum(1 for a in canonical.values() if a.is_summary) == 1


def test_legacy_rows_without_additions(tmp_path):
    daily = tmp_path / 'daily-batches'
    daily.mkdir()
    pd.DataFrame([{
        'Date': '2025-01-04', 'Team': 'Backend', 'TeamSlug': 'backend', 'TeamMembers': 2, 'Repository': 'Multiple',
        'Contributor': 'Team Summary', 'CommitSHA': 'N/A', 'CommitMessage': 'Aggregated daily activity',
        'CodeLines': 120, 'AILines': 12, 'AIPercentage': '10.0%',
    }]).to_csv(daily / 'acme_daily_2025-01-04.csv', index=False)

    (record,) = load_daily_batch_records(tmp_path)

    assert record.code_lines == 120
    assert record.ai_lines == 12
    assert record.commit.sha == 'N/A'


def test_consolidate_daily_batches(result, tmp_path):
    save_results(result, tmp_path)

    path, frame = consolidate_daily_batches(tmp_path)

    assert path == tmp_path / CONSOLIDATED_FILENAME
    consolidated = read(path)
    assert consolidated.columns.tolist() == DAILY_BATCH_COLUMNS
    assert consolidated['Date'].tolist() == ['2025-01-02', '2025-01-04', '2025-01-04']
    assert consolidated['AIPercentage'].tolist()[0] == '6.5%'
    assert len(frame) == 3


def test_consolidate_without_batches(tmp_path):
    assert consolidate_daily_batches(tmp_path) is None


def test_helpers(result):
    assert range_label(None, date(2025, 1, 5)) == 'all_to_2025-01-05'
    assert clean_message('a\r\nb\nc' + 'x' * 300) == ('a b c' + 'x' * 300)[:200]
    table = team_stats_table(result.aggregation)
    assert table['Team Name'].tolist() == ['Backend', 'QA Automation']
    assert table['AI %'].tolist() == ['30.0%', '6.5%']
