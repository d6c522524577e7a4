import logging
import re
from pathlib import Path

import dash_bootstrap_components as dbc
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from dash import Dash, Input, Output, State, dash_table, dcc, html
from dash_bootstrap_templates import load_figure_template
from flask import jsonify, send_from_directory
from toolz import groupby

from .aggregation import aggregate, grand_totals, time_series
from .attribution import as_filter_date, as_filter_set, canonicalize, filter_records
from .config import DEFAULT_OUTPUT_DIR, DEFAULT_PORT
from .models import SUMMARY_CONTRIBUTOR, SUMMARY_REPOSITORY, percentage
from .reports import (
    DAILY_BATCH_COLUMNS,
    DAILY_BATCH_DIR,
    SUMMARY_DIR,
    TIME_SERIES_COLUMNS,
    format_percentage,
    list_csv_files,
    normalize_daily_batches,
    read_csv_frames,
    records_from_frame,
)

CSV_FILENAME = re.compile(r'^[\w.-]+\.csv$')
TOP_N = 10
TREND_COLUMNS = ['Date', 'DailyCodeLines', 'DailyAILines', 'CumulativeCodeLines', 'CumulativeAILines']
TIME_SERIES_NUMERIC_COLUMNS = [
    'DailyCodeLines', 'DailyAILines', 'CumulativeCodeLines', 'CumulativeAILines', 'ActiveContributors', 'CommitCount',
]
VALIDATION_COLUMNS = [
    {"name": "Date", "id": "Date"},
    {"name": "Team", "id": "Team"},
    {"name": "Contributor", "id": "Contributor"},
    {"name": "Repository", "id": "Repository"},
    {"name": "Commit", "id": "Commit"},
    {"name": "Code Lines", "id": "CodeLines"},
    {"name": "AI Lines", "id": "AILines"},
    {"name": "AI %", "id": "AIPercentage"},
]
STAT_CARDS = [
    ('total_code_lines', 'Total Code Lines'),
    ('total_ai_lines', 'AI-Assisted Lines'),
    ('ai_percentage', 'AI Assistance'),
    ('active_teams', 'Active Teams'),
    ('contributors', 'Contributors'),
    ('repositories', 'Repositories'),
    ('total_commits', 'Commits'),
]


def register_csv_routes(server, output_dir):
    """Expose the generated CSV files on the Flask server behind the dashboard."""
    root = Path(output_dir)

    @server.route('/api/csv-files')
    def csv_files():
        return jsonify({
            'dailyBatches': [
                {'name': p.name, 'path': f"{DAILY_BATCH_DIR}/{p.name}", 'type': 'daily-batch'}
                for p in list_csv_files(root / DAILY_BATCH_DIR)
            ],
            'summary': [
                {'name': p.name, 'path': f"{SUMMARY_DIR}/{p.name}", 'type': 'summary'}
                for p in list_csv_files(root / SUMMARY_DIR)
            ],
        })

    @server.route('/api/csv/<filename>')
    def csv_file(filename):
        if CSV_FILENAME.match(filename):
            for directory in (root / DAILY_BATCH_DIR, root / SUMMARY_DIR, root):
                if (directory / filename).is_file():
                    return send_from_directory(directory.resolve(), filename, mimetype='text/csv')
        return jsonify({'error': 'CSV file not found'}), 404


def load_daily_batch_frame(output_dir):
    frame = read_csv_frames(list_csv_files(Path(output_dir) / DAILY_BATCH_DIR), DAILY_BATCH_COLUMNS)
    return normalize_daily_batches(frame)


def load_time_series_frame(output_dir):
    paths = [p for p in list_csv_files(Path(output_dir) / SUMMARY_DIR) if '_time_series_' in p.name]
    frame = read_csv_frames(paths, TIME_SERIES_COLUMNS)
    for column in TIME_SERIES_COLUMNS:
        if column not in frame.columns:
            frame[column] = ''
    for column in TIME_SERIES_NUMERIC_COLUMNS:
        frame[column] = pd.to_numeric(frame[column], errors='coerce').fillna(0).astype(int)
    return frame[TIME_SERIES_COLUMNS]


def filter_options(records):
    teams = sorted({r.team.name for r in records})
    contributors = sorted({r.commit.contributor for r in records} - {SUMMARY_CONTRIBUTOR})
    repositories = sorted({r.commit.repository for r in records} - {SUMMARY_REPOSITORY})
    dates = [r.commit.date for r in records]
    return {
        'teams': teams,
        'contributors': contributors,
        'repositories': repositories,
        'start': min(dates).isoformat() if dates else None,
        'end': max(dates).isoformat() if dates else None,
    }


def trend_frame(frame):
    """Daily and cumulative AI percentages summed over every team in ``frame``."""
    frame = frame[TREND_COLUMNS].groupby('Date', as_index=False).sum().sort_values('Date')
    frame['DailyAIPercentage'] = [percentage(a, c) for a, c in zip(frame['DailyAILines'], frame['DailyCodeLines'])]
    frame['CumulativeAIPercentage'] = [
        percentage(a, c) for a, c in zip(frame['CumulativeAILines'], frame['CumulativeCodeLines'])
    ]
    return frame.reset_index(drop=True)


def _frame(rows, columns):
    return pd.DataFrame(rows, columns=columns)


def build_view(records, teams=None, contributors=None, repositories=None, start=None, end=None):
    """
    Everything the dashboard shows for one filter selection.

    Records go through ``filter_records``, ``canonicalize`` and ``aggregate``,
    the same path the CSV reports take, so the stat cards and every chart
    are computed from one set of canonical attributions.
    """
    filtered = filter_records(records, teams, contributors, repositories, start, end)
    canonical = canonicalize(filtered)
    aggregation = aggregate(canonical)

    series = time_series(aggregation)
    trend = trend_frame(_frame(
        [
            {
                'Date': row.date.isoformat(),
                'DailyCodeLines': row.daily_code_lines,
                'DailyAILines': row.daily_ai_lines,
                'CumulativeCodeLines': row.cumulative_code_lines,
                'CumulativeAILines': row.cumulative_ai_lines,
            }
            for row in series
        ],
        TREND_COLUMNS,
    ))

    team_frame = _frame(
        [
            {
                'Team': name,
                'CodeLines': summary.total_code_lines,
                'AILines': summary.total_ai_lines,
                'AIPercentage': summary.ai_percentage,
                'Commits': summary.commit_count,
                'Contributors': len(summary.contributors),
            }
            for name, summary in aggregation.by_team.items()
        ],
        ['Team', 'CodeLines', 'AILines', 'AIPercentage', 'Commits', 'Contributors'],
    )

    repo_frame = _frame(
        [
            {
                'Repository': name,
                'CodeLines': summary.total_code_lines,
                'AILines': summary.total_ai_lines,
                'AIPercentage': summary.ai_percentage,
                'Commits': summary.commit_count,
            }
            for name, summary in aggregation.by_repository.items()
            if summary.commit_count
        ],
        ['Repository', 'CodeLines', 'AILines', 'AIPercentage', 'Commits'],
    )

    commits = [a for a in canonical.values() if not a.is_summary]
    by_contributor = groupby(lambda a: a.commit.contributor, commits)
    contributor_frame = _frame(
        [
            {
                'Contributor': contributor,
                'CodeLines': sum(a.code_lines for a in attributions),
                'AILines': sum(a.ai_lines for a in attributions),
                'AIPercentage': percentage(sum(a.ai_lines for a in attributions), sum(a.code_lines for a in attributions)),
                'Commits': len(attributions),
            }
            for contributor, attributions in by_contributor.items()
        ],
        ['Contributor', 'CodeLines', 'AILines', 'AIPercentage', 'Commits'],
    )

    validation = [
        {
            'Date': a.commit.date.isoformat(),
            'Team': a.team.name,
            'Contributor': a.commit.contributor,
            'Repository': a.commit.repository,
            'Commit': a.commit.sha[:7] if not a.is_summary else a.commit.sha,
            'CodeLines': a.code_lines,
            'AILines': a.ai_lines,
            'AIPercentage': format_percentage(a.ai_percentage),
        }
        for a in sorted(canonical.values(), key=lambda a: (a.commit.date, a.team.name, a.commit.contributor), reverse=True)
    ]

    return {
        'totals': grand_totals(aggregation),
        'trend': trend,
        'teams': team_frame.sort_values('CodeLines', ascending=False),
        'repositories': repo_frame.sort_values('CodeLines', ascending=False),
        'contributors': contributor_frame.sort_values('CodeLines', ascending=False),
        'validation': validation,
    }


def build_fallback_view(frame, teams=None, start=None, end=None):
    """Totals and trend from time series summaries when no daily batches exist."""
    teams = as_filter_set(teams)
    start = as_filter_date(start)
    end = as_filter_date(end)
    if teams:
        frame = frame[frame['Team'].isin(teams) | frame['TeamSlug'].isin(teams)]
    if start:
        frame = frame[frame['Date'] >= start.isoformat()]
    if end:
        frame = frame[frame['Date'] <= end.isoformat()]

    code_lines = int(frame['DailyCodeLines'].sum())
    ai_lines = int(frame['DailyAILines'].sum())
    active = frame[(frame['DailyCodeLines'] > 0) | (frame['CommitCount'] > 0)]
    totals = {
        'total_code_lines': code_lines,
        'total_ai_lines': ai_lines,
        'ai_percentage': percentage(ai_lines, code_lines),
        'total_commits': int(frame['CommitCount'].sum()),
        'active_teams': active['Team'].nunique(),
        'contributors': None,
        'repositories': None,
    }
    return {'totals': totals, 'trend': trend_frame(frame)}


def stat_cards(totals):
    cards = []
    for key, label in STAT_CARDS:
        value = totals.get(key)
        if value is None:
            text = '-'
        elif key == 'ai_percentage':
            text = format_percentage(value)
        else:
            text = f"{value:,}"
        cards.append(dbc.Col(dbc.Card(dbc.CardBody([html.H4(text, className="card-title"), html.P(label, className="card-text")]), className="text-center"), md=True))
    return cards


def empty_figure(title, template):
    figure = go.Figure()
    figure.update_layout(title=title, template=template, annotations=[
        {'text': 'No data available for current filters', 'showarrow': False, 'xref': 'paper', 'yref': 'paper', 'x': 0.5, 'y': 0.5},
    ])
    return figure


def trend_figure(trend, template):
    title = 'AI Assistance Trend'
    if trend.empty:
        return empty_figure(title, template)
    figure = px.line(
        trend,
        x='Date',
        y=['DailyAIPercentage', 'CumulativeAIPercentage'],
        title=title,
        labels={'value': 'AI Assistance %', 'variable': ''},
        template=template,
    )
    figure.update_layout(font=dict(size=12))
    return figure


def bar_figure(frame, column, title, palette, template):
    if frame.empty:
        return empty_figure(title, template)
    figure = px.bar(
        frame.head(TOP_N),
        x=column,
        y='AIPercentage',
        title=title,
        hover_data=['CodeLines', 'AILines', 'Commits'],
        labels={'AIPercentage': 'AI Assistance %', 'CodeLines': 'Code Lines', 'AILines': 'AI Lines'},
        color=column,
        color_discrete_sequence=palette,
        template=template,
    )
    figure.update_layout(font=dict(size=12), showlegend=False)
    return figure


def table_stats(rows):
    code_lines = sum(row['CodeLines'] for row in rows)
    ai_lines = sum(row['AILines'] for row in rows)
    contributors = {row['Contributor'] for row in rows} - {SUMMARY_CONTRIBUTOR}
    repositories = {row['Repository'] for row in rows} - {SUMMARY_REPOSITORY}
    return (
        f"{len(rows)} rows, {code_lines:,} code lines, {ai_lines:,} AI lines "
        f"({format_percentage(percentage(ai_lines, code_lines))}), "
        f"{len(contributors)} contributors, {len(repositories)} repositories"
    )


def serve_layout(output_dir):
    daily = load_daily_batch_frame(output_dir)
    series = load_time_series_frame(output_dir)
    options = filter_options(records_from_frame(daily))
    if daily.empty and not series.empty:
        options['teams'] = sorted(str(team) for team in series['Team'].unique())
        options['start'] = series['Date'].min()
        options['end'] = series['Date'].max()

    color_mode_switch = html.Span(
        [
            dbc.Label(className="fa fa-moon", html_for="switch"),
            dbc.Switch(id="switch", value=False, className="d-inline-block ms-1", persistence=True),
            dbc.Label(className="fa fa-sun", html_for="switch"),
        ]
    )

    def dropdown(component_id, label, values):
        return dbc.Col([
            html.Label(label),
            dcc.Dropdown(id=component_id, options=[{'label': v, 'value': v} for v in values], multi=True),
        ], md=3)

    return dbc.Container([
        color_mode_switch,
        dcc.Store(id='daily-batches', data=daily.to_dict('records')),
        dcc.Store(id='time-series', data=series.to_dict('records')),
        dcc.Store(id='theme-store', data='light'),

        dbc.Row(dbc.Col(html.H1("GitHub Code Stats Dashboard"), className="text-center my-4")),

        dbc.Row([
            dropdown('team-filter', "Teams:", options['teams']),
            dropdown('contributor-filter', "Contributors:", options['contributors']),
            dropdown('repository-filter', "Repositories:", options['repositories']),
            dbc.Col([
                html.Label("Date Range:"),
                dcc.DatePickerRange(id='date-range', min_date_allowed=options['start'], max_date_allowed=options['end']),
            ], md=3),
        ], className="mb-4"),

        dbc.Row(id='stat-cards', className="mb-4"),

        dbc.Row([
            dbc.Col(dcc.Graph(id='trend-chart', className="border"), md=6),
            dbc.Col(dcc.Graph(id='team-chart', className="border"), md=6),
        ], className="mb-4"),
        dbc.Row([
            dbc.Col(dcc.Graph(id='repo-chart', className="border"), md=6),
            dbc.Col(dcc.Graph(id='contributor-chart', className="border"), md=6),
        ], className="mb-4"),

        dbc.Row([
            dbc.Col([
                html.H3("Commit Validation"),
                html.P(id='table-stats'),
                dash_table.DataTable(
                    id='validation-table',
                    columns=VALIDATION_COLUMNS,
                    data=[],
                    page_size=20,
                    style_table={'overflowX': 'auto'},
                    sort_action='native',
                    filter_action='native',
                    style_cell={'textAlign': 'left'},
                    style_data={},
                    style_header={},
                ),
            ], width=12)
        ]),
    ], fluid=True)


def create_app(output_dir=DEFAULT_OUTPUT_DIR):
    load_figure_template(["plotly_white", "minty_dark"])

    app = Dash(__name__, external_stylesheets=[dbc.themes.BOOTSTRAP, dbc.icons.FONT_AWESOME])
    app.title = "GitHub Code Stats Dashboard"
    register_csv_routes(app.server, output_dir)
    app.layout = lambda: serve_layout(output_dir)

    @app.callback(
        [
            Output('stat-cards', 'children'),
            Output('trend-chart', 'figure'),
            Output('team-chart', 'figure'),
            Output('repo-chart', 'figure'),
            Output('contributor-chart', 'figure'),
            Output('validation-table', 'data'),
            Output('table-stats', 'children'),
        ],
        [
            Input('team-filter', 'value'),
            Input('contributor-filter', 'value'),
            Input('repository-filter', 'value'),
            Input('date-range', 'start_date'),
            Input('date-range', 'end_date'),
            Input('switch', 'value'),
        ],
        [
            State('daily-batches', 'data'),
            State('time-series', 'data'),
        ]
    )
    def update_dashboard(teams, contributors, repositories, start, end, switch_on, daily, series):
        template = 'minty_dark' if switch_on else 'plotly_white'
        records = records_from_frame(pd.DataFrame(daily, columns=DAILY_BATCH_COLUMNS))

        if not records and series:
            view = build_fallback_view(pd.DataFrame(series, columns=TIME_SERIES_COLUMNS), teams, start, end)
            return (
                stat_cards(view['totals']),
                trend_figure(view['trend'], template),
                empty_figure('AI Assistance by Team', template),
                empty_figure('AI Assistance by Repository', template),
                empty_figure('AI Assistance by Contributor', template),
                [],
                "No daily batch data found, showing time series summaries.",
            )

        view = build_view(records, teams, contributors, repositories, start, end)
        return (
            stat_cards(view['totals']),
            trend_figure(view['trend'], template),
            bar_figure(view['teams'], 'Team', 'AI Assistance by Team', px.colors.qualitative.Set2, template),
            bar_figure(view['repositories'], 'Repository', f"Top {TOP_N} Repositories by Code Lines", px.colors.qualitative.Set3, template),
            bar_figure(view['contributors'], 'Contributor', f"Top {TOP_N} Contributors by Code Lines", px.colors.qualitative.Pastel, template),
            view['validation'],
            table_stats(view['validation']),
        )

    app.clientside_callback(
        """
        function(switchOn) {
            const theme = switchOn ? 'dark' : 'light';
            document.documentElement.setAttribute('data-bs-theme', theme);
            return theme;
        }
        """,
        Output("theme-store", "data"),
        Input("switch", "value"),
    )

    @app.callback(
        [
            Output('validation-table', 'style_data'),
            Output('validation-table', 'style_header'),
        ],
        [Input('theme-store', 'data')]
    )
    def update_table_styles(theme):
        if theme == 'dark':
            return {'backgroundColor': '#333', 'color': 'white'}, {'backgroundColor': '#555', 'color': 'white'}
        return {'backgroundColor': 'white', 'color': 'black'}, {'backgroundColor': '#f8f9fa', 'color': 'black'}

    return app


def run_dashboard(output_dir=DEFAULT_OUTPUT_DIR, host='127.0.0.1', port=DEFAULT_PORT, debug=False):
    app = create_app(output_dir)
    logging.info(f"Dashboard running at http://{host}:{port}")
    logging.info(f"Serving CSV files from '{Path(output_dir).resolve()}'")
    app.run(host=host, port=port, debug=debug)
