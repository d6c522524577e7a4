"""
Rough estimates of Copilot-assisted line counts.

None of these are classifiers. They scale the organization (or team) wide
number of Copilot lines accepted against the size of a single change, and
they never produce a signal when no Copilot metrics are available.
"""
import math

from .models import AIEstimate

# Largest share of a single commit that may be attributed to Copilot.
COMMIT_AI_RATIO_CAP = 0.7
# accepted / (additions * divisor) gives the per-commit ratio.
COMMIT_SCALE_DIVISOR = 10

# Repository-wide fallback when only weekly contributor stats are known.
REPOSITORY_AI_RATIO_CAP = 0.4
REPOSITORY_SCALE_DIVISOR = 5

# Pull requests whose merge commit could not be fetched.
PR_DETAIL_UNAVAILABLE_RATIO_CAP = 0.3
PR_DETAIL_UNAVAILABLE_DIVISOR = 10000
# Pull requests without a merge commit sha.
PR_NO_MERGE_COMMIT_RATIO_CAP = 0.2
PR_NO_MERGE_COMMIT_DIVISOR = 20000

REASON_COMMIT = 'Based on GitHub Copilot metrics API'
REASON_NO_METRICS = 'No Copilot metrics available'
REASON_NO_ADDITIONS = 'Commit has no additions'
REASON_PR_DETAIL_UNAVAILABLE = 'Estimated based on organization Copilot metrics (commit details unavailable)'
REASON_PR_NO_MERGE_COMMIT = 'Estimated based on organization Copilot usage patterns'


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def has_metrics(metrics):
    return bool(metrics is not None and metrics.success and metrics.total_code_lines_accepted > 0)


def estimate_ai_lines(commit, metrics):
    if not has_metrics(metrics):
        return AIEstimate(False, 0, REASON_NO_METRICS)
    if commit.additions <= 0:
        return AIEstimate(False, 0, REASON_NO_ADDITIONS)

    ratio = min(COMMIT_AI_RATIO_CAP, metrics.total_code_lines_accepted / (commit.additions * COMMIT_SCALE_DIVISOR))
    return AIEstimate(True, _round_half_up(commit.additions * ratio), REASON_COMMIT)


def estimate_repository_ai_lines(code_lines, metrics):
    if not has_metrics(metrics) or code_lines <= 0:
        return 0
    ratio = min(REPOSITORY_AI_RATIO_CAP, metrics.total_code_lines_accepted / (code_lines * REPOSITORY_SCALE_DIVISOR))
    return _round_half_up(code_lines * ratio)


def estimate_pull_request_ai_lines(pull_request, metrics, merge_commit=None):
    """
    Estimate AI lines for a merged pull request.

    ``merge_commit`` is the CommitRecord of the merge commit when its detail
    could be fetched; the commit heuristic is then applied to it. Otherwise a
    flatter, more conservative ratio of the PR size is used.
    """
    if not has_metrics(metrics):
        return AIEstimate(False, 0, REASON_NO_METRICS)

    if merge_commit is not None:
        return estimate_ai_lines(merge_commit, metrics)

    if pull_request.merge_commit_sha:
        ratio = min(PR_DETAIL_UNAVAILABLE_RATIO_CAP, metrics.total_code_lines_accepted / PR_DETAIL_UNAVAILABLE_DIVISOR)
        reason = REASON_PR_DETAIL_UNAVAILABLE
    else:
        ratio = min(PR_NO_MERGE_COMMIT_RATIO_CAP, metrics.total_code_lines_accepted / PR_NO_MERGE_COMMIT_DIVISOR)
        reason = REASON_PR_NO_MERGE_COMMIT

    ai_lines = _round_half_up(pull_request.code_lines * ratio)
    if ai_lines <= 0:
        return AIEstimate(False, 0, reason)
    return AIEstimate(True, ai_lines, reason)
