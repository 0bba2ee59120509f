"""Tester workload and failure aggregation over fetched scripts.

Pure functions: no I/O, inputs are never mutated and every call recomputes
from scratch. Each script contributes its latest run only.
"""

from datetime import timezone
from typing import Iterable, Optional, Sequence

from testpad_rounds.models import (
    AggregationReport,
    Assignment,
    FailedTest,
    ProgressCounters,
    Run,
    RunState,
    Script,
    ScriptContext,
    TesterInsights,
    TesterSummary,
)

UNASSIGNED = "Unassigned"


def _created_key(run: Run) -> float:
    if run.created is None:
        return float("-inf")
    created = run.created
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created.timestamp()


def latest_run(runs: Sequence[Run]) -> Optional[Run]:
    """Run with the greatest ``created``; the first one wins a tie.

    Runs without a timestamp only win when no run has one.
    """
    latest: Optional[Run] = None
    for run in runs:
        if latest is None or _created_key(run) > _created_key(latest):
            latest = run
    return latest


def resolve_tester(run: Run) -> str:
    """Assignee name, then legacy tester, then ``_tester`` header."""
    candidates = (
        run.assignee.name if run.assignee else None,
        run.tester,
        run.headers.get("_tester"),
    )
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return UNASSIGNED


def run_status(run: Run) -> str:
    return run.state.value if run.state else "unknown"


def run_needs_attention(run: Run) -> bool:
    """Any fail/block/query result, or counters saying so when results are absent."""
    if run.results:
        return any(r.outcome.needs_attention for r in run.results.values())
    return run.progress.attention > 0


def collect_failed_tests(contexts: Iterable[ScriptContext]) -> list[FailedTest]:
    """Fail/block/query results of each script's latest run, in script order."""
    failed: list[FailedTest] = []
    for ctx in contexts:
        run = latest_run(ctx.script.runs)
        if run is None:
            continue
        labels = ctx.script.test_labels()
        tester = resolve_tester(run)
        for test_id, result in run.results.items():
            if not result.outcome.needs_attention:
                continue
            failed.append(
                FailedTest(
                    project_name=ctx.project_name,
                    folder_name=ctx.folder_name,
                    script_id=ctx.script.id,
                    script_name=ctx.script.name,
                    test_id=test_id,
                    test_name=labels.get(test_id),
                    outcome=result.outcome,
                    comment=result.comment,
                    issue=result.issue,
                    tester=tester,
                    run_id=run.id,
                    run_created=run.created,
                )
            )
    return failed


def summarize_testers(contexts: Iterable[ScriptContext]) -> list[TesterSummary]:
    """Per-tester counts over latest runs, testers in order of first appearance."""
    testers: dict[str, TesterSummary] = {}

    for ctx in contexts:
        run = latest_run(ctx.script.runs)
        if run is None:
            continue

        name = resolve_tester(run)
        summary = testers.get(name)
        if summary is None:
            summary = testers[name] = TesterSummary(name=name)
        if not summary.email and run.assignee and run.assignee.email:
            summary.email = run.assignee.email

        summary.total_runs += 1
        if run.state == RunState.COMPLETE:
            summary.completed_runs += 1
        elif run.state == RunState.STARTED:
            summary.in_progress_runs += 1
        if run_needs_attention(run):
            summary.failed_runs += 1

        summary.assignments.append(
            Assignment(
                run_id=run.id,
                script_id=ctx.script.id,
                script_name=ctx.script.name,
                project_name=ctx.project_name,
                status=run_status(run),
                progress_summary=run.progress.summary
                or f"{run.progress.pass_}/{run.progress.total} passed",
            )
        )

    return list(testers.values())


def aggregate_progress(scripts: Iterable[Script]) -> ProgressCounters:
    """Summed script progress with a ``"<pass rate>% complete"`` summary."""
    total = ProgressCounters()
    for script in scripts:
        total = total + script.progress
    total.summary = f"{total.completion_rate}% complete"
    return total


def tester_insights(summaries: Sequence[TesterSummary]) -> TesterInsights:
    if not summaries:
        return TesterInsights()
    # max() keeps the first of equal elements
    top = max(summaries, key=lambda t: t.completed_runs)
    busiest = max(summaries, key=lambda t: t.total_runs)
    hunter = max(summaries, key=lambda t: t.failed_runs)
    return TesterInsights(
        top_performer=top.name,
        busiest=busiest.name,
        bug_hunter=hunter.name if hunter.failed_runs > 0 else None,
    )


def aggregate(contexts: Sequence[ScriptContext]) -> AggregationReport:
    testers = summarize_testers(contexts)
    return AggregationReport(
        testers=testers,
        failed_tests=collect_failed_tests(contexts),
        insights=tester_insights(testers),
    )
