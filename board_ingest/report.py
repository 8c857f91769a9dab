from __future__ import annotations

from typing import Any, Mapping

from .batch import BatchSummary, ItemState, OutcomeKind


def _run_status(summary: BatchSummary) -> str:
    if summary.total == 0:
        return "empty"
    if summary.error == 0:
        return "completed"
    if summary.success + summary.duplicate == 0:
        return "failed"
    return "completed_with_errors"


def build_run_report(summary: BatchSummary) -> dict[str, Any]:
    st = _run_status(summary)
    fetch_errors = summary.count(OutcomeKind.FETCH_ERROR)
    transform_errors = summary.count(OutcomeKind.TRANSFORM_ERROR)
    save_errors = summary.count(OutcomeKind.SAVE_ERROR)

    details: dict[str, Any] = summary.as_dict()
    failed = [
        {"index": r.index, "source": r.source, "outcome": r.outcome.value, "error": r.error}
        for r in summary.results
        if r.state is ItemState.ERROR
    ]
    if failed:
        details["failed_items"] = failed

    if st == "empty":
        text = "Nothing to import (no URLs after the start offset)."
    else:
        text = (
            f"Processed {summary.total} item(s): {summary.success} saved, "
            f"{summary.duplicate} already in board, {summary.error} failed "
            f"({summary.success_rate_pct:.1f}% success)."
        )

    recommendations: list[str] = []
    if fetch_errors:
        recommendations.append(
            "Fetch errors: check the URLs are public post links and the API key is valid; "
            "raise batch.inter_item_delay_ms if the API is throttling."
        )
    if transform_errors:
        recommendations.append(
            "Missing-content errors: the API returned a payload without an owner or post id; "
            "re-check those URLs in run.log (event=item_missing_content)."
        )
    if save_errors:
        recommendations.append(
            "Save errors: the datastore rejected writes; set retry.max_attempts > 1 to retry "
            "transient failures."
        )
    if summary.error and summary.results:
        first_failed = min(r.index for r in summary.results if r.state is ItemState.ERROR)
        recommendations.append(f"Re-run failed items with --start {first_failed} once fixed.")

    return {
        "status": st,
        "summary": text,
        "details": details,
        "recommendations": recommendations,
    }


def format_summary(summary: BatchSummary) -> str:
    lines = [
        "Import complete",
        f"  Success:      {summary.success}",
        f"  Skipped:      {summary.duplicate} (already in board)",
        f"  Errors:       {summary.error}",
        f"  Total:        {summary.total}",
        f"  Success rate: {summary.success_rate_pct:.1f}%",
    ]
    return "\n".join(lines)


def format_run_report(report: Mapping[str, Any]) -> str:
    status = str(report.get("status") or "").strip() or "unknown"
    text = str(report.get("summary") or "").strip() or f"Run finished ({status})."

    lines: list[str] = [text]
    recs = report.get("recommendations")
    if isinstance(recs, list) and recs:
        lines.append("Recommendations:")
        for r in recs:
            t = str(r or "").strip()
            if t:
                lines.append(f"- {t}")

    return "\n".join(lines)
