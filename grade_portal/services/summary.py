from __future__ import annotations

from ..models.outcome import UploadOutcome, UploadRejected

"""SUMMARY line rendering for an upload outcome.

Formats:
    SUMMARY status=success rows={n} new_students={n} grades={n} skipped={n} elapsed_sec={s}
    SUMMARY status=rejected errors={n}
"""


def format_seconds(value: float) -> str:
    """Render seconds without scientific notation or a trailing '.0'."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_body(outcome: UploadOutcome) -> str:
    """Key=value fields of the SUMMARY line, without the label."""
    if isinstance(outcome, UploadRejected):
        return f"status=rejected errors={outcome.total_errors}"
    return (
        f"status=success "
        f"rows={outcome.rows_processed} "
        f"new_students={outcome.new_students} "
        f"grades={outcome.grades_written} "
        f"skipped={outcome.skipped_rows} "
        f"elapsed_sec={format_seconds(outcome.elapsed_seconds)}"
    )


def render_summary_line(outcome: UploadOutcome) -> str:
    """Render the SUMMARY line for ``outcome``.

    Examples:
        >>> from grade_portal.models.outcome import UploadSuccess
        >>> render_summary_line(UploadSuccess(rows_processed=2, new_students=2, grades_written=2))
        'SUMMARY status=success rows=2 new_students=2 grades=2 skipped=0 elapsed_sec=0'
        >>> render_summary_line(UploadRejected(messages=["Row 2: x"] * 5, remaining=2))
        'SUMMARY status=rejected errors=7'
    """
    return f"SUMMARY {render_summary_body(outcome)}"
