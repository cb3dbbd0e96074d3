"""
Per-Patient Treatment Line Pipeline
===================================
Runs the derivation stages for one patient, strictly in order:

    aggregate same-date events -> specified-line segmentation ->
    unspecified interleaving -> class resolution -> boundaries

and builds the output tables (one row per line, and the optional long
format with one row per input event).
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

import pandas as pd

from .aggregation import aggregate_same_date
from .boundaries import calculate_boundaries
from .class_resolution import resolve_lines
from .cohort import EVENT_COLUMNS
from .config import TreatmentLineConfig
from .exception_handling import RecoverableError
from .interleaving import interleave_unspecified
from .models import TreatmentLine, format_class_list
from .segmentation import assign_specified_lines
from .structured_logging import get_logger

LINE_COLUMNS = [
    'patient_id', 'line_number', 'start_date', 'end_date', 'duration_days',
    'therapy_classes', 'has_specified', 'drug_groups', 'n_days', 'needs_review',
]
LONG_COLUMNS = EVENT_COLUMNS + [
    'line_number', 'line_start', 'line_end', 'line_therapy_classes', 'discarded_same_day',
]


@dataclass
class PatientResult:
    """Derived lines (and optional long-format rows) for one patient"""
    patient_id: str
    lines: List[TreatmentLine]
    long_rows: Optional[pd.DataFrame] = None
    issues: List[RecoverableError] = field(default_factory=list)


def _as_date(value) -> Optional[date]:
    if value is None or pd.isna(value):
        return None
    return pd.Timestamp(value).date()


def derive_patient_lines(
    patient_id: str,
    patient_events: pd.DataFrame,
    followup_end=None,
    config: Optional[TreatmentLineConfig] = None
) -> PatientResult:
    """
    Derive the treatment lines of a single patient.

    Args:
        patient_id: Patient identifier
        patient_events: Normalized, window-filtered events of this patient
            (may be empty; dateless rows are allowed)
        followup_end: Follow-up end date (Timestamp/date/None)
        config: Run configuration (defaults when omitted)

    Returns:
        PatientResult with lines in line order and the recoverable issues
        met on the way (reported by the cohort run)
    """
    config = config or TreatmentLineConfig()
    log = get_logger(__name__, patient_id=patient_id)
    issues: List[RecoverableError] = []

    dated = patient_events[patient_events['event_date'].notna()]
    undated = len(patient_events) - len(dated)
    if undated:
        issues.append(RecoverableError(
            f"{undated} events without a date",
            phase="AGGREGATE",
            patient_id=patient_id,
            recovery_action="excluded from segmentation, reported on line 0"
        ))

    records, discarded = aggregate_same_date(
        dated, config.drug_group_count, config.class_separator, patient_id=patient_id, issues=issues
    )
    assign_specified_lines(records)
    interleave_unspecified(records, config.gap_days)
    resolved = resolve_lines(records, config.class_order)
    lines = calculate_boundaries(resolved, config.gap_days, _as_date(followup_end), patient_id=patient_id)

    log.info(f"Derived {len(lines)} treatment lines from {len(records)} treatment days")

    long_rows = None
    if config.emit_long_format:
        long_rows = build_long_format(patient_events, lines, discarded, config)
        log.debug(f"Built {len(long_rows)} long-format rows")
    return PatientResult(patient_id=patient_id, lines=lines, long_rows=long_rows, issues=issues)


def lines_to_frame(lines: List[TreatmentLine], config: Optional[TreatmentLineConfig] = None) -> pd.DataFrame:
    """Convert TreatmentLines into the output line table."""
    config = config or TreatmentLineConfig()
    rows = [line.to_dict(config.class_order, config.class_separator) for line in lines]
    df = pd.DataFrame(rows, columns=LINE_COLUMNS)
    for column in ('start_date', 'end_date'):
        df[column] = pd.to_datetime(df[column])
    return df


def build_long_format(
    patient_events: pd.DataFrame,
    lines: List[TreatmentLine],
    discarded: pd.Index,
    config: TreatmentLineConfig
) -> pd.DataFrame:
    """
    One row per input event augmented with its resolved line.

    Dateless events carry line 0 and no line bounds.
    """
    by_date: Dict[date, TreatmentLine] = {}
    for line in lines:
        for line_date in line.dates:
            by_date[line_date] = line

    long_df = patient_events[EVENT_COLUMNS].copy()
    matched = [
        by_date.get(ts.date()) if pd.notna(ts) else None
        for ts in long_df['event_date']
    ]

    long_df['line_number'] = [line.line_number if line else 0 for line in matched]
    long_df['line_start'] = pd.to_datetime([line.start_date if line else None for line in matched])
    long_df['line_end'] = pd.to_datetime([line.end_date if line else None for line in matched])
    long_df['line_therapy_classes'] = [
        format_class_list(line.therapy_classes, config.class_order, config.class_separator) if line else ''
        for line in matched
    ]
    long_df['discarded_same_day'] = long_df.index.isin(discarded)
    return long_df[LONG_COLUMNS]
