"""
Line Boundary Calculation

start    = first date in the line
raw end  = min(last date + gap_days, follow-up end)
trimmed  = processed in reverse line order; a line ending on or after the
           next line's start is clipped to the day before it
duration = end - start in days, must be >= 0
"""

from datetime import date, timedelta
from typing import List, Optional

from .class_resolution import ResolvedLine
from .exception_handling import DataValidationError
from .models import TreatmentLine
from .structured_logging import get_logger

PHASE = "BOUNDARIES"


def raw_end_date(last_date: date, gap_days: int, followup_end: Optional[date]) -> date:
    end = last_date + timedelta(days=gap_days)
    if followup_end is not None and followup_end < end:
        end = followup_end
    return end


def calculate_boundaries(
    lines: List[ResolvedLine],
    gap_days: int,
    followup_end: Optional[date] = None,
    patient_id: Optional[str] = None
) -> List[TreatmentLine]:
    """
    Compute start, end and duration for each resolved line.

    Args:
        lines: Visible lines of one patient in line order
        gap_days: Gap threshold in days
        followup_end: Patient's follow-up end date (None = uncapped)
        patient_id: Patient identifier

    Returns:
        TreatmentLines in line order

    Raises:
        DataValidationError: If a line ends before it starts
    """
    if not lines:
        return []

    if patient_id is None:
        patient_id = lines[0].records[0].patient_id
    log = get_logger(__name__, patient_id=patient_id, phase=PHASE)

    starts = [line.records[0].event_date for line in lines]
    ends = [raw_end_date(line.records[-1].event_date, gap_days, followup_end) for line in lines]

    # Reverse order: clip each line against the start of the line after it
    for i in range(len(lines) - 2, -1, -1):
        next_start = starts[i + 1]
        if ends[i] >= next_start:
            ends[i] = next_start - timedelta(days=1)

    treatment_lines = []
    for line, start, end in zip(lines, starts, ends):
        log.update_context(line=line.line_number)
        duration = (end - start).days
        if duration < 0:
            raise DataValidationError(
                f"Line {line.line_number} ends {end} before it starts {start} "
                f"(follow-up end {followup_end}); check window filtering upstream",
                phase=PHASE,
                patient_id=patient_id,
                line_number=line.line_number
            )

        treatment_lines.append(TreatmentLine(
            patient_id=patient_id,
            line_number=line.line_number,
            start_date=start,
            end_date=end,
            duration_days=duration,
            therapy_classes=line.classes,
            has_specified=line.has_specified,
            drug_groups=line.drug_groups,
            dates=[r.event_date for r in line.records],
        ))
        log.debug(f"{start} to {end} ({duration} days)")

    log.update_context(line=None)
    log.debug(f"Computed boundaries for {len(treatment_lines)} lines")
    return treatment_lines
