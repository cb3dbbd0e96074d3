"""
Unspecified-Record Interleaving
===============================
Assigns every DayRecord of a patient (specified or unspecified) a
provisional treatment line number in two passes over the date-ordered
records:

Forward pass - sequential fold carrying the retained values
  prev_date, prev_specified_line, the last confirmed specified line (with
  the provisional line it was confirmed on) and the provisional line just
  assigned:

  1. First record: line 1.
  2. Boundary candidate when
       - the gap from the previous record exceeds gap_days, or
       - current and previous specified lines are both known and differ, or
       - the previous record is unspecified and the current specified line
         differs from the last confirmed one.
     Then a new specified line following an in-tolerance unspecified run
     increments only if that run did not already open a new line; any
     other boundary increments.
  3. No boundary: keep the current line, except that a specified record
     following an unspecified one re-attaches to the confirmed line when
     it continues the confirmed specified line.

Backward pass - reverse date order: an unspecified record whose line
exceeds the (corrected) line of the record after it is pulled down to that
line. This folds unspecified runs trapped between two records of the same
specified line back into that line.
"""

from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from .exception_handling import FatalError
from .models import DayRecord
from .structured_logging import get_logger

PHASE = "INTERLEAVE"


@dataclass
class InterleaveState:
    """Retained values of the forward pass for one patient."""
    prev_date: Optional[date] = None
    prev_specified_line: Optional[int] = None
    confirmed_specified_line: Optional[int] = None
    confirmed_line: int = 0
    line: int = 0

    def confirm(self, record: DayRecord):
        self.confirmed_specified_line = record.specified_line
        self.confirmed_line = record.provisional_line


def _next_line(record: DayRecord, state: InterleaveState, gap_days: int) -> int:
    """Provisional line for record given the retained state (forward rules 2-3)."""
    gap = (record.event_date - state.prev_date).days
    current = record.specified_line
    previous = state.prev_specified_line
    after_confirmed_unspecified = (
        current is not None and previous is None and state.confirmed_specified_line is not None
    )

    continues_confirmed = after_confirmed_unspecified and current == state.confirmed_specified_line
    new_after_unspecified = after_confirmed_unspecified and not continues_confirmed
    specified_conflict = current is not None and previous is not None and current != previous

    if gap > gap_days or specified_conflict or new_after_unspecified:
        if new_after_unspecified and gap <= gap_days and state.line > state.confirmed_line:
            # The unspecified run already opened the new line
            return state.line
        return state.line + 1

    if continues_confirmed:
        return state.confirmed_line
    return state.line


def forward_pass(records: List[DayRecord], gap_days: int) -> InterleaveState:
    """
    Assign provisional line numbers in date order (in place).

    Args:
        records: Date-ordered DayRecords of one patient, specified records
            already tagged with their specified line
        gap_days: Gap threshold in days

    Returns:
        Final fold state
    """
    state = InterleaveState()
    for record in records:
        if state.prev_date is None:
            record.provisional_line = 1
        else:
            record.provisional_line = _next_line(record, state, gap_days)

        state.line = record.provisional_line
        state.prev_date = record.event_date
        state.prev_specified_line = record.specified_line
        if record.specified_line is not None:
            state.confirm(record)
    return state


def backward_pass(records: List[DayRecord]) -> int:
    """
    Pull trapped unspecified records down to the line of the record after them.

    Args:
        records: Date-ordered DayRecords after the forward pass

    Returns:
        Number of records corrected
    """
    corrected = 0
    following_line: Optional[int] = None
    for record in reversed(records):
        if (following_line is not None and record.is_unspecified
                and record.provisional_line > following_line):
            record.provisional_line = following_line
            corrected += 1
        following_line = record.provisional_line
    return corrected


def interleave_unspecified(records: List[DayRecord], gap_days: int) -> List[DayRecord]:
    """
    Run both passes over one patient's DayRecords.

    Args:
        records: DayRecords of one patient in date order
        gap_days: Gap threshold in days

    Returns:
        The same records with provisional_line set; line numbers are
        non-decreasing in date order but not necessarily dense
    """
    if not records:
        return records

    log = get_logger(__name__, patient_id=records[0].patient_id, phase=PHASE)

    forward_pass(records, gap_days)
    corrected = backward_pass(records)
    if corrected:
        log.debug(f"Pulled {corrected} trapped unspecified records into the preceding line")

    for earlier, later in zip(records, records[1:]):
        if later.provisional_line < earlier.provisional_line:
            raise FatalError(
                f"Provisional lines out of order on {later.event_date} "
                f"({earlier.provisional_line} -> {later.provisional_line})",
                phase=PHASE,
                patient_id=records[0].patient_id
            )
    return records
