"""
Specified-Line Segmentation

Walks a patient's specified-only DayRecords in date order and numbers
"specified lines": a new specified line starts whenever the set of active
drug groups differs from the preceding specified record's set. Adding or
removing a single drug group is enough; order is irrelevant.
"""

from dataclasses import dataclass
from typing import FrozenSet, List, Optional

from .models import DayRecord
from .structured_logging import get_logger

PHASE = "SEGMENT"


@dataclass
class SegmenterState:
    """Retained state of the specified-line fold for one patient."""
    current_set: Optional[FrozenSet[int]] = None
    current_line: int = 0

    def advance(self, drug_groups: FrozenSet[int]) -> int:
        if self.current_set is None or drug_groups != self.current_set:
            self.current_line += 1
            self.current_set = drug_groups
        return self.current_line


def assign_specified_lines(records: List[DayRecord]) -> int:
    """
    Tag each specified DayRecord with its specified-line number (in place).

    Unspecified records are skipped and keep specified_line=None.

    Args:
        records: DayRecords of one patient in date order

    Returns:
        Number of specified lines found
    """
    state = SegmenterState()
    for record in records:
        if record.is_unspecified:
            record.specified_line = None
            continue
        record.specified_line = state.advance(record.drug_groups)

    if records:
        log = get_logger(__name__, patient_id=records[0].patient_id, phase=PHASE)
        log.debug(f"Found {state.current_line} specified lines")
    return state.current_line
