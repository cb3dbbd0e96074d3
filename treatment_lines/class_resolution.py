"""
Line Renumbering and Class Resolution

Turns provisional line groups into visible, densely numbered lines with a
resolved therapy class list:

  Step A  the first record of a line seeds the line's class list
          (specified classes if present, else the candidate list)
  Step B  each later record keeps the list when any of its classes already
          appears in it, otherwise replaces it (most recent wins).
          Specified evidence supersedes a list seeded only by unspecified
          records; an unspecified record never replaces a specified list.
  Step C  renumber 1..k; a line whose classes overlap the previous line's,
          where the previous visible line is a single unspecified
          record, continues that line instead of opening a new one
  Step D  lines without specified evidence and several candidate classes
          are labelled "Unspecified"; a single candidate class is kept
  Step E  classes are put in canonical order, "Other"/"Unspecified" last
"""

from dataclasses import dataclass, field
from itertools import groupby
from typing import FrozenSet, List, Sequence, Tuple

from .models import (
    DEFAULT_CLASS_ORDER,
    ClassList,
    DayRecord,
    TherapyClass,
    classes_overlap,
    order_classes,
)
from .structured_logging import get_logger

PHASE = "RESOLVE"


@dataclass
class ResolvedLine:
    """A visible line: its records and resolved classes"""
    line_number: int
    records: List[DayRecord] = field(default_factory=list)
    classes: ClassList = ()
    has_specified: bool = False

    @property
    def drug_groups(self) -> FrozenSet[int]:
        groups = set()
        for record in self.records:
            groups.update(record.drug_groups)
        return frozenset(groups)


def resolve_line_classes(records: Sequence[DayRecord]) -> Tuple[ClassList, bool]:
    """
    Steps A and B: fold the class evidence of one line's records.

    Records without any class evidence are skipped so they cannot erase
    the list.

    Returns:
        Tuple of (class list, whether the list comes from specified evidence)
    """
    running: ClassList = ()
    from_specified = False

    for record in records:
        own = record.evidence_classes
        if not own:
            continue
        specified = not record.is_unspecified

        if not running:
            running, from_specified = own, specified
        elif specified and not from_specified:
            running, from_specified = own, True
        elif not specified and from_specified:
            continue
        elif not classes_overlap(own, running):
            running = own

    return running, from_specified


def collapse_unspecified(classes: ClassList, has_specified: bool) -> ClassList:
    """Step D: generic label for ambiguous unspecified-only lines."""
    if has_specified or len(classes) <= 1:
        return classes
    return (TherapyClass.UNSPECIFIED,)


def _is_single_unspecified(line: ResolvedLine) -> bool:
    # A line that already absorbed a continuation holds two or more records
    return len(line.records) == 1 and line.records[0].is_unspecified


def resolve_lines(records: List[DayRecord],
                  class_order: Sequence[str] = DEFAULT_CLASS_ORDER) -> List[ResolvedLine]:
    """
    Group records by provisional line and resolve visible lines.

    Args:
        records: Date-ordered DayRecords of one patient with provisional
            lines set (non-decreasing)
        class_order: Canonical class precedence

    Returns:
        Visible lines numbered 1..k in date order
    """
    if not records:
        return []

    log = get_logger(__name__, patient_id=records[0].patient_id, phase=PHASE)

    lines: List[ResolvedLine] = []
    for provisional, group in groupby(records, key=lambda r: r.provisional_line):
        group_records = list(group)
        classes, _ = resolve_line_classes(group_records)

        if lines and _is_single_unspecified(lines[-1]) and classes_overlap(classes, lines[-1].classes):
            current = lines[-1]
            current.records.extend(group_records)
            log.debug(f"Provisional line {provisional} continues line {current.line_number}")
        else:
            current = ResolvedLine(line_number=len(lines) + 1, records=group_records)
            lines.append(current)

        current.classes, _ = resolve_line_classes(current.records)
        current.has_specified = any(not r.is_unspecified for r in current.records)

    for line in lines:
        line.classes = order_classes(collapse_unspecified(line.classes, line.has_specified), class_order)
        if not line.classes:
            log.warning(f"Line {line.line_number} has no resolvable therapy class; flagged for review")

    return lines
