"""
Treatment Line Data Models

Dataclass-based models for the treatment line derivation workflow:
  - TherapyClass: the canonical therapy classes a drug group can belong to
  - Event: one classified therapy contact (patient, date, drug group)
  - DayRecord: all events of one patient-date collapsed into one unit
  - TreatmentLine: the final per-patient episode with boundaries

Class lists are ordered tuples of TherapyClass (first-seen order, no
duplicates). Overlap tests are set intersections.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

UNSPECIFIED_DRUG_GROUP = 0


class TherapyClass(Enum):
    """Canonical therapy classes, declared in default precedence order"""
    PD_L1_PD_1 = "PD-L1/PD-1"
    CHEMO = "Chemo"
    TKI = "TKI"
    ANGIOGENESIS_INHIBITOR = "Angiogenesis-Inhibitor"
    PARP = "PARP"
    HER_2 = "HER-2"
    IFN_ALPHA_IL_2 = "IFN-alpha/IL-2"
    BCG = "BCG"
    OTHER = "Other"
    UNSPECIFIED = "Unspecified"

    @classmethod
    def from_label(cls, label: str) -> 'TherapyClass':
        """
        Look up a class by its label (case-insensitive).

        Raises:
            ValueError: If the label is not a known therapy class
        """
        key = label.strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        raise ValueError(f"Unknown therapy class label: {label!r}")


DEFAULT_CLASS_ORDER: List[str] = [member.value for member in TherapyClass]

# Always rendered after every other class, in this order
TRAILING_CLASSES = (TherapyClass.OTHER, TherapyClass.UNSPECIFIED)

ClassList = Tuple[TherapyClass, ...]


def unique_classes(classes: Iterable[TherapyClass]) -> ClassList:
    """Deduplicate classes keeping first-seen order."""
    seen = []
    for therapy_class in classes:
        if therapy_class not in seen:
            seen.append(therapy_class)
    return tuple(seen)


def classes_overlap(left: Sequence[TherapyClass], right: Sequence[TherapyClass]) -> bool:
    """True when the two class lists share at least one class."""
    return bool(set(left) & set(right))


def parse_class_list(value: Any, separator: str = "+") -> Tuple[ClassList, List[str]]:
    """
    Parse a separator-joined class string into a class list.

    Args:
        value: Joined labels (e.g. "Chemo+TKI"), a sequence of labels, or a missing value
        separator: Label separator

    Returns:
        Tuple of (parsed class list, labels that could not be recognised)
    """
    if value is None:
        return (), []
    if isinstance(value, float) and value != value:  # NaN from pandas
        return (), []

    if isinstance(value, str):
        labels = [part.strip() for part in value.split(separator)]
    else:
        labels = [str(part).strip() for part in value]

    parsed = []
    unknown = []
    for label in labels:
        if not label:
            continue
        try:
            parsed.append(TherapyClass.from_label(label))
        except ValueError:
            unknown.append(label)
    return unique_classes(parsed), unknown


def order_classes(classes: Iterable[TherapyClass], class_order: Sequence[str]) -> ClassList:
    """
    Sort classes by the configured precedence list.

    "Other" and "Unspecified" always sort last, whatever their position
    in class_order. Classes missing from class_order sort after the
    ranked ones and before the trailing pair.
    """
    rank = {TherapyClass.from_label(label): i for i, label in enumerate(class_order)}
    unranked = len(rank)
    trailing_rank = {cls: unranked + 1 + i for i, cls in enumerate(TRAILING_CLASSES)}

    def sort_key(therapy_class: TherapyClass) -> int:
        if therapy_class in trailing_rank:
            return trailing_rank[therapy_class]
        return rank.get(therapy_class, unranked)

    return tuple(sorted(unique_classes(classes), key=sort_key))


def format_class_list(classes: Iterable[TherapyClass], class_order: Sequence[str],
                      separator: str = "+") -> str:
    """Render a class list in canonical order, e.g. 'PD-L1/PD-1+Chemo+Other'."""
    return separator.join(c.value for c in order_classes(classes, class_order))


@dataclass(frozen=True)
class Event:
    """One classified therapy contact for one patient-date-drug group"""
    patient_id: str
    event_date: Optional[date]
    drug_group: int
    therapy_classes: ClassList = ()      # Classes of a specified drug group
    candidate_classes: ClassList = ()    # Possible classes of an unspecified contact

    @property
    def is_unspecified(self) -> bool:
        return self.drug_group == UNSPECIFIED_DRUG_GROUP

    @classmethod
    def from_row(cls, row: Any, separator: str = "+") -> Tuple['Event', List[str]]:
        """
        Build an Event from an event-table row (namedtuple or Series).

        Returns:
            Tuple of (event, unrecognised class labels)
        """
        event_date = row.event_date.date() if hasattr(row.event_date, 'date') else row.event_date
        therapy_classes, unknown = parse_class_list(row.therapy_class, separator)
        candidate_classes, unknown_candidates = parse_class_list(row.candidate_classes, separator)
        event = cls(
            patient_id=str(row.patient_id),
            event_date=event_date,
            drug_group=int(row.drug_group),
            therapy_classes=therapy_classes,
            candidate_classes=candidate_classes,
        )
        return event, unknown + unknown_candidates


@dataclass
class DayRecord:
    """
    All events of one (patient, date) collapsed into one unit.

    When any specified drug group is present on the date, unspecified
    events of that date have already been discarded.
    """
    patient_id: str
    event_date: date
    drug_groups: FrozenSet[int]           # Active specified drug groups (empty if purely unspecified)
    is_unspecified: bool
    specified_classes: ClassList = ()
    candidate_classes: ClassList = ()

    # Assigned by the segmentation stages
    specified_line: Optional[int] = None  # None for unspecified records
    provisional_line: int = 0             # 0 = not yet assigned

    @property
    def evidence_classes(self) -> ClassList:
        """Specified classes when known, otherwise the candidate list."""
        if not self.is_unspecified:
            return self.specified_classes
        return self.candidate_classes


@dataclass
class TreatmentLine:
    """Final treatment line for one patient"""
    patient_id: str
    line_number: int
    start_date: date
    end_date: date
    duration_days: int
    therapy_classes: ClassList
    has_specified: bool
    drug_groups: FrozenSet[int] = field(default_factory=frozenset)
    dates: List[date] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        """Lines without any resolvable class are flagged for manual review."""
        return len(self.therapy_classes) == 0

    def to_dict(self, class_order: Sequence[str] = DEFAULT_CLASS_ORDER,
                separator: str = "+") -> Dict[str, Any]:
        """Convert to an output-table row"""
        return {
            'patient_id': self.patient_id,
            'line_number': self.line_number,
            'start_date': self.start_date,
            'end_date': self.end_date,
            'duration_days': self.duration_days,
            'therapy_classes': format_class_list(self.therapy_classes, class_order, separator),
            'has_specified': self.has_specified,
            'drug_groups': separator.join(str(g) for g in sorted(self.drug_groups)),
            'n_days': len(self.dates),
            'needs_review': self.needs_review,
        }
