"""
Same-Date Aggregation
=====================
Collapses all events of one patient-date into a single DayRecord.

Events are first pivoted into an indicator matrix (one row per date, one
column per drug group 0..drug_group_count). Where a date has any specified
drug group, the unspecified column of that row is cleared: specified
evidence always wins same-day conflicts.
"""

from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .exception_handling import DataValidationError, RecoverableError
from .models import UNSPECIFIED_DRUG_GROUP, DayRecord, Event, TherapyClass, unique_classes
from .structured_logging import get_logger

PHASE = "AGGREGATE"


def build_indicator_matrix(patient_events: pd.DataFrame, drug_group_count: int) -> pd.DataFrame:
    """
    Count events per (date, drug group).

    Args:
        patient_events: Dated events of a single patient
        drug_group_count: Size of the drug group vocabulary

    Returns:
        DataFrame indexed by event_date with integer columns 0..drug_group_count
    """
    matrix = pd.crosstab(patient_events['event_date'], patient_events['drug_group'])
    matrix = matrix.reindex(columns=range(drug_group_count + 1), fill_value=0)
    matrix.columns.name = 'drug_group'
    return matrix.sort_index()


def events_by_date(patient_events: pd.DataFrame, separator: str) -> Tuple[Dict[date, List[Event]], List[str]]:
    """Parse event rows into Events grouped by date, plus the unknown class labels seen."""
    grouped: Dict[date, List[Event]] = defaultdict(list)
    unknown_labels: List[str] = []
    ordered = patient_events.sort_values(['event_date', 'drug_group'], kind='mergesort')
    for row in ordered.itertuples(index=False):
        event, unknown = Event.from_row(row, separator)
        unknown_labels.extend(unknown)
        grouped[event.event_date].append(event)
    return grouped, sorted(set(unknown_labels))


def aggregate_same_date(
    patient_events: pd.DataFrame,
    drug_group_count: int,
    separator: str = "+",
    patient_id: Optional[str] = None,
    issues: Optional[List[RecoverableError]] = None
) -> Tuple[List[DayRecord], pd.Index]:
    """
    Collapse a patient's events into date-ordered DayRecords.

    Args:
        patient_events: Normalized, dated events of one patient
        drug_group_count: Size of the drug group vocabulary
        separator: Class label separator
        patient_id: Patient identifier (defaults to the events' patient_id)
        issues: Collects RecoverableErrors for conditions the records were
            built around (unknown class labels are dropped)

    Returns:
        Tuple of (DayRecords ordered by date, index labels of unspecified
        events discarded in favour of same-day specified evidence)

    Raises:
        DataValidationError: If a drug group id is outside 0..drug_group_count
    """
    if patient_id is None and not patient_events.empty:
        patient_id = str(patient_events['patient_id'].iloc[0])
    log = get_logger(__name__, patient_id=patient_id, phase=PHASE)

    if patient_events.empty:
        return [], pd.Index([])

    out_of_range = ~patient_events['drug_group'].between(0, drug_group_count)
    if out_of_range.any():
        bad = sorted(patient_events.loc[out_of_range, 'drug_group'].unique().tolist())
        raise DataValidationError(
            f"Drug group ids {bad} outside configured vocabulary 0..{drug_group_count}",
            phase=PHASE,
            patient_id=patient_id
        )

    indicators = build_indicator_matrix(patient_events, drug_group_count)
    counts = indicators.to_numpy(copy=True)
    has_specified = counts[:, 1:].sum(axis=1) > 0

    # Specified evidence takes precedence; recompute counts after dropping
    specified_dates = indicators.index[has_specified]
    is_unspecified_event = patient_events['drug_group'] == UNSPECIFIED_DRUG_GROUP
    discarded = patient_events.index[is_unspecified_event & patient_events['event_date'].isin(specified_dates)]
    counts[has_specified, UNSPECIFIED_DRUG_GROUP] = 0

    if len(discarded):
        log.debug(f"Discarded {len(discarded)} unspecified events on dates with specified drugs")

    by_date, unknown_labels = events_by_date(patient_events.drop(index=discarded), separator)
    if unknown_labels:
        issue = RecoverableError(
            f"Unknown therapy class labels {unknown_labels}",
            phase=PHASE,
            patient_id=patient_id,
            recovery_action="labels dropped"
        )
        if issues is None:
            log.warning(str(issue))
        else:
            issues.append(issue)

    records: List[DayRecord] = []
    for row_idx, timestamp in enumerate(indicators.index):
        day = timestamp.date()
        day_events = by_date[day]
        active = frozenset(int(g) for g in np.flatnonzero(counts[row_idx, 1:]) + 1)
        is_unspecified = not active

        if is_unspecified:
            specified_classes: Tuple[TherapyClass, ...] = ()
            candidate_classes = unique_classes(c for e in day_events for c in e.candidate_classes)
            if not candidate_classes:
                log.warning(f"Unspecified record on {day} has no candidate classes")
        else:
            specified_classes = unique_classes(
                c for e in day_events if not e.is_unspecified for c in e.therapy_classes
            )
            candidate_classes = ()

        records.append(DayRecord(
            patient_id=patient_id,
            event_date=day,
            drug_groups=active,
            is_unspecified=is_unspecified,
            specified_classes=specified_classes,
            candidate_classes=candidate_classes,
        ))

    log.debug(f"Collapsed {len(patient_events)} events into {len(records)} day records")
    return records, discarded
