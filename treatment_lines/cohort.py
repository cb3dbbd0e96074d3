"""
Cohort and Event Table Handling
===============================
Loads and normalizes the two input tables at the pipeline boundary:

  Cohort table: patient_id, index_date, followup_end (one row per patient)
  Event table:  patient_id, event_date, drug_group, therapy_class, candidate_classes

Events outside [index_date, followup_end] are dropped here, before any
per-patient processing.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd

from .models import UNSPECIFIED_DRUG_GROUP

logger = logging.getLogger(__name__)

COHORT_COLUMNS = ['patient_id', 'index_date', 'followup_end']
EVENT_COLUMNS = ['patient_id', 'event_date', 'drug_group', 'therapy_class', 'candidate_classes']
REQUIRED_EVENT_COLUMNS = ['patient_id', 'event_date', 'drug_group']


def _require_columns(df: pd.DataFrame, required: List[str], table_name: str):
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{table_name} table is missing required columns: {missing}")


def _to_date(series: pd.Series) -> pd.Series:
    return pd.to_datetime(series, errors='coerce').dt.normalize()


def _merge_candidates(values: pd.Series, separator: str) -> str:
    """Union of '+'-joined candidate lists, first-seen order."""
    merged: List[str] = []
    for value in values.dropna():
        for label in str(value).split(separator):
            label = label.strip()
            if label and label not in merged:
                merged.append(label)
    return separator.join(merged)


def normalize_cohort(cohort_df: pd.DataFrame) -> pd.DataFrame:
    """
    Coerce cohort dates and ids; one row per patient.

    Returns:
        DataFrame with COHORT_COLUMNS, patient_id as string
    """
    _require_columns(cohort_df, COHORT_COLUMNS, 'Cohort')
    cohort = cohort_df[COHORT_COLUMNS].reset_index(drop=True)
    cohort['patient_id'] = cohort['patient_id'].astype(str)
    cohort['index_date'] = _to_date(cohort['index_date'])
    cohort['followup_end'] = _to_date(cohort['followup_end'])

    duplicated = cohort['patient_id'].duplicated(keep='first')
    if duplicated.any():
        logger.warning(f"Cohort table lists {int(duplicated.sum())} duplicate patient ids; keeping first row")
        cohort = cohort[~duplicated]

    return cohort.reset_index(drop=True)


def normalize_events(events_df: pd.DataFrame, separator: str = "+") -> pd.DataFrame:
    """
    Normalize the event table.

    - Dates coerced to midnight timestamps (unparseable dates become NaT and
      are kept; they end up on line 0 in the long format)
    - drug_group coerced to int, class columns to strings ('' when missing)
    - Exact duplicate (patient, date, drug_group) rows merged; for
      unspecified duplicates the candidate lists are unioned

    Returns:
        DataFrame with EVENT_COLUMNS sorted by patient, date, drug group
    """
    _require_columns(events_df, REQUIRED_EVENT_COLUMNS, 'Event')
    events = events_df.copy()
    for column in ('therapy_class', 'candidate_classes'):
        if column not in events.columns:
            events[column] = ''
    events = events[EVENT_COLUMNS].copy()

    events['patient_id'] = events['patient_id'].astype(str)
    events['event_date'] = _to_date(events['event_date'])

    drug_group = pd.to_numeric(events['drug_group'], errors='coerce')
    if drug_group.isna().any():
        logger.warning(f"{int(drug_group.isna().sum())} events have a non-numeric drug group; treating as unspecified")
    events['drug_group'] = drug_group.fillna(UNSPECIFIED_DRUG_GROUP).astype(int)

    for column in ('therapy_class', 'candidate_classes'):
        events[column] = events[column].fillna('').astype(str).str.strip()

    # Duplicate (patient, date, drug_group) rows are merged silently
    key = ['patient_id', 'event_date', 'drug_group']
    if events.duplicated(subset=key).any():
        dated = events[events['event_date'].notna()]
        undated = events[events['event_date'].isna()]
        dated = (
            dated.groupby(key, sort=False, as_index=False)
            .agg(therapy_class=('therapy_class', 'first'),
                 candidate_classes=('candidate_classes', lambda s: _merge_candidates(s, separator)))
        )
        events = pd.concat([dated[EVENT_COLUMNS], undated], ignore_index=True)

    return events.sort_values(key, na_position='last', kind='mergesort').reset_index(drop=True)


def filter_to_followup(events: pd.DataFrame, cohort: pd.DataFrame) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """
    Keep events of cohort patients falling inside [index_date, followup_end].

    Dateless events of cohort patients are kept (they are reported on line 0).
    A missing index_date or followup_end leaves that side of the window open.

    Returns:
        Tuple of (filtered events, counts of dropped rows by reason)
    """
    merged = events.merge(cohort[['patient_id', 'index_date', 'followup_end']],
                          on='patient_id', how='left', indicator=True)

    not_in_cohort = merged['_merge'] == 'left_only'
    dated = merged['event_date'].notna()
    before_index = dated & merged['index_date'].notna() & (merged['event_date'] < merged['index_date'])
    after_followup = dated & merged['followup_end'].notna() & (merged['event_date'] > merged['followup_end'])

    dropped = {
        'not_in_cohort': int(not_in_cohort.sum()),
        'before_index_date': int((before_index & ~not_in_cohort).sum()),
        'after_followup_end': int((after_followup & ~not_in_cohort).sum()),
    }
    if any(dropped.values()):
        logger.warning(f"Dropped events outside the follow-up window: {dropped}")

    keep = ~not_in_cohort & ~before_index & ~after_followup
    return merged.loc[keep, EVENT_COLUMNS].reset_index(drop=True), dropped


def load_table(path: Union[str, Path]) -> pd.DataFrame:
    """Read a CSV input table (patient ids kept as strings)."""
    return pd.read_csv(Path(path), dtype={'patient_id': str})


def patient_followup_end(cohort: pd.DataFrame) -> Dict[str, Optional[pd.Timestamp]]:
    """Map patient_id -> followup_end (None when missing)."""
    return {
        row.patient_id: (row.followup_end if pd.notna(row.followup_end) else None)
        for row in cohort.itertuples(index=False)
    }
