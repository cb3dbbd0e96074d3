"""
Shared builders for small hand-written event tables.
"""

from datetime import date, timedelta

import pandas as pd

from treatment_lines.cohort import normalize_events

DAY_ONE = date(2020, 1, 1)


def day(n: int) -> date:
    """Calendar date of study day n (day 1 = 2020-01-01)."""
    return DAY_ONE + timedelta(days=n - 1)


def specified(n: int, group: int, therapy_class: str, patient_id: str = "P001") -> dict:
    return {'patient_id': patient_id, 'event_date': pd.Timestamp(day(n)), 'drug_group': group,
            'therapy_class': therapy_class, 'candidate_classes': ''}


def unspecified(n: int, candidates: str, patient_id: str = "P001") -> dict:
    return {'patient_id': patient_id, 'event_date': pd.Timestamp(day(n)), 'drug_group': 0,
            'therapy_class': '', 'candidate_classes': candidates}


def events_frame(rows) -> pd.DataFrame:
    return normalize_events(pd.DataFrame(rows))


def cohort_frame(patient_ids, index_day: int = 1, followup_day: int = 1000) -> pd.DataFrame:
    return pd.DataFrame({
        'patient_id': list(patient_ids),
        'index_date': [pd.Timestamp(day(index_day))] * len(patient_ids),
        'followup_end': [pd.Timestamp(day(followup_day))] * len(patient_ids),
    })
