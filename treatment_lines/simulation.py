"""
Synthetic Cohort Generator

Produces a cohort table and an event table in the input shapes of the
line derivation, for demos and property tests. Each patient receives a
few regimens (one to three drug groups given in cycles), separated by
random gaps, with unspecified contacts sprinkled in.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import DEFAULT_DRUG_GROUP_COUNT
from .models import UNSPECIFIED_DRUG_GROUP, TherapyClass

SPECIFIED_CLASSES = [c for c in TherapyClass if c is not TherapyClass.UNSPECIFIED]

CANDIDATE_LISTS = [
    "Chemo+TKI",
    "PARP+Other",
    "BCG",
    "PD-L1/PD-1+Chemo",
    "Angiogenesis-Inhibitor+TKI",
    "HER-2",
]

CYCLE_INTERVALS = [7, 14, 21, 28]


def drug_group_classes(drug_group_count: int = DEFAULT_DRUG_GROUP_COUNT) -> Dict[int, str]:
    """Deterministic class label for every specified drug group 1..drug_group_count."""
    return {
        group: SPECIFIED_CLASSES[(group - 1) % len(SPECIFIED_CLASSES)].value
        for group in range(1, drug_group_count + 1)
    }


def simulate_cohort(
    n_patients: int = 100,
    seed: Optional[int] = 0,
    start_date: str = "2018-01-01",
    drug_group_count: int = DEFAULT_DRUG_GROUP_COUNT,
    unspecified_rate: float = 0.15,
    max_regimens: int = 4
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Generate a synthetic cohort.

    Args:
        n_patients: Number of patients
        seed: Random seed
        start_date: Earliest possible index date
        drug_group_count: Size of the drug group vocabulary
        unspecified_rate: Probability that a cycle is accompanied by an unspecified contact
        max_regimens: Upper bound on regimens per patient (0 regimens is possible)

    Returns:
        Tuple of (cohort_df, events_df)
    """
    rng = np.random.default_rng(seed)
    classes = drug_group_classes(drug_group_count)
    origin = pd.Timestamp(start_date)

    cohort_rows = []
    event_rows: List[Dict] = []

    for i in range(n_patients):
        patient_id = f"P{i + 1:05d}"
        index_date = origin + pd.Timedelta(days=int(rng.integers(0, 730)))
        followup_end = index_date + pd.Timedelta(days=int(rng.integers(180, 1460)))
        cohort_rows.append({'patient_id': patient_id, 'index_date': index_date,
                            'followup_end': followup_end})

        current = index_date + pd.Timedelta(days=int(rng.integers(0, 60)))
        for _ in range(int(rng.integers(0, max_regimens + 1))):
            n_groups = int(rng.integers(1, 4))
            groups = rng.choice(np.arange(1, drug_group_count + 1), size=n_groups, replace=False)
            interval = int(rng.choice(CYCLE_INTERVALS))

            for _ in range(int(rng.integers(1, 10))):
                if current > followup_end:
                    break
                for group in groups:
                    event_rows.append({
                        'patient_id': patient_id,
                        'event_date': current,
                        'drug_group': int(group),
                        'therapy_class': classes[int(group)],
                        'candidate_classes': '',
                    })
                if rng.random() < unspecified_rate:
                    offset = pd.Timedelta(days=int(rng.integers(0, interval)))
                    if current + offset <= followup_end:
                        event_rows.append({
                            'patient_id': patient_id,
                            'event_date': current + offset,
                            'drug_group': UNSPECIFIED_DRUG_GROUP,
                            'therapy_class': '',
                            'candidate_classes': str(rng.choice(CANDIDATE_LISTS)),
                        })
                current = current + pd.Timedelta(days=interval)

            current = current + pd.Timedelta(days=int(rng.integers(10, 120)))

    cohort_df = pd.DataFrame(cohort_rows, columns=['patient_id', 'index_date', 'followup_end'])
    events_df = pd.DataFrame(
        event_rows,
        columns=['patient_id', 'event_date', 'drug_group', 'therapy_class', 'candidate_classes']
    )
    return cohort_df, events_df
