"""
Drug Classification
===================
Table-driven lookup from raw treatment codes to drug groups and therapy
classes, producing the event table consumed by the line derivation.

Code table columns:
    treatment_code     raw code as it appears in the contact data
    drug_group         integer drug group id (0 = unspecified)
    therapy_class      class label of a specified drug group
    candidate_classes  '+'-joined labels an unspecified code may represent

Codes are matched exactly after str() and whitespace stripping. Unmapped
codes become unspecified events with an empty candidate list and are
flagged for review.
"""

import logging
from collections import Counter
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import pandas as pd

from .cohort import EVENT_COLUMNS
from .config import DEFAULT_DRUG_GROUP_COUNT
from .exception_handling import ConfigurationError
from .models import UNSPECIFIED_DRUG_GROUP, parse_class_list

logger = logging.getLogger(__name__)

CODE_TABLE_COLUMNS = ['treatment_code', 'drug_group', 'therapy_class', 'candidate_classes']
CONTACT_COLUMNS = ['patient_id', 'event_date', 'treatment_code']


class DrugClassifier:
    """
    Maps treatment codes to (drug group, therapy class, candidate classes)
    """

    def __init__(self, code_table: Union[pd.DataFrame, str, Path],
                 drug_group_count: int = DEFAULT_DRUG_GROUP_COUNT, separator: str = "+"):
        """
        Initialize with a code table.

        Args:
            code_table: DataFrame or path to a CSV code table
            drug_group_count: Size of the drug group vocabulary
            separator: Class label separator used in the table

        Raises:
            ConfigurationError: If the table is malformed
        """
        self.drug_group_count = drug_group_count
        self.separator = separator
        self.unmapped_codes: Counter = Counter()

        if not isinstance(code_table, pd.DataFrame):
            code_table = pd.read_csv(Path(code_table), dtype={'treatment_code': str})
            logger.info(f"Loaded {len(code_table)} treatment codes from reference table")

        self.lookup = self._build_lookup(code_table)

    def _build_lookup(self, table: pd.DataFrame) -> Dict[str, Tuple[int, str, str]]:
        missing = [c for c in ('treatment_code', 'drug_group') if c not in table.columns]
        if missing:
            raise ConfigurationError(f"Code table is missing columns: {missing}", phase="CLASSIFY")

        table = table.copy()
        for column in ('therapy_class', 'candidate_classes'):
            if column not in table.columns:
                table[column] = ''
            table[column] = table[column].fillna('').astype(str).str.strip()
        table['treatment_code'] = table['treatment_code'].astype(str).str.strip()
        table['drug_group'] = pd.to_numeric(table['drug_group'], errors='coerce')

        invalid = table['drug_group'].isna() | ~table['drug_group'].between(0, self.drug_group_count)
        if invalid.any():
            codes = table.loc[invalid, 'treatment_code'].tolist()[:10]
            raise ConfigurationError(
                f"Code table has drug groups outside 0..{self.drug_group_count} (codes {codes})",
                phase="CLASSIFY"
            )

        duplicated = table['treatment_code'].duplicated(keep=False)
        if duplicated.any():
            conflicting = table[duplicated].groupby('treatment_code')['drug_group'].nunique()
            conflicting = conflicting[conflicting > 1]
            if not conflicting.empty:
                raise ConfigurationError(
                    f"Treatment codes mapped to several drug groups: {conflicting.index.tolist()[:10]}",
                    phase="CLASSIFY"
                )
            table = table.drop_duplicates(subset='treatment_code', keep='first')

        for column in ('therapy_class', 'candidate_classes'):
            for value in table[column].unique():
                _, unknown = parse_class_list(value, self.separator)
                if unknown:
                    raise ConfigurationError(f"Unknown therapy class labels in code table: {unknown}",
                                             phase="CLASSIFY")

        return {
            row.treatment_code: (int(row.drug_group), row.therapy_class, row.candidate_classes)
            for row in table.itertuples(index=False)
        }

    def lookup_code(self, treatment_code) -> Optional[Tuple[int, str, str]]:
        """Return (drug_group, therapy_class, candidate_classes) or None when unmapped."""
        if treatment_code is None or pd.isna(treatment_code):
            return None
        return self.lookup.get(str(treatment_code).strip())

    def classify(self, contacts_df: pd.DataFrame) -> pd.DataFrame:
        """
        Classify raw contacts into the event table.

        Args:
            contacts_df: Rows of (patient_id, event_date, treatment_code)

        Returns:
            DataFrame with EVENT_COLUMNS
        """
        missing = [c for c in CONTACT_COLUMNS if c not in contacts_df.columns]
        if missing:
            raise ValueError(f"Contact table is missing required columns: {missing}")

        rows = []
        unmapped = Counter()
        for contact in contacts_df[CONTACT_COLUMNS].itertuples(index=False):
            mapped = self.lookup_code(contact.treatment_code)
            if mapped is None:
                unmapped[str(contact.treatment_code)] += 1
                mapped = (UNSPECIFIED_DRUG_GROUP, '', '')

            drug_group, therapy_class, candidate_classes = mapped
            rows.append({
                'patient_id': contact.patient_id,
                'event_date': contact.event_date,
                'drug_group': drug_group,
                'therapy_class': therapy_class if drug_group != UNSPECIFIED_DRUG_GROUP else '',
                'candidate_classes': candidate_classes if drug_group == UNSPECIFIED_DRUG_GROUP else '',
            })

        if unmapped:
            logger.warning(
                f"{sum(unmapped.values())} contacts with {len(unmapped)} unmapped treatment codes "
                f"classified as unspecified with no candidate classes"
            )
            self.unmapped_codes.update(unmapped)

        logger.info(f"Classified {len(rows)} contacts")
        return pd.DataFrame(rows, columns=EVENT_COLUMNS)
