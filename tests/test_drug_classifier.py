"""
Unit Tests for the Drug Classifier
"""

import tempfile
import unittest
from pathlib import Path

import pandas as pd

from treatment_lines.cohort import EVENT_COLUMNS
from treatment_lines.drug_classifier import DrugClassifier
from treatment_lines.exception_handling import ConfigurationError

CODE_TABLE = pd.DataFrame([
    {'treatment_code': 'L01XC18', 'drug_group': 1, 'therapy_class': 'PD-L1/PD-1', 'candidate_classes': ''},
    {'treatment_code': 'L01BC06', 'drug_group': 2, 'therapy_class': 'Chemo', 'candidate_classes': ''},
    {'treatment_code': 'BWHA', 'drug_group': 0, 'therapy_class': '', 'candidate_classes': 'Chemo+TKI'},
])


class TestDrugClassifier(unittest.TestCase):
    """Test code table lookup and contact classification"""

    def setUp(self):
        self.classifier = DrugClassifier(CODE_TABLE)

    def test_lookup_code(self):
        self.assertEqual(self.classifier.lookup_code(' L01BC06 '), (2, 'Chemo', ''))
        self.assertIsNone(self.classifier.lookup_code('XYZ'))
        self.assertIsNone(self.classifier.lookup_code(None))

    def test_classify_contacts(self):
        """Test contacts become event rows, unmapped codes become classless unspecified events"""
        contacts = pd.DataFrame({
            'patient_id': ['P1', 'P1', 'P1', 'P2'],
            'event_date': ['2020-01-01', '2020-01-01', '2020-02-01', '2020-03-01'],
            'treatment_code': ['L01XC18', 'BWHA', 'NOPE', 'NOPE'],
        })
        events = self.classifier.classify(contacts)

        self.assertEqual(list(events.columns), EVENT_COLUMNS)
        self.assertEqual(events['drug_group'].tolist(), [1, 0, 0, 0])
        self.assertEqual(events['therapy_class'].tolist(), ['PD-L1/PD-1', '', '', ''])
        self.assertEqual(events['candidate_classes'].tolist(), ['', 'Chemo+TKI', '', ''])
        self.assertEqual(self.classifier.unmapped_codes['NOPE'], 2)

    def test_classify_missing_columns(self):
        with self.assertRaises(ValueError):
            self.classifier.classify(pd.DataFrame({'patient_id': ['P1']}))

    def test_load_from_csv(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "codes.csv"
            CODE_TABLE.to_csv(path, index=False)
            classifier = DrugClassifier(path)
        self.assertEqual(classifier.lookup_code('BWHA'), (0, '', 'Chemo+TKI'))


class TestCodeTableValidation(unittest.TestCase):
    """Test malformed code tables are rejected"""

    def test_missing_columns(self):
        with self.assertRaises(ConfigurationError):
            DrugClassifier(pd.DataFrame({'treatment_code': ['A']}))

    def test_drug_group_out_of_range(self):
        table = pd.DataFrame({'treatment_code': ['A'], 'drug_group': [12]})
        with self.assertRaises(ConfigurationError):
            DrugClassifier(table, drug_group_count=10)

    def test_conflicting_duplicate_codes(self):
        table = pd.DataFrame({'treatment_code': ['A', 'A'], 'drug_group': [1, 2],
                              'therapy_class': ['Chemo', 'TKI']})
        with self.assertRaises(ConfigurationError):
            DrugClassifier(table)

    def test_consistent_duplicate_codes_kept_once(self):
        table = pd.DataFrame({'treatment_code': ['A', 'A'], 'drug_group': [1, 1],
                              'therapy_class': ['Chemo', 'Chemo']})
        self.assertEqual(DrugClassifier(table).lookup, {'A': (1, 'Chemo', '')})

    def test_unknown_class_label(self):
        table = pd.DataFrame({'treatment_code': ['A'], 'drug_group': [1], 'therapy_class': ['Surgery']})
        with self.assertRaises(ConfigurationError):
            DrugClassifier(table)


if __name__ == '__main__':
    unittest.main()
