"""
Integration Tests for Cohort Processing

Tests per-patient isolation, completeness tracking, the run artifacts and
the cohort report.
"""

import json
import tempfile
import unittest
from pathlib import Path

import pandas as pd

from treatment_lines.cohort_processor import CohortProcessor, derive_treatment_lines
from treatment_lines.config import TreatmentLineConfig
from treatment_lines.exception_handling import ConfigurationError
from treatment_lines.pipeline import LINE_COLUMNS

from tests.fixtures import cohort_frame, specified, unspecified


def _cohort_inputs():
    """Three patients: a regular one, one with a bad drug group, one without events."""
    events = pd.DataFrame([
        specified(1, 3, "Chemo", patient_id="A"),
        unspecified(20, "Chemo+TKI", patient_id="A"),
        specified(30, 3, "Chemo", patient_id="A"),
        specified(200, 4, "TKI", patient_id="A"),
        specified(5, 500, "Chemo", patient_id="B"),
        specified(5, 3, "Chemo", patient_id="Z"),
    ])
    cohort = cohort_frame(["A", "B", "C"])
    return cohort, events


class TestCohortProcessor(unittest.TestCase):
    """Test cohort-wide processing"""

    def setUp(self):
        self.cohort, self.events = _cohort_inputs()
        self.processor = CohortProcessor(TreatmentLineConfig())
        self.result = self.processor.process_cohort(self.cohort, self.events)

    def test_failed_patient_isolated(self):
        """Test a failing patient is reported without affecting the others"""
        self.assertEqual(self.result.failed_patients, ["B"])
        self.assertFalse(self.result.succeeded)
        self.assertEqual(self.result.lines['patient_id'].unique().tolist(), ["A"])
        self.assertEqual(self.result.lines['line_number'].tolist(), [1, 2])

    def test_patient_without_events(self):
        """Test a cohort patient with no events succeeds with zero lines"""
        patients = self.result.completeness['patients']
        self.assertTrue(patients["C"]['succeeded'])
        self.assertEqual(patients["C"]['line_count'], 0)

    def test_completeness_metadata(self):
        completeness = self.result.completeness
        self.assertAlmostEqual(completeness['completeness_score'], 2 / 3)
        self.assertEqual(completeness['total_patients_attempted'], 3)
        self.assertEqual(completeness['total_lines_derived'], 2)
        self.assertEqual(len(completeness['errors']), 1)
        self.assertEqual(completeness['errors'][0]['error_type'], 'DataValidationError')
        self.assertEqual(completeness['errors'][0]['patient_id'], 'B')
        self.assertEqual(completeness['errors'][0]['severity'], 'fatal')

    def test_events_outside_cohort_dropped(self):
        self.assertEqual(self.result.dropped_events['not_in_cohort'], 1)

    def test_long_format_excludes_failed_patients(self):
        long_format = self.result.long_format
        self.assertEqual(set(long_format['patient_id']), {"A"})
        self.assertEqual(len(long_format), 4)

    def test_write_outputs(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            written = self.processor.write_outputs(self.result, tmpdir)

            self.assertEqual(set(written), {'lines', 'long_format', 'completeness'})
            lines = pd.read_csv(written['lines'])
            self.assertEqual(list(lines.columns), LINE_COLUMNS)
            self.assertEqual(lines.loc[0, 'start_date'], '2020-01-01')

            with open(written['completeness']) as f:
                completeness = json.load(f)
            self.assertEqual(completeness['dropped_events']['not_in_cohort'], 1)
            self.assertIn("B", completeness['patients'])

    def test_cohort_report(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            report = self.processor.generate_cohort_report(self.result, tmpdir)
            self.assertTrue((Path(tmpdir) / "cohort_report.json").exists())

        self.assertEqual(report['cohort_size'], 3)
        self.assertEqual(report['failed_patients'], ["B"])
        self.assertEqual(report['patients_with_lines'], 1)
        self.assertEqual(report['total_lines'], 2)
        self.assertEqual(report['class_frequencies'], {"Chemo": 1, "TKI": 1})
        self.assertEqual(report['lines_needing_review'], 0)
        self.assertEqual(report['line_statistics']['max_lines_per_patient'], 2)


class TestCohortProcessorModes(unittest.TestCase):
    """Test configuration handling and the process pool"""

    def test_invalid_config_rejected(self):
        with self.assertRaises(ConfigurationError):
            CohortProcessor(TreatmentLineConfig(gap_days=-5))

    def test_long_format_disabled(self):
        cohort, events = _cohort_inputs()
        result = derive_treatment_lines(cohort, events, TreatmentLineConfig(emit_long_format=False))
        self.assertIsNone(result.long_format)

    def test_empty_cohort_report(self):
        cohort = cohort_frame(["A"])
        events = pd.DataFrame([specified(1, 3, "Chemo", patient_id="Q")])
        processor = CohortProcessor()
        result = processor.process_cohort(cohort, events)
        report = processor.generate_cohort_report(result)

        self.assertTrue(result.lines.empty)
        self.assertEqual(report['total_lines'], 0)
        self.assertEqual(report['class_frequencies'], {})

    def test_recoverable_issues_recorded(self):
        """Test recoverable issues are recorded in completeness without failing the patient"""
        cohort = cohort_frame(["A"])
        events = pd.DataFrame([specified(1, 3, "Chemo+Vaccine", patient_id="A")])
        processor = CohortProcessor()
        with self.assertLogs('treatment_lines.cohort_processor', level='WARNING'):
            result = processor.process_cohort(cohort, events)

        self.assertEqual(result.failed_patients, [])
        self.assertEqual(len(result.lines), 1)
        self.assertEqual(
            [(e['error_type'], e['severity'], e['phase'], e['patient_id']) for e in result.completeness['errors']],
            [('RecoverableError', 'recoverable', 'AGGREGATE', "A")]
        )
        self.assertEqual(processor.generate_cohort_report(result)['recoverable_issues'], 1)

    def test_parallel_matches_sequential(self):
        """Test the process pool yields the same output as sequential processing"""
        cohort, events = _cohort_inputs()
        processor = CohortProcessor(TreatmentLineConfig(max_workers=2))

        sequential = processor.process_cohort(cohort, events, parallel=False)
        parallel = processor.process_cohort(cohort, events, parallel=True)

        pd.testing.assert_frame_equal(parallel.lines, sequential.lines)
        self.assertEqual(parallel.failed_patients, sequential.failed_patients)


if __name__ == '__main__':
    unittest.main()
