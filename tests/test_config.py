"""
Unit Tests for Run Configuration

Tests defaults, YAML loading (flat and nested layouts), validation and
CLI-style overrides.
"""

import tempfile
import unittest
from pathlib import Path

from treatment_lines.config import DEFAULT_DRUG_GROUP_COUNT, DEFAULT_GAP_DAYS, TreatmentLineConfig, load_config
from treatment_lines.exception_handling import ConfigurationError
from treatment_lines.models import DEFAULT_CLASS_ORDER


class TestTreatmentLineConfig(unittest.TestCase):
    """Test configuration defaults, loading and validation"""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def _write(self, text: str) -> Path:
        path = Path(self.tmpdir.name) / "config.yaml"
        path.write_text(text)
        return path

    def test_defaults(self):
        """Test defaults match the documented values"""
        config = load_config()
        self.assertEqual(config.gap_days, DEFAULT_GAP_DAYS)
        self.assertEqual(config.gap_days, 45)
        self.assertEqual(config.drug_group_count, DEFAULT_DRUG_GROUP_COUNT)
        self.assertTrue(config.emit_long_format)
        self.assertEqual(config.class_order, DEFAULT_CLASS_ORDER)
        self.assertFalse(config.parallel)

    def test_nested_yaml(self):
        """Test keys under treatment_lines with a processing block"""
        path = self._write(
            "treatment_lines:\n"
            "  gap_days: 60\n"
            "  emit_long_format: false\n"
            "  processing:\n"
            "    parallel: true\n"
            "    max_workers: 2\n"
        )
        config = load_config(path)

        self.assertEqual(config.gap_days, 60)
        self.assertFalse(config.emit_long_format)
        self.assertTrue(config.parallel)
        self.assertEqual(config.max_workers, 2)

    def test_flat_yaml_with_unknown_key(self):
        """Test flat layout loads and unknown keys are ignored"""
        path = self._write("gap_days: 30\nfavourite_colour: blue\n")
        with self.assertLogs('treatment_lines.config', level='WARNING'):
            config = load_config(path)
        self.assertEqual(config.gap_days, 30)

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            load_config(Path(self.tmpdir.name) / "absent.yaml")

    def test_unparseable_yaml(self):
        path = self._write("gap_days: [unclosed\n")
        with self.assertRaises(ConfigurationError):
            load_config(path)

    def test_negative_gap_rejected(self):
        with self.assertRaises(ConfigurationError):
            TreatmentLineConfig(gap_days=-1).validate()

    def test_incomplete_class_order_rejected(self):
        """Test class_order must name every class exactly once"""
        with self.assertRaises(ConfigurationError):
            TreatmentLineConfig(class_order=["Chemo", "TKI"]).validate()
        with self.assertRaises(ConfigurationError):
            TreatmentLineConfig(class_order=DEFAULT_CLASS_ORDER[:-1] + ["Surgery"]).validate()

    def test_with_overrides_ignores_none(self):
        config = TreatmentLineConfig().with_overrides(gap_days=30, max_workers=None)
        self.assertEqual(config.gap_days, 30)
        self.assertEqual(config.max_workers, 4)

    def test_to_dict(self):
        self.assertEqual(TreatmentLineConfig().to_dict()['drug_group_count'], 147)


if __name__ == '__main__':
    unittest.main()
