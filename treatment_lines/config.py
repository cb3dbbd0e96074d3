"""
Run Configuration for Treatment Line Derivation

Configuration is a dataclass with defaults, optionally overridden from a
YAML file. Keys may sit at the top level or under a `treatment_lines:`
mapping:

    treatment_lines:
      gap_days: 45
      emit_long_format: true
      drug_group_count: 147
      class_order: [PD-L1/PD-1, Chemo, TKI, ...]
      processing:
        parallel: false
        max_workers: 4
"""

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .exception_handling import ConfigurationError
from .models import DEFAULT_CLASS_ORDER, TherapyClass

logger = logging.getLogger(__name__)

DEFAULT_GAP_DAYS = 45
DEFAULT_DRUG_GROUP_COUNT = 147


@dataclass(frozen=True)
class TreatmentLineConfig:
    """Configuration for a treatment line derivation run"""
    # Segmentation parameters
    gap_days: int = DEFAULT_GAP_DAYS
    drug_group_count: int = DEFAULT_DRUG_GROUP_COUNT

    # Class rendering
    class_order: List[str] = field(default_factory=lambda: list(DEFAULT_CLASS_ORDER))
    class_separator: str = "+"

    # Output settings
    emit_long_format: bool = True

    # Performance settings
    parallel: bool = False
    max_workers: int = 4

    def validate(self) -> 'TreatmentLineConfig':
        """
        Validate configuration values.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: If any value is invalid
        """
        errors = []

        if not isinstance(self.gap_days, int) or isinstance(self.gap_days, bool) or self.gap_days < 0:
            errors.append(f"gap_days must be a non-negative integer, got {self.gap_days!r}")

        if (not isinstance(self.drug_group_count, int) or isinstance(self.drug_group_count, bool)
                or self.drug_group_count < 1):
            errors.append(f"drug_group_count must be a positive integer, got {self.drug_group_count!r}")

        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            errors.append(f"max_workers must be >= 1, got {self.max_workers!r}")

        if not self.class_separator:
            errors.append("class_separator must not be empty")

        try:
            ordered = [TherapyClass.from_label(label) for label in self.class_order]
        except (ValueError, AttributeError) as e:
            errors.append(f"class_order contains an invalid label: {e}")
        else:
            if sorted(c.value for c in ordered) != sorted(DEFAULT_CLASS_ORDER):
                errors.append(
                    f"class_order must list each of the {len(DEFAULT_CLASS_ORDER)} therapy classes exactly once"
                )

        if errors:
            raise ConfigurationError("; ".join(errors), phase="CONFIG")
        return self

    def with_overrides(self, **overrides: Any) -> 'TreatmentLineConfig':
        """Return a copy with non-None overrides applied (e.g. from CLI flags)."""
        applied = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **applied).validate()

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _flatten(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Accept both flat keys and a nested `processing:` block."""
    section = raw.get('treatment_lines', raw) or {}
    if not isinstance(section, dict):
        raise ConfigurationError("treatment_lines section must be a mapping", phase="CONFIG")

    flat = {k: v for k, v in section.items() if k != 'processing'}
    processing = section.get('processing') or {}
    if not isinstance(processing, dict):
        raise ConfigurationError("processing section must be a mapping", phase="CONFIG")
    flat.update(processing)
    return flat


def load_config(config_path: Optional[Union[str, Path]] = None) -> TreatmentLineConfig:
    """
    Load configuration from YAML, falling back to defaults.

    Args:
        config_path: Optional path to a YAML configuration file

    Returns:
        Validated TreatmentLineConfig
    """
    if config_path is None:
        return TreatmentLineConfig().validate()

    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}", phase="CONFIG")

    with open(path, 'r') as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse {path}", phase="CONFIG", original_exception=e)

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {path}", phase="CONFIG")

    values = _flatten(raw)
    known = {f.name for f in fields(TreatmentLineConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {unknown}")

    config = TreatmentLineConfig(**{k: v for k, v in values.items() if k in known})
    if 'class_order' in values:
        config = replace(config, class_order=list(config.class_order))
    logger.info(f"Loaded configuration from {path}")
    return config.validate()
