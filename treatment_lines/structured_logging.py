"""
Structured Logging Utility

Log messages carry the derivation context of the patient being processed
so interleaved output from a cohort run can be traced back:

    2025-01-15 10:30:00 - treatment_lines.boundaries - DEBUG - [patient_id=P001] [phase=BOUNDARIES] [line=2] ...

Context keys are rendered in a fixed order (patient, phase, line) followed
by any extra keys in insertion order.
"""

import logging
from typing import Any, Dict, Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

CONTEXT_ORDER = ('patient_id', 'phase', 'line')


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter prefixing messages with the current derivation context.
    """

    def __init__(self, logger: logging.Logger, **context):
        super().__init__(logger, {})
        self.context: Dict[str, Any] = {}
        self.update_context(**context)

    def process(self, msg, kwargs):
        prefix = " ".join(f"[{key}={value}]" for key, value in self.context.items())
        if prefix:
            msg = f"{prefix} {msg}"
        return msg, kwargs

    def update_context(self, **kwargs):
        """
        Set context keys; a value of None drops the key.

        Example:
            log.update_context(phase='BOUNDARIES', line=3)
            log.update_context(line=None)
        """
        merged = {**self.context, **kwargs}
        ordered = [key for key in CONTEXT_ORDER if key in merged]
        ordered += [key for key in merged if key not in CONTEXT_ORDER]
        self.context = {key: merged[key] for key in ordered if merged[key] is not None}

    def get_context(self) -> Dict[str, Any]:
        return self.context.copy()


def get_logger(name: str, patient_id: Optional[str] = None, phase: Optional[str] = None,
               **extra_context) -> StructuredLoggerAdapter:
    """
    Get a structured logger for one patient and derivation phase.

    Args:
        name: Logger name (typically __name__)
        patient_id: Patient identifier
        phase: Derivation phase (AGGREGATE, SEGMENT, INTERLEAVE, RESOLVE, BOUNDARIES)
        **extra_context: Further context keys, e.g. line=2

    Returns:
        StructuredLoggerAdapter with context
    """
    return StructuredLoggerAdapter(logging.getLogger(name), patient_id=patient_id, phase=phase, **extra_context)


def setup_root_logging(level: int = logging.INFO, format_string: Optional[str] = None):
    """Configure the root handler for command-line runs."""
    logging.basicConfig(
        level=level,
        format=format_string or DEFAULT_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S'
    )
