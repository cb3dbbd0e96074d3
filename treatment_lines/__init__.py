"""
Treatment line derivation from longitudinal therapy records
"""

from .cohort_processor import CohortProcessor, CohortResult, derive_treatment_lines
from .config import TreatmentLineConfig, load_config
from .drug_classifier import DrugClassifier
from .exception_handling import ConfigurationError, DataValidationError, FatalError, RecoverableError
from .models import DayRecord, Event, TherapyClass, TreatmentLine
from .pipeline import derive_patient_lines

__version__ = "1.0.0"

__all__ = [
    'CohortProcessor',
    'CohortResult',
    'derive_treatment_lines',
    'derive_patient_lines',
    'TreatmentLineConfig',
    'load_config',
    'DrugClassifier',
    'ConfigurationError',
    'DataValidationError',
    'FatalError',
    'RecoverableError',
    'DayRecord',
    'Event',
    'TherapyClass',
    'TreatmentLine',
]
