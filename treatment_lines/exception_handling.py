"""
Exception Handling Framework

Tiered exception handling (FATAL vs RECOVERABLE) plus per-patient
completeness tracking for cohort runs, so that a failure for one patient
is reported without corrupting the output of the others.

Usage:
    from treatment_lines.exception_handling import DataValidationError, CompletenessTracker

    # FATAL for this patient - stop processing the patient
    raise DataValidationError("Negative duration", patient_id="P001", line_number=3)

    # Track completeness across the cohort
    tracker = CompletenessTracker()
    tracker.mark_attempted('P001')
    tracker.mark_success('P001', line_count=4)
    completeness_metadata = tracker.get_completeness_metadata()
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels for tiered exception handling."""
    FATAL = "fatal"              # Patient (or run) must stop
    RECOVERABLE = "recoverable"  # Patient continues after a recovery action


class FatalError(Exception):
    """
    Fatal error - processing of the current unit must stop.

    Examples:
        - Negative line duration after boundary trimming
        - Drug group id outside the configured vocabulary
        - Invalid configuration
    """

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        patient_id: Optional[str] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.patient_id = patient_id
        self.original_exception = original_exception
        self.timestamp = datetime.now()

    def __str__(self):
        parts = [f"FATAL ERROR: {self.message}"]
        if self.phase:
            parts.append(f"Phase: {self.phase}")
        if self.patient_id:
            parts.append(f"Patient: {self.patient_id}")
        if self.original_exception:
            parts.append(f"Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}")
        return " | ".join(parts)

    def __reduce__(self):
        # Keeps the exception picklable across process-pool boundaries
        return (self.__class__, (self.message, self.phase, self.patient_id, self.original_exception))


class RecoverableError(Exception):
    """
    Recoverable condition - the patient's derivation continues after a
    recovery action and the condition is reported with the run.

    Examples:
        - Unknown therapy class label (label dropped)
        - Event without a date (excluded from segmentation, reported on line 0)
    """

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        patient_id: Optional[str] = None,
        original_exception: Optional[Exception] = None,
        recovery_action: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.patient_id = patient_id
        self.original_exception = original_exception
        self.recovery_action = recovery_action
        self.timestamp = datetime.now()

    def __str__(self):
        parts = [f"RECOVERABLE ERROR: {self.message}"]
        if self.phase:
            parts.append(f"Phase: {self.phase}")
        if self.patient_id:
            parts.append(f"Patient: {self.patient_id}")
        if self.recovery_action:
            parts.append(f"Recovery: {self.recovery_action}")
        if self.original_exception:
            parts.append(f"Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}")
        return " | ".join(parts)

    def __reduce__(self):
        return (self.__class__, (self.message, self.phase, self.patient_id,
                                 self.original_exception, self.recovery_action))


class DataValidationError(FatalError):
    """Upstream data inconsistency detected while deriving a patient's lines."""

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        patient_id: Optional[str] = None,
        line_number: Optional[int] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, phase=phase, patient_id=patient_id,
                         original_exception=original_exception)
        self.line_number = line_number

    def __str__(self):
        text = super().__str__()
        if self.line_number is not None:
            text += f" | Line: {self.line_number}"
        return text

    def __reduce__(self):
        return (self.__class__, (self.message, self.phase, self.patient_id,
                                 self.line_number, self.original_exception))


class ConfigurationError(FatalError):
    """Invalid run configuration."""


@dataclass
class PatientAttempt:
    """
    Tracks the processing attempt of a single patient.

    Attributes:
        patient_id: Patient identifier
        attempted: Whether processing was attempted
        succeeded: Whether processing succeeded
        line_count: Number of treatment lines derived (if successful)
        error_message: Error message (if failed)
        timestamp: When processing was attempted
    """
    patient_id: str
    attempted: bool = False
    succeeded: bool = False
    line_count: int = 0
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None


class CompletenessTracker:
    """
    Tracks per-patient processing completeness across a cohort run.

    Failed patients contribute no output rows; this tracker is where
    they are reported.
    """

    def __init__(self):
        self.patients: Dict[str, PatientAttempt] = {}
        self.errors: List[Dict[str, Any]] = []

    def mark_attempted(self, patient_id: str):
        """Mark a patient as attempted."""
        if patient_id not in self.patients:
            self.patients[patient_id] = PatientAttempt(patient_id=patient_id)
        self.patients[patient_id].attempted = True
        self.patients[patient_id].timestamp = datetime.now()

    def mark_success(self, patient_id: str, line_count: int = 0):
        """Mark a patient as successfully processed."""
        if patient_id not in self.patients:
            self.patients[patient_id] = PatientAttempt(patient_id=patient_id, attempted=True)
        self.patients[patient_id].succeeded = True
        self.patients[patient_id].line_count = line_count

    def mark_failure(self, patient_id: str, error_message: str):
        """Mark a patient as failed."""
        if patient_id not in self.patients:
            self.patients[patient_id] = PatientAttempt(patient_id=patient_id)
        self.patients[patient_id].attempted = True
        self.patients[patient_id].succeeded = False
        self.patients[patient_id].error_message = error_message
        self.patients[patient_id].timestamp = datetime.now()

    def log_error(
        self,
        error_type: str,
        message: str,
        patient_id: Optional[str] = None,
        phase: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.RECOVERABLE
    ):
        """Log an error for later reporting."""
        self.errors.append({
            'error_type': error_type,
            'message': message,
            'patient_id': patient_id,
            'phase': phase,
            'severity': severity.value,
            'timestamp': datetime.now().isoformat()
        })

    def get_completeness_score(self) -> float:
        """
        Calculate completeness score (0.0-1.0).

        Returns:
            succeeded_patients / attempted_patients
        """
        attempted = sum(1 for p in self.patients.values() if p.attempted)
        if attempted == 0:
            return 0.0

        succeeded = sum(1 for p in self.patients.values() if p.succeeded)
        return succeeded / attempted

    def get_completeness_metadata(self) -> Dict[str, Any]:
        """
        Generate completeness metadata for the run artifact.

        Returns:
            Dict with completeness score, per-patient details and recorded errors
        """
        return {
            'completeness_score': self.get_completeness_score(),
            'patients': {
                patient_id: {
                    'attempted': attempt.attempted,
                    'succeeded': attempt.succeeded,
                    'line_count': attempt.line_count,
                    'error_message': attempt.error_message,
                    'timestamp': attempt.timestamp.isoformat() if attempt.timestamp else None
                }
                for patient_id, attempt in self.patients.items()
            },
            'errors': self.errors,
            'total_patients_attempted': sum(1 for p in self.patients.values() if p.attempted),
            'total_patients_succeeded': sum(1 for p in self.patients.values() if p.succeeded),
            'total_lines_derived': sum(p.line_count for p in self.patients.values())
        }

    def get_failed_patients(self) -> List[str]:
        """Get list of failed patient ids."""
        return [
            patient_id for patient_id, attempt in self.patients.items()
            if attempt.attempted and not attempt.succeeded
        ]


def handle_error(
    error: Exception,
    phase: str,
    patient_id: str,
    completeness_tracker: Optional[CompletenessTracker] = None,
    logger_instance: Optional[logging.Logger] = None
) -> ErrorSeverity:
    """
    Central per-patient error handling.

    Classifies the error, records it against the patient in the tracker
    and logs it. A fatal error fails the patient; a recoverable one is
    recorded while the patient keeps its derived lines. The cohort run
    always continues with the next patient.

    Args:
        error: Exception that occurred
        phase: Phase in which the error occurred
        patient_id: Patient identifier
        completeness_tracker: CompletenessTracker instance (optional)
        logger_instance: Logger instance (optional)

    Returns:
        ErrorSeverity assigned to the error
    """
    log = logger_instance or logger
    error_name = type(error).__name__

    if isinstance(error, RecoverableError):
        severity = ErrorSeverity.RECOVERABLE
        wrapped: Exception = error
    elif isinstance(error, FatalError):
        severity = ErrorSeverity.FATAL
        wrapped = error
    else:
        # Unknown exceptions while deriving lines are treated as fatal for the patient
        severity = ErrorSeverity.FATAL
        wrapped = FatalError(
            message=f"Unexpected error in {phase}",
            phase=phase,
            patient_id=patient_id,
            original_exception=error
        )

    if completeness_tracker is not None:
        if severity is ErrorSeverity.FATAL:
            completeness_tracker.mark_failure(patient_id, str(wrapped))
        completeness_tracker.log_error(
            error_type=error_name,
            message=str(error),
            patient_id=patient_id,
            phase=phase,
            severity=severity
        )

    if severity is ErrorSeverity.FATAL:
        log.error(str(wrapped))
    else:
        log.warning(str(wrapped))
    return severity
