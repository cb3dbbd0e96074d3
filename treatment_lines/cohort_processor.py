"""
Automated Cohort Processing Pipeline
=====================================
Derives treatment lines for every patient of a cohort. Patients are
independent: each one runs the full per-patient pipeline on its own
events, optionally in a process pool, and a failure for one patient is
recorded in the completeness metadata without touching the others.
"""

import json
import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from .cohort import filter_to_followup, normalize_cohort, normalize_events, patient_followup_end
from .config import TreatmentLineConfig
from .exception_handling import CompletenessTracker, ErrorSeverity, handle_error
from .pipeline import LONG_COLUMNS, PatientResult, derive_patient_lines, lines_to_frame

logger = logging.getLogger(__name__)


@dataclass
class CohortResult:
    """Output of a cohort run"""
    lines: pd.DataFrame
    long_format: Optional[pd.DataFrame]
    completeness: Dict[str, Any]
    failed_patients: List[str] = field(default_factory=list)
    dropped_events: Dict[str, int] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.failed_patients


def _run_patient(patient_id: str, patient_events: pd.DataFrame, followup_end,
                 config: TreatmentLineConfig) -> PatientResult:
    """Process-pool entry point (module level so it pickles)."""
    return derive_patient_lines(patient_id, patient_events, followup_end, config)


def _record_success(tracker: CompletenessTracker, result: PatientResult):
    """Mark a derived patient and report its recoverable issues."""
    tracker.mark_success(result.patient_id, len(result.lines))
    for issue in result.issues:
        handle_error(issue, phase=issue.phase, patient_id=result.patient_id,
                     completeness_tracker=tracker, logger_instance=logger)


class CohortProcessor:
    """
    Cohort-wide treatment line derivation with per-patient isolation
    """

    def __init__(self, config: Optional[TreatmentLineConfig] = None):
        """
        Initialize cohort processor

        Args:
            config: Run configuration (uses defaults if not provided)
        """
        self.config = (config or TreatmentLineConfig()).validate()

    def process_cohort(self, cohort_df: pd.DataFrame, events_df: pd.DataFrame,
                       parallel: Optional[bool] = None) -> CohortResult:
        """
        Derive lines for every patient listed in the cohort table.

        Args:
            cohort_df: Cohort table (patient_id, index_date, followup_end)
            events_df: Event table (patient_id, event_date, drug_group, ...)
            parallel: Override config.parallel

        Returns:
            CohortResult with line table, optional long table and completeness metadata
        """
        parallel = self.config.parallel if parallel is None else parallel

        cohort = normalize_cohort(cohort_df)
        events = normalize_events(events_df, self.config.class_separator)
        events, dropped = filter_to_followup(events, cohort)

        followup = patient_followup_end(cohort)
        patient_ids = cohort['patient_id'].tolist()
        events_by_patient = {pid: group for pid, group in events.groupby('patient_id', sort=False)}
        empty = events.iloc[0:0]

        logger.info(f"Starting cohort processing for {len(patient_ids)} patients ({len(events)} events)")

        tracker = CompletenessTracker()
        results: Dict[str, PatientResult] = {}

        if parallel and len(patient_ids) > 1:
            with ProcessPoolExecutor(max_workers=self.config.max_workers) as executor:
                future_to_patient = {}
                for patient_id in patient_ids:
                    tracker.mark_attempted(patient_id)
                    future = executor.submit(
                        _run_patient, patient_id, events_by_patient.get(patient_id, empty),
                        followup.get(patient_id), self.config
                    )
                    future_to_patient[future] = patient_id

                for future in as_completed(future_to_patient):
                    patient_id = future_to_patient[future]
                    try:
                        results[patient_id] = future.result()
                        _record_success(tracker, results[patient_id])
                    except Exception as e:
                        handle_error(e, phase="PATIENT", patient_id=patient_id,
                                     completeness_tracker=tracker, logger_instance=logger)
        else:
            for idx, patient_id in enumerate(patient_ids, 1):
                tracker.mark_attempted(patient_id)
                try:
                    results[patient_id] = derive_patient_lines(
                        patient_id, events_by_patient.get(patient_id, empty),
                        followup.get(patient_id), self.config
                    )
                    _record_success(tracker, results[patient_id])
                except Exception as e:
                    handle_error(e, phase="PATIENT", patient_id=patient_id,
                                 completeness_tracker=tracker, logger_instance=logger)

                if idx % 500 == 0:
                    logger.info(f"Progress: {idx}/{len(patient_ids)} patients processed")

        result = self._assemble(patient_ids, results, tracker)
        result.dropped_events = dropped

        logger.info(
            f"Cohort processing complete: {len(result.lines)} lines, "
            f"{len(result.failed_patients)} failed patients"
        )
        return result

    def _assemble(self, patient_ids: List[str], results: Dict[str, PatientResult],
                  tracker: CompletenessTracker) -> CohortResult:
        """Concatenate per-patient outputs in cohort order."""
        ordered = [results[pid] for pid in patient_ids if pid in results]

        all_lines = [line for result in ordered for line in result.lines]
        lines_df = lines_to_frame(all_lines, self.config)

        long_df = None
        if self.config.emit_long_format:
            frames = [r.long_rows for r in ordered if r.long_rows is not None and not r.long_rows.empty]
            if frames:
                long_df = pd.concat(frames, ignore_index=True)
            else:
                long_df = pd.DataFrame(columns=LONG_COLUMNS)

        return CohortResult(
            lines=lines_df,
            long_format=long_df,
            completeness=tracker.get_completeness_metadata(),
            failed_patients=tracker.get_failed_patients(),
        )

    def write_outputs(self, result: CohortResult, output_dir: Union[str, Path]) -> Dict[str, Path]:
        """
        Write the run artifacts.

        Returns:
            Mapping of artifact name -> written path
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        written = {}
        lines_file = output_dir / "treatment_lines.csv"
        result.lines.to_csv(lines_file, index=False, date_format='%Y-%m-%d')
        written['lines'] = lines_file

        if result.long_format is not None:
            long_file = output_dir / "treatment_lines_long.csv"
            result.long_format.to_csv(long_file, index=False, date_format='%Y-%m-%d')
            written['long_format'] = long_file

        completeness_file = output_dir / "completeness.json"
        with open(completeness_file, 'w') as f:
            json.dump({**result.completeness, 'dropped_events': result.dropped_events}, f, indent=2)
        written['completeness'] = completeness_file

        logger.info(f"Wrote {len(written)} artifacts to {output_dir}")
        return written

    def generate_cohort_report(self, result: CohortResult,
                               output_dir: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
        """
        Summarize a cohort run (optionally saved as cohort_report.json).
        """
        lines = result.lines
        completeness = result.completeness
        cohort_size = completeness.get('total_patients_attempted', 0)

        lines_per_patient = pd.Series(
            {pid: info['line_count'] for pid, info in completeness.get('patients', {}).items()
             if info['succeeded']},
            dtype=float
        )

        report = {
            'generated_at': datetime.now().isoformat(),
            'cohort_size': cohort_size,
            'processing_success_rate': completeness.get('completeness_score', 0.0) * 100,
            'failed_patients': result.failed_patients,
            'recoverable_issues': sum(
                1 for e in completeness.get('errors', []) if e['severity'] == ErrorSeverity.RECOVERABLE.value
            ),
            'patients_with_lines': int((lines_per_patient > 0).sum()),
            'total_lines': int(len(lines)),
            'line_statistics': {},
            'class_frequencies': {},
            'lines_needing_review': int(lines['needs_review'].sum()) if not lines.empty else 0,
        }

        if not lines_per_patient.empty:
            report['line_statistics'] = {
                'median_lines_per_patient': float(lines_per_patient.median()),
                'max_lines_per_patient': int(lines_per_patient.max()),
            }
        if not lines.empty:
            report['line_statistics']['median_duration_days'] = float(lines['duration_days'].median())
            report['class_frequencies'] = {
                str(k): int(v) for k, v in lines['therapy_classes'].value_counts().items()
            }

        if output_dir is not None:
            report_file = Path(output_dir) / "cohort_report.json"
            report_file.parent.mkdir(parents=True, exist_ok=True)
            with open(report_file, 'w') as f:
                json.dump(report, f, indent=2)

        return report


def derive_treatment_lines(cohort_df: pd.DataFrame, events_df: pd.DataFrame,
                           config: Optional[TreatmentLineConfig] = None) -> CohortResult:
    """Convenience wrapper: run a cohort with the given (or default) configuration."""
    return CohortProcessor(config).process_cohort(cohort_df, events_df)
