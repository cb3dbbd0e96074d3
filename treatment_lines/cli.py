"""
Command-line interface for treatment line derivation

    treatment-lines run cohort.csv events.csv outputs/ [--config run.yaml] [--parallel]
    treatment-lines simulate demo/ --patients 200 --seed 7
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .cohort import load_table
from .cohort_processor import CohortProcessor
from .config import load_config
from .drug_classifier import DrugClassifier
from .exception_handling import ConfigurationError
from .simulation import simulate_cohort
from .structured_logging import setup_root_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PATIENT_FAILURES = 1
EXIT_INPUT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='treatment-lines',
        description='Derive treatment lines from longitudinal therapy records'
    )
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    run = subparsers.add_parser('run', help='Derive treatment lines for a cohort')
    run.add_argument('cohort_path', type=Path,
                     help='Cohort CSV (patient_id, index_date, followup_end)')
    run.add_argument('events_path', type=Path,
                     help='Event CSV (patient_id, event_date, drug_group, therapy_class, candidate_classes)')
    run.add_argument('output_path', type=Path,
                     help='Directory for output files')
    run.add_argument('--config', type=Path, default=None,
                     help='Path to configuration YAML (optional)')
    run.add_argument('--code-table', type=Path, default=None,
                     help='Treatment code table; classifies a raw contact table given as events_path')
    run.add_argument('--gap-days', type=int, default=None,
                     help='Gap threshold in days (overrides config)')
    run.add_argument('--no-long-format', action='store_true',
                     help='Skip the one-row-per-event output')
    run.add_argument('--parallel', action='store_true',
                     help='Process patients in a process pool')
    run.add_argument('--max-workers', type=int, default=None,
                     help='Process pool size (overrides config)')

    simulate = subparsers.add_parser('simulate', help='Write a synthetic cohort and event table')
    simulate.add_argument('output_path', type=Path, help='Directory for cohort.csv and events.csv')
    simulate.add_argument('--patients', type=int, default=100, help='Number of patients')
    simulate.add_argument('--seed', type=int, default=0, help='Random seed')

    return parser


def _run(args: argparse.Namespace) -> int:
    config = load_config(args.config).with_overrides(
        gap_days=args.gap_days,
        max_workers=args.max_workers,
        emit_long_format=False if args.no_long_format else None,
        parallel=True if args.parallel else None,
    )

    cohort_df = load_table(args.cohort_path)
    events_df = load_table(args.events_path)

    if args.code_table is not None:
        classifier = DrugClassifier(args.code_table, config.drug_group_count, config.class_separator)
        events_df = classifier.classify(events_df)

    processor = CohortProcessor(config)
    result = processor.process_cohort(cohort_df, events_df)
    processor.write_outputs(result, args.output_path)
    report = processor.generate_cohort_report(result, args.output_path)

    print("\n" + "=" * 80)
    print("TREATMENT LINE DERIVATION COMPLETE")
    print("=" * 80)
    print(f"\nProcessed: {report['cohort_size']} patients")
    print(f"Success rate: {report['processing_success_rate']:.1f}%")
    print(f"Treatment lines: {report['total_lines']} ({report['lines_needing_review']} need review)")
    if result.failed_patients:
        print(f"\nFailed patients: {', '.join(result.failed_patients)}")
        return EXIT_PATIENT_FAILURES
    return EXIT_OK


def _simulate(args: argparse.Namespace) -> int:
    cohort_df, events_df = simulate_cohort(n_patients=args.patients, seed=args.seed)
    args.output_path.mkdir(parents=True, exist_ok=True)
    cohort_df.to_csv(args.output_path / 'cohort.csv', index=False, date_format='%Y-%m-%d')
    events_df.to_csv(args.output_path / 'events.csv', index=False, date_format='%Y-%m-%d')
    logger.info(f"Wrote {len(cohort_df)} patients and {len(events_df)} events to {args.output_path}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """
    Command-line entry point

    Returns:
        0 on success, 1 when any patient failed, 2 on configuration/input errors
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_root_logging(level=getattr(logging, args.log_level))

    try:
        if args.command == 'run':
            return _run(args)
        return _simulate(args)
    except (ConfigurationError, ValueError, FileNotFoundError) as e:
        logger.error(str(e))
        return EXIT_INPUT_ERROR


if __name__ == "__main__":
    sys.exit(main())
