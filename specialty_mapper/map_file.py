#!/usr/bin/env python3
# --- START OF FILE map_file.py ---

# =============================================================================
# BATCH FILE MAPPER
# =============================================================================
# Command-line interface for mapping a delimited survey export in one pass:
# read rows, apply the source adapter, map every row and write an annotated
# copy of the file plus batch statistics.

import argparse
import csv
import functools
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .config_loader import ConfigurationError
from .config_manager import get_config, setup_logging
from .mapping_engine import build_mapping_engine
from .models import Decision
from .reporting import confusion_report, format_summary, summarize_decisions
from .source_adapters import generic_adapter, get_source_adapter

logger = logging.getLogger(__name__)

OUTPUT_COLUMNS = [
    'Canonical ID',
    'Confidence',
    'Status',
    'Domain',
    'Parent Bucket',
    'Top Candidate',
    'Rules Hit',
    'Notes',
]


def decision_columns(decision: Decision) -> Dict[str, str]:
    top = decision.top_candidate
    return {
        'Canonical ID': decision.decided_canonical_id or '',
        'Confidence': f"{decision.confidence:.3f}",
        'Status': decision.status,
        'Domain': decision.domain.value,
        'Parent Bucket': decision.parent_bucket or '',
        'Top Candidate': top.canonical_id if top else '',
        'Rules Hit': ';'.join(decision.rules_hit),
        'Notes': decision.notes,
    }


def read_rows(path: Path, delimiter: str) -> Tuple[List[str], List[Dict[str, str]]]:
    with open(path, 'r', encoding='utf-8-sig', newline='') as f:
        reader = csv.DictReader(f, delimiter=delimiter)
        rows = list(reader)
        return list(reader.fieldnames or []), rows


def write_rows(path: Path, fieldnames: Sequence[str], rows: List[Dict[str, str]], delimiter: str):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=list(fieldnames), delimiter=delimiter, extrasaction='ignore')
        writer.writeheader()
        writer.writerows(rows)


def map_file(input_path: Path, source: str, output_path: Path, adapter_name: Optional[str] = None,
             delimiter: str = ',', engine=None, max_workers: Optional[int] = None) -> List[Decision]:
    """
    Maps every row of a delimited file and writes the annotated copy.

    Rows the adapter rejects (no specialty value) are written through with
    empty result columns and are not counted as decisions.
    """
    adapter_key = adapter_name or source
    if adapter_key.strip().lower() == 'generic':
        adapter = functools.partial(generic_adapter, source=source)
    else:
        adapter = get_source_adapter(adapter_key)

    fieldnames, rows = read_rows(input_path, delimiter)
    if not fieldnames:
        raise ValueError(f"Input file has no header row: {input_path}")

    adapted = [adapter(row) for row in rows]
    raw_inputs = [raw_input for raw_input in adapted if raw_input is not None]
    logger.info(f"Parsed {len(raw_inputs)} specialty entries from {len(rows)} rows")

    engine = engine or build_mapping_engine()
    decisions = iter(engine.map_specialties(raw_inputs, max_workers=max_workers))
    collected: List[Decision] = []

    output_rows = []
    for row, raw_input in zip(rows, adapted):
        out = dict(row)
        if raw_input is None:
            out.update({column: '' for column in OUTPUT_COLUMNS})
            out['Notes'] = 'no specialty value'
        else:
            decision = next(decisions)
            collected.append(decision)
            out.update(decision_columns(decision))
        output_rows.append(out)

    extra = [column for column in OUTPUT_COLUMNS if column not in fieldnames]
    write_rows(output_path, fieldnames + extra, output_rows, delimiter)
    return collected


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the batch file mapper."""
    parser = argparse.ArgumentParser(
        description='Map raw survey specialty labels in a delimited file to canonical specialties',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Map an MGMA export with the default preset
  specialty-map-file --in mgma_2024.csv --source MGMA --out mapped.csv

  # Stricter threshold, tab-delimited input, verbose undecided listing
  specialty-map-file --in sc.tsv --source SullivanCotter --out mapped.tsv --delimiter '\\t' --preset conservative -v
        """
    )
    parser.add_argument('--in', dest='input', required=True, help='Input delimited file')
    parser.add_argument('--source', required=True, help='Survey source tag (e.g. MGMA, SullivanCotter, Gallagher)')
    parser.add_argument('--out', dest='output', required=True, help='Output file path')
    parser.add_argument('--adapter', help='Source adapter name (defaults to --source; "generic" sniffs headers)')
    parser.add_argument('--preset', help='Tuning preset: default, conservative, aggressive, pediatric, adult')
    parser.add_argument('--threshold', type=float, help='Minimum decision confidence, overrides the preset')
    parser.add_argument('--delimiter', default=',', help='Field delimiter (default: ",")')
    parser.add_argument('--workers', type=int, help='Parallel workers for mapping')
    parser.add_argument('--data-dir', help='Directory holding taxonomy, synonym, rule and override documents')
    parser.add_argument('-v', '--verbose', action='store_true', help='List undecided entries and log at DEBUG')

    args = parser.parse_args(argv)
    setup_logging(level='DEBUG' if args.verbose else None)

    delimiter = args.delimiter.encode('utf-8').decode('unicode_escape')
    if len(delimiter) != 1:
        parser.error(f"--delimiter must be a single character, got {args.delimiter!r}")
    if args.threshold is not None and not 0.0 <= args.threshold <= 1.0:
        parser.error("--threshold must be between 0 and 1")
    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")

    input_path = Path(args.input)
    if not input_path.exists():
        logger.error(f"Input file does not exist: {input_path}")
        return 1

    start_time = datetime.now()
    print(f"Mapping file: {input_path}")
    print(f"Source: {args.source}")
    print(f"Output: {args.output}")

    try:
        engine = build_mapping_engine(get_config(), data_dir=args.data_dir,
                                      preset=args.preset, threshold=args.threshold)
        print(f"Preset: {engine.settings.preset}")
        print(f"Threshold: {engine.threshold:.2f}")
        decisions = map_file(input_path, args.source, Path(args.output), adapter_name=args.adapter,
                             delimiter=delimiter, engine=engine, max_workers=args.workers)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyError as e:
        logger.error(e.args[0] if e.args else str(e))
        return 1
    except (OSError, ValueError, csv.Error) as e:
        logger.error(f"Input error: {e}")
        return 1

    summary = summarize_decisions(decisions)
    print()
    print(format_summary(summary))

    if args.verbose:
        print("\nUndecided entries:")
        for entry in confusion_report(decisions):
            print(f"  {entry['raw_name']} ({entry['source']}) - {entry['notes']}")

    print(f"\nOutput written to: {args.output}")
    print(f"Total time: {datetime.now() - start_time}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

# --- END OF FILE map_file.py ---
