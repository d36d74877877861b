"""
Batch statistics over a list of decisions.

Used by the batch CLI and the /map_batch endpoint. Everything here is a pure
function of the decisions passed in.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .models import Decision


@dataclass(frozen=True)
class MappingSummary:
    total: int
    decided: int
    undecided: int
    auto_decide_rate: float
    average_confidence: float
    by_source: Dict[str, Dict[str, int]] = field(default_factory=dict)
    undecided_by_bucket: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'total': self.total,
            'decided': self.decided,
            'undecided': self.undecided,
            'auto_decide_rate': round(self.auto_decide_rate, 1),
            'average_confidence': round(self.average_confidence, 3),
            'by_source': self.by_source,
            'undecided_by_bucket': self.undecided_by_bucket,
        }


def _bucket_label(decision: Decision) -> str:
    return f"{decision.domain.value}/{decision.parent_bucket or '(unresolved)'}"


def summarize_decisions(decisions: Sequence[Decision]) -> MappingSummary:
    total = len(decisions)
    decided = sum(1 for d in decisions if d.decided_canonical_id is not None)
    undecided = total - decided

    by_source: Dict[str, Dict[str, int]] = {}
    for d in decisions:
        counts = by_source.setdefault(d.input.source or '(none)', {'decided': 0, 'undecided': 0})
        counts['decided' if d.decided_canonical_id is not None else 'undecided'] += 1

    undecided_buckets = Counter(_bucket_label(d) for d in decisions if d.decided_canonical_id is None)

    return MappingSummary(
        total=total,
        decided=decided,
        undecided=undecided,
        auto_decide_rate=(decided / total * 100.0) if total else 0.0,
        average_confidence=(sum(d.confidence for d in decisions) / total) if total else 0.0,
        by_source=by_source,
        undecided_by_bucket=dict(sorted(undecided_buckets.items())),
    )


def confusion_report(decisions: Sequence[Decision]) -> List[Dict]:
    """Undecided decisions with what is known about them, for manual review."""
    report = []
    for d in decisions:
        if d.decided_canonical_id is not None:
            continue
        top = d.top_candidate
        report.append({
            'source': d.input.source,
            'raw_name': d.input.raw_name,
            'domain': d.domain.value,
            'parent_bucket': d.parent_bucket,
            'top_candidate': top.canonical_id if top else None,
            'top_score': top.score if top else None,
            'notes': d.notes,
        })
    return report


def format_summary(summary: MappingSummary) -> str:
    lines = [
        "Mapping Statistics:",
        f"Total processed: {summary.total}",
        f"Auto-decided: {summary.decided}",
        f"Undecided: {summary.undecided}",
        f"Auto-decide rate: {summary.auto_decide_rate:.1f}%",
        f"Average confidence: {summary.average_confidence:.3f}",
    ]
    if len(summary.by_source) > 1:
        lines.append("By source:")
        for source, counts in sorted(summary.by_source.items()):
            lines.append(f"  {source}: {counts['decided']} decided, {counts['undecided']} undecided")
    if summary.undecided_by_bucket:
        lines.append("Undecided by bucket:")
        for bucket, count in summary.undecided_by_bucket.items():
            lines.append(f"  {bucket}: {count}")
    return "\n".join(lines)
