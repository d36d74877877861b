# --- START OF FILE mapping_engine.py ---

# =============================================================================
# SPECIALTY MAPPING ENGINE - DECISION ORCHESTRATION
# =============================================================================
# Runs one input through the pipeline and emits a fully annotated Decision:
#   NORMALIZE -> DOMAIN_RESOLVED -> BUCKET_RESOLUTION
#     no/ambiguous bucket          -> UNDECIDED
#     RULE_EVALUATION hit          -> DECIDED (if its confidence clears the threshold)
#     SCORING top >= threshold     -> DECIDED
#     otherwise                    -> UNDECIDED
# All indices are built once in the constructor and never mutated, so a single
# engine can serve any number of threads.

import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .bucket_resolver import ParentBucketResolver
from .common.hash_keys import compute_configuration_fingerprint
from .config_loader import MappingConfiguration, load_mapping_configuration
from .config_manager import ConfigSnapshot, build_engine_settings, get_config
from .domain_classifier import DomainClassifier
from .models import Decision, RawInput, ScoredCandidate, as_raw_inputs
from .preprocessing import normalize
from .rules_engine import RuleEvaluator
from .scoring_engine import CandidateScorer
from .taxonomy_index import TaxonomyIndex

logger = logging.getLogger(__name__)

InputLike = Union[RawInput, Dict]


class SpecialtyMappingEngine:
    """
    Deterministic mapper from raw specialty labels to canonical specialty ids.

    Construction validates cross-references between the documents and raises
    ConfigurationError on any inconsistency. After construction the engine is
    read-only; mapping never raises for well-typed input.
    """

    def __init__(self, configuration: MappingConfiguration):
        start_time = time.time()
        self.configuration = configuration
        self.settings = configuration.settings
        self.threshold = self.settings.min_decision_threshold

        self.index = TaxonomyIndex(configuration.taxonomy, configuration.synonyms)
        self.rule_evaluator = RuleEvaluator(
            configuration.rule_documents, configuration.overrides, self.index, self.settings
        )
        self.domain_classifier = DomainClassifier(configuration.synonyms, self.rule_evaluator, self.index)
        self.bucket_resolver = ParentBucketResolver(self.index, configuration.synonyms)
        self.scorer = CandidateScorer(self.index, configuration.synonyms, self.settings)

        self.versions = configuration.versions()
        self.fingerprint = compute_configuration_fingerprint(self.versions, self.settings.model_dump_json())
        logger.info(
            f"Mapping engine ready in {time.time() - start_time:.2f}s "
            f"(preset={self.settings.preset}, threshold={self.threshold:.2f}, fingerprint={self.fingerprint})"
        )

    # =============================================================================
    # SINGLE INPUT
    # =============================================================================

    def map_specialty(self, raw_input: InputLike) -> Decision:
        """
        Maps one input to a Decision.

        Args:
            raw_input: RawInput, or a dict with `source`, `raw_name` and the
                optional `provider_type` / `domain_hint`.

        Returns:
            Decision: DECIDED with a canonical id, or UNDECIDED with provenance.
        """
        if not isinstance(raw_input, RawInput):
            raw_input = RawInput.from_dict(raw_input)

        text = normalize(raw_input.raw_name)
        evidence = self.domain_classifier.classify(text, raw_input)
        domain = evidence.domain

        if not text:
            return Decision(
                input=raw_input,
                decided_canonical_id=None,
                confidence=0.0,
                domain=domain,
                domain_signal=evidence.signal,
                notes="empty input",
            )

        resolution = self.bucket_resolver.resolve(text, domain)
        if not resolution.resolved:
            logger.debug(f"UNDECIDED '{raw_input.raw_name}': parent bucket {resolution.method}")
            note = f"parent bucket {resolution.method}"
            if resolution.synonym_buckets:
                note += f": {', '.join(resolution.synonym_buckets)}"
            return Decision(
                input=raw_input,
                decided_canonical_id=None,
                confidence=0.0,
                domain=domain,
                domain_signal=evidence.signal,
                notes=note,
            )

        rules_hit = [resolution.hint_id] if resolution.hint_id else []

        hit = self.rule_evaluator.evaluate_hard_maps(text, domain, raw_input.source)
        if hit is not None:
            rules_hit.append(hit.rule_id)
            specialty = self.index.by_id(hit.canonical_id)
            candidate = ScoredCandidate(
                canonical_id=hit.canonical_id,
                score=hit.confidence,
                reasons=(f"{hit.tier}:{hit.rule_id}",),
            )
            decided = hit.confidence >= self.threshold
            if not decided:
                logger.debug(f"Hard map {hit.rule_id} confidence {hit.confidence} below threshold {self.threshold}")
            return Decision(
                input=raw_input,
                decided_canonical_id=hit.canonical_id if decided else None,
                confidence=hit.confidence,
                domain=domain,
                parent_bucket=specialty.parent_bucket,
                rules_hit=tuple(rules_hit),
                candidates=(candidate,),
                domain_signal=evidence.signal,
                notes=f"{hit.tier} rule" if decided else f"{hit.tier} rule below threshold",
            )

        candidates = self.scorer.score_candidates(text, domain, resolution.bucket, raw_input.source)
        top = tuple(candidates[:self.settings.top_n])
        best = top[0] if top else None
        decided = best is not None and best.score >= self.threshold
        if decided:
            notes = "scored"
        elif best is None:
            notes = "no candidates in bucket"
        else:
            notes = f"top score {best.score:.2f} below threshold {self.threshold:.2f}"

        return Decision(
            input=raw_input,
            decided_canonical_id=best.canonical_id if decided else None,
            confidence=best.score if best else 0.0,
            domain=domain,
            parent_bucket=resolution.bucket,
            rules_hit=tuple(rules_hit),
            tokens_matched=best.matched_tokens if best else (),
            candidates=top,
            domain_signal=evidence.signal,
            notes=notes,
        )

    # =============================================================================
    # BATCH AND REVIEW HELPERS
    # =============================================================================

    def map_specialties(self, inputs: Iterable[InputLike], max_workers: Optional[int] = None) -> List[Decision]:
        """
        Maps a batch. Output order always matches input order.

        With more than one worker the inputs are fanned out over a thread pool;
        each call only reads the shared indices.
        """
        raw_inputs = as_raw_inputs(list(inputs))
        workers = max_workers or self.settings.max_workers
        if workers <= 1 or len(raw_inputs) <= 1:
            return [self.map_specialty(raw_input) for raw_input in raw_inputs]

        logger.info(f"Mapping {len(raw_inputs)} inputs with max_workers={workers}")
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self.map_specialty, raw_inputs))

    def get_mapping_suggestions(self, raw_name: str, source: Optional[str] = None,
                                domain_hint: Optional[str] = None,
                                top_n: Optional[int] = None) -> List[ScoredCandidate]:
        """
        Top-N scored candidates for human review, ignoring threshold and hard rules.

        Returns an empty list when no parent bucket resolves.
        """
        raw_input = RawInput(source=source or '', raw_name=raw_name or '', domain_hint=domain_hint)
        text = normalize(raw_input.raw_name)
        if not text:
            return []
        domain = self.domain_classifier.infer_domain(text, raw_input)
        bucket = self.bucket_resolver.resolve_parent_bucket(text, domain)
        if bucket is None:
            return []
        candidates = self.scorer.score_candidates(text, domain, bucket, source)
        return candidates[:top_n or self.settings.top_n]

    def status(self) -> Dict:
        return {
            'fingerprint': self.fingerprint,
            'versions': dict(self.versions),
            'preset': self.settings.preset,
            'threshold': self.threshold,
            'char_similarity': self.settings.char_similarity,
            'specialties': len(self.index),
        }


# =============================================================================
# MODULE-LEVEL ENGINE (REFERENCE SWAPPED ON RELOAD)
# =============================================================================

_engine: Optional[SpecialtyMappingEngine] = None
_engine_lock = threading.Lock()


def build_mapping_engine(config_manager: Optional[ConfigSnapshot] = None,
                         data_dir: Optional[Union[str, Path]] = None,
                         preset: Optional[str] = None,
                         threshold: Optional[float] = None) -> SpecialtyMappingEngine:
    """Builds a fresh engine from the settings file and the data documents."""
    manager = config_manager or get_config()
    settings = build_engine_settings(manager, preset=preset, threshold=threshold)
    data_section = manager.get_section('data')
    configuration = load_mapping_configuration(
        data_dir=data_dir or data_section.get('directory'),
        data_config={key: data_section.get(key) for key in ('taxonomy', 'synonyms', 'rules', 'overrides')},
        settings=settings,
    )
    return SpecialtyMappingEngine(configuration)


def initialize_mapping_engine(**kwargs) -> SpecialtyMappingEngine:
    """Builds the shared engine and installs it. Accepts build_mapping_engine arguments."""
    global _engine
    engine = build_mapping_engine(**kwargs)
    with _engine_lock:
        _engine = engine
    return engine


def get_mapping_engine() -> SpecialtyMappingEngine:
    """Returns the shared engine, building it on first use."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = build_mapping_engine()
    return _engine


def reload_mapping_engine(**kwargs) -> SpecialtyMappingEngine:
    """
    Rebuilds the engine from configuration and swaps the shared reference.

    The running engine keeps serving until the new one is fully built; if the
    build fails the old engine stays in place and the error propagates.
    """
    return initialize_mapping_engine(**kwargs)


def map_specialty(raw_input: InputLike) -> Decision:
    return get_mapping_engine().map_specialty(raw_input)


def map_specialties(inputs: Iterable[InputLike], max_workers: Optional[int] = None) -> List[Decision]:
    return get_mapping_engine().map_specialties(inputs, max_workers=max_workers)


def get_mapping_suggestions(raw_name: str, source: Optional[str] = None,
                            domain_hint: Optional[str] = None,
                            top_n: Optional[int] = None) -> List[ScoredCandidate]:
    return get_mapping_engine().get_mapping_suggestions(raw_name, source=source, domain_hint=domain_hint,
                                                        top_n=top_n)

# --- END OF FILE mapping_engine.py ---
