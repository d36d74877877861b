# --- START OF FILE app.py ---

# =============================================================================
# SPECIALTY MAPPING API
# =============================================================================
# This Flask application exposes the deterministic specialty-mapping engine
# over HTTP: single and batch mapping, review suggestions, configuration
# status and hot reload.

import time, logging, threading
from datetime import datetime
from typing import Dict, Optional, Tuple

from flask import Flask, request, jsonify
from flask_cors import CORS

from .common.hash_keys import compute_request_hash
from .config_loader import ConfigurationError
from .config_manager import get_config, setup_logging
from .mapping_engine import (
    get_mapping_engine,
    get_mapping_suggestions,
    initialize_mapping_engine,
    reload_mapping_engine,
)
from .models import RawInput
from .reporting import summarize_decisions

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app,
     methods=['GET', 'POST', 'OPTIONS'],
     allow_headers=['Content-Type', 'Authorization'],
     supports_credentials=False)

# =============================================================================
# APPLICATION INITIALIZATION
# =============================================================================

_init_lock = threading.Lock()
_app_initialized = False
_init_error: Optional[str] = None


def _initialize_app():
    """Builds the shared mapping engine from the current configuration."""
    global _init_error
    logger.info("--- Performing first-time application initialization... ---")
    start_time = time.time()
    try:
        initialize_mapping_engine()
        _init_error = None
    except ConfigurationError as e:
        _init_error = str(e)
        logger.critical(f"Mapping engine failed to initialize: {e}")
        return
    logger.info(f"Initialization complete in {time.time() - start_time:.2f} seconds.")


def _ensure_app_is_initialized():
    """Thread-safe gatekeeper to ensure initialization runs only once."""
    global _app_initialized
    if _app_initialized: return
    with _init_lock:
        if not _app_initialized:
            _initialize_app()
            _app_initialized = True


def _unavailable():
    return jsonify({'error': 'Mapping engine unavailable', 'detail': _init_error}), 503


def _parse_input(payload: Dict) -> Tuple[Optional[RawInput], Optional[str]]:
    if not isinstance(payload, dict):
        return None, "Each input must be a JSON object"
    raw_name = payload.get('raw_name')
    if raw_name is None or not isinstance(raw_name, str):
        return None, "Missing required field: raw_name"
    return RawInput(
        source=str(payload.get('source') or ''),
        raw_name=raw_name,
        provider_type=payload.get('provider_type'),
        domain_hint=payload.get('domain_hint'),
    ), None


def _decision_payload(decision) -> Dict:
    result = decision.to_dict()
    result['request_hash'] = compute_request_hash(
        decision.input.source, decision.input.raw_name,
        decision.input.provider_type, decision.input.domain_hint,
    )
    return result

# =============================================================================
# ENDPOINTS
# =============================================================================

@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint for monitoring service availability"""
    return jsonify({
        'status': 'healthy' if not _init_error else 'degraded',
        'timestamp': datetime.now().isoformat(),
        'app_initialized': _app_initialized,
        'engine_ready': _app_initialized and _init_error is None,
    })


@app.route('/map', methods=['POST'])
def map_single():
    """Maps one raw specialty label."""
    _ensure_app_is_initialized()
    if _init_error:
        return _unavailable()

    raw_input, error = _parse_input(request.get_json(silent=True) or {})
    if error:
        return jsonify({'error': error}), 400

    decision = get_mapping_engine().map_specialty(raw_input)
    return jsonify(_decision_payload(decision))


@app.route('/map_batch', methods=['POST'])
def map_batch():
    """Maps a list of inputs; output order matches input order."""
    _ensure_app_is_initialized()
    if _init_error:
        return _unavailable()

    data = request.get_json(silent=True) or {}
    items = data.get('inputs')
    if not isinstance(items, list):
        return jsonify({'error': "Request body must contain an 'inputs' list"}), 400

    raw_inputs = []
    for position, item in enumerate(items):
        raw_input, error = _parse_input(item)
        if error:
            return jsonify({'error': f"inputs[{position}]: {error}"}), 400
        raw_inputs.append(raw_input)

    workers = data.get('max_workers')
    if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
        workers = None

    start_time = time.time()
    engine = get_mapping_engine()
    decisions = engine.map_specialties(raw_inputs, max_workers=workers)
    logger.info(f"Mapped batch of {len(decisions)} in {time.time() - start_time:.2f}s")
    return jsonify({
        'decisions': [_decision_payload(d) for d in decisions],
        'summary': summarize_decisions(decisions).to_dict(),
        'fingerprint': engine.fingerprint,
    })


@app.route('/suggestions', methods=['POST'])
def suggestions():
    """Top-N candidates for human review, regardless of threshold."""
    _ensure_app_is_initialized()
    if _init_error:
        return _unavailable()

    data = request.get_json(silent=True) or {}
    raw_name = data.get('raw_name')
    if not isinstance(raw_name, str):
        return jsonify({'error': "Missing required field: raw_name"}), 400

    top_n = data.get('top_n')
    if top_n is not None and (not isinstance(top_n, int) or isinstance(top_n, bool) or top_n < 1):
        return jsonify({'error': "top_n must be a positive integer"}), 400

    candidates = get_mapping_suggestions(
        raw_name, source=data.get('source'), domain_hint=data.get('domain_hint'), top_n=top_n
    )
    return jsonify({'raw_name': raw_name, 'candidates': [c.to_dict() for c in candidates]})


@app.route('/config/status', methods=['GET'])
def config_status():
    """Loaded document versions, fingerprint and tuning settings."""
    _ensure_app_is_initialized()
    if _init_error:
        return _unavailable()
    status = get_mapping_engine().status()
    status['config_source'] = get_config().config_source
    status['timestamp'] = datetime.now().isoformat()
    return jsonify(status)


@app.route('/config/reload', methods=['POST'])
def reload_config():
    """Re-reads settings and documents, then swaps in a freshly built engine."""
    global _init_error, _app_initialized
    config_manager = get_config()
    try:
        snapshot = config_manager.load_snapshot()
        engine = reload_mapping_engine(config_manager=snapshot)
    except ConfigurationError as e:
        logger.error(f"Config reload rejected: {e}")
        return jsonify({
            'error': 'Configuration reload failed; previous engine kept',
            'detail': str(e),
            'timestamp': datetime.now().isoformat(),
        }), 400
    config_manager.apply(snapshot)
    with _init_lock:
        _init_error = None
        _app_initialized = True
    return jsonify({
        'message': 'Configuration reloaded successfully',
        'fingerprint': engine.fingerprint,
        'source': config_manager.config_source,
        'timestamp': datetime.now().isoformat(),
    })


def main():
    setup_logging()
    config_manager = get_config()
    _ensure_app_is_initialized()
    app.run(
        host=config_manager.get('api.host', '0.0.0.0'),
        port=int(config_manager.get('api.port', 10000)),
        debug=bool(config_manager.get('api.debug', False)),
    )


if __name__ == '__main__':
    main()

# --- END OF FILE app.py ---
