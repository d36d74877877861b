"""
Hash-based utilities for request identification and configuration provenance.

This module provides deterministic hashing of specialty mapping requests
based on the four input fields: SOURCE, RAW_NAME, PROVIDER_TYPE, DOMAIN_HINT,
and a fingerprint over the versions of every loaded configuration document.
"""

import hashlib
import unicodedata
from typing import Dict, Optional


def normalize_field(value: Optional[str]) -> str:
    """
    Normalize a field value for consistent hashing.

    Steps:
    1. Convert None to empty string
    2. Normalize to NFC (canonical composition)
    3. Strip and collapse whitespace
    4. Convert to lowercase

    Args:
        value: The field value to normalize (can be None)

    Returns:
        Normalized string ready for hashing
    """
    if value is None:
        return ""

    normalized = unicodedata.normalize('NFC', str(value))
    collapsed = ' '.join(normalized.strip().split())
    return collapsed.lower()


def _escape(value: str) -> str:
    return value.replace('|', '%7C')


def build_preimage(source: Optional[str], raw_name: Optional[str],
                   provider_type: Optional[str] = None, domain_hint: Optional[str] = None) -> str:
    """
    Build the canonical preimage string for hashing.

    Format: "v1|src:{SOURCE}|rn:{RAW_NAME}|pt:{PROVIDER_TYPE}|dh:{DOMAIN_HINT}"

    Pipe characters inside values are escaped as %7C.
    """
    src = _escape(normalize_field(source))
    rn = _escape(normalize_field(raw_name))
    pt = _escape(normalize_field(provider_type))
    dh = _escape(normalize_field(domain_hint))
    return f"v1|src:{src}|rn:{rn}|pt:{pt}|dh:{dh}"


def compute_request_hash(source: Optional[str], raw_name: Optional[str],
                         provider_type: Optional[str] = None, domain_hint: Optional[str] = None) -> str:
    """
    Compute SHA-256 hash of the request parameters.

    Returns:
        SHA-256 hash as lowercase hexadecimal string
    """
    preimage = build_preimage(source, raw_name, provider_type, domain_hint)
    return hashlib.sha256(preimage.encode('utf-8')).hexdigest()


def compute_configuration_fingerprint(versions: Dict[str, str], settings_key: str = "") -> str:
    """
    Fingerprint a loaded configuration.

    The fingerprint covers every declared document version plus a stable
    rendering of the engine settings, not the document contents: a document
    edited without bumping its `version` keeps the same fingerprint.

    Args:
        versions: Document role -> version string
        settings_key: Stable serialization of the engine settings

    Returns:
        First 16 hex characters of the SHA-256 digest
    """
    parts = [f"{_escape(role)}={_escape(str(versions[role]))}" for role in sorted(versions)]
    preimage = "cfg1|" + "|".join(parts) + "|settings:" + settings_key
    return hashlib.sha256(preimage.encode('utf-8')).hexdigest()[:16]
