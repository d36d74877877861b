# --- START OF FILE preprocessing.py ---

# =============================================================================
# PREPROCESSING MODULE - SPECIALTY LABEL NORMALIZATION
# =============================================================================
# Cleans and normalizes raw specialty labels before any matching happens.
# Every later stage (taxonomy index, domain hints, bucket synonyms, rules,
# scoring) works on text produced by this module, so the same function is
# applied to configuration strings at load time and to inputs at request time.

import re
import logging
import string
import unicodedata
from typing import List, Optional

logger = logging.getLogger(__name__)

# Characters that separate words in survey labels ("Allergy/Immunology",
# "Cardiology: Interventional", "Ob+Gyn", "Hem (Onc)", "Peds-Cardiology").
SEPARATOR_CHARACTERS = '/&:;+,|()[]{}_\\"-'

# Unicode look-alikes that survive NFKD decomposition.
LOOKALIKE_TRANSLATION = str.maketrans({
    '‘': "'", '’': "'", '‚': "'", '‛': "'",
    '“': '"', '”': '"', '„': '"', '‟': '"',
    '′': "'", '″': '"',
    '‐': '-', '‑': '-', '‒': '-', '–': '-',
    '—': '-', '―': '-', '−': '-',
    '…': '...',
    ' ': ' ', ' ': ' ', ' ': ' ',
})

TOKEN_PUNCTUATION = string.punctuation


class SpecialtyNormalizer:
    """
    Normalizes free-text specialty labels into a canonical lowercase form.

    The pipeline is deterministic and total: any input, including None or an
    empty string, produces a string and never raises. The output is a fixed
    point of the pipeline, so normalizing an already-normalized label returns
    it unchanged.
    """

    def __init__(self, separators: str = SEPARATOR_CHARACTERS):
        self.separators = separators
        self._init_patterns()

    def _init_patterns(self):
        """Compiles the separator and whitespace patterns once."""
        self.separator_pattern = re.compile('[' + re.escape(self.separators) + ']')
        self.whitespace_pattern = re.compile(r'\s+')

    def _fold_unicode(self, text: str) -> str:
        """
        Folds accents, smart quotes, dashes and ellipses to ASCII equivalents.

        Why: Survey exports mix Word-style punctuation ("Ob–Gyn") and accented
             letters ("Pédiatrie"); folding first keeps every later step ASCII-aware.
        """
        decomposed = unicodedata.normalize('NFKD', text)
        folded = decomposed.translate(LOOKALIKE_TRANSLATION)
        return ''.join(ch for ch in folded if not unicodedata.combining(ch))

    def _standardize_separators(self, text: str) -> str:
        """Maps separator characters to a single space."""
        return self.separator_pattern.sub(' ', text)

    def _strip_token_punctuation(self, text: str) -> str:
        """
        Strips surrounding punctuation from every token.

        Intra-word apostrophes are kept ("children's") while quote marks and
        dots around a word ("'peds'", "cardiology.") disappear.
        """
        tokens = (token.strip(TOKEN_PUNCTUATION) for token in text.split())
        return ' '.join(token for token in tokens if token)

    def _normalize_whitespace(self, text: str) -> str:
        """Collapses runs of whitespace into single spaces and trims the ends."""
        return self.whitespace_pattern.sub(' ', text).strip()

    def normalize(self, text: Optional[str]) -> str:
        """
        Applies the complete normalization pipeline to a single label.

        Args:
            text (str): The raw specialty label. None is treated as empty.

        Returns:
            str: The normalized label, or "" when nothing meaningful remains.
        """
        if not text:
            return ""

        cleaned = self._fold_unicode(str(text))
        cleaned = cleaned.strip().lower()
        cleaned = self._normalize_whitespace(cleaned)
        cleaned = self._standardize_separators(cleaned)
        cleaned = self._strip_token_punctuation(cleaned)
        return self._normalize_whitespace(cleaned)


def tokenize(normalized_text: str) -> List[str]:
    """Splits normalized text into its whitespace tokens."""
    if not normalized_text:
        return []
    return normalized_text.split(' ')


def contains_phrase(normalized_text: str, phrase: str) -> bool:
    """
    True when `phrase` occurs in `normalized_text` as a run of whole tokens.

    Both arguments must already be normalized. "cardiology" is found in
    "peds cardiology" but "cardio" is not found in "cardiology".
    """
    if not phrase or not normalized_text:
        return False
    return f' {phrase} ' in f' {normalized_text} '


# =============================================================================
# GLOBAL INSTANCE AND CONVENIENCE FUNCTIONS
# =============================================================================

_normalizer = SpecialtyNormalizer()


def normalize(text: Optional[str]) -> str:
    return _normalizer.normalize(text)

# --- END OF FILE preprocessing.py ---
