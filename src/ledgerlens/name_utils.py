"""
Counterparty name normalization and similarity utilities.

Normalized names are used only to decide which entities belong together.
Original names are never modified, stored, or displayed in normalized form.
"""

import re

# Vendor grouping historically used a stricter threshold than counterparty
# grouping. DEFAULT_SIMILARITY_THRESHOLD is the single default used by the
# grouping engine and the settings loader.
DEFAULT_SIMILARITY_THRESHOLD = 0.6
VENDOR_SIMILARITY_THRESHOLD = 0.8
DEFAULT_MIN_NAME_LENGTH = 3

# Punctuation common in bank vendor names, including the slash in dates like "12/15"
_SPECIAL_CHARS = re.compile(r'[*#\-_@&\'".,:;!()\[\]{}/\\]')
_WHITESPACE = re.compile(r'\s+')
_DIGIT = re.compile(r'\d')


def normalize_name(name):
    """Normalize a counterparty name into a comparison key.

    Steps:
    1. Lowercase
    2. Replace special characters (*, #, -, /, etc.) with spaces
    3. Collapse whitespace and trim
    4. Drop whole tokens containing a digit (transaction IDs like "1234ABC",
       store numbers, dates, reference codes)

    Examples:
        AMAZON*1234ABC   -> amazon
        STARBUCKS #1234  -> starbucks
        UBER-EATS        -> uber eats
        7-ELEVEN         -> eleven
    """
    normalized = name.lower()
    normalized = _SPECIAL_CHARS.sub(' ', normalized)
    normalized = _WHITESPACE.sub(' ', normalized).strip()

    words = [word for word in normalized.split(' ') if not _DIGIT.search(word)]
    return ' '.join(words)


def extract_first_word(normalized):
    """Return the text before the first space (the whole string if none)."""
    space = normalized.find(' ')
    if space == -1:
        return normalized
    return normalized[:space]


def create_canonical_name(normalized):
    """Build a display name from a normalized form.

    Capitalizes the first letter of each word and leaves the rest alone:
    "whole foods market" -> "Whole Foods Market".
    """
    return ' '.join(word[:1].upper() + word[1:] for word in normalized.split(' '))


def longest_common_prefix(a, b):
    """Return the longest leading substring shared by a and b."""
    min_length = min(len(a), len(b))
    i = 0
    while i < min_length and a[i] == b[i]:
        i += 1
    return a[:i]


def lcp_similarity(a, b):
    """LCP length divided by the shorter string's length.

    Returns 1.0 when one string is a prefix of the other and 0.0 when
    either is empty. Pass normalized forms, not raw names.
    """
    if not a or not b:
        return 0.0
    return len(longest_common_prefix(a, b)) / min(len(a), len(b))


def should_group(name1, name2, threshold=DEFAULT_SIMILARITY_THRESHOLD,
                 min_name_length=DEFAULT_MIN_NAME_LENGTH):
    """Check whether two raw names would be grouped together.

    Names whose normalized form is shorter than min_name_length are too
    ambiguous and never grouped.
    """
    norm1 = normalize_name(name1)
    norm2 = normalize_name(name2)

    if len(norm1) < min_name_length or len(norm2) < min_name_length:
        return False

    return lcp_similarity(norm1, norm2) >= threshold
