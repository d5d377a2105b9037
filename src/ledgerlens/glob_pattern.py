r"""
Glob pattern compilation for categorization rules.

Rule patterns use shell-style wildcards and are matched against the
whole counterparty name, case-insensitively:

    *        any characters (0 or more)
    ?        exactly one character
    [abc]    any character in the brackets
    {a,b}    any of the alternatives

Examples:
    STARBUCKS*     -> ^STARBUCKS.*\Z
    {UBER,LYFT}*   -> ^(UBER.*|LYFT.*)\Z
    UBER?EATS      -> ^UBER.EATS\Z
"""

import logging
import re
import warnings
from functools import lru_cache
from typing import List, Optional, Pattern

logger = logging.getLogger(__name__)

# Escaped outside of bracket classes
REGEX_METACHARACTERS = '.+^${}()|\\'


def expand_braces(pattern: str) -> List[str]:
    """Expand brace alternations into a list of brace-free globs.

    {UBER,LYFT}*  -> ['UBER*', 'LYFT*']
    {A,B}{1,2}    -> ['A1', 'A2', 'B1', 'B2']
    no-braces     -> ['no-braces']
    """
    brace_start = -1
    brace_end = -1
    depth = 0

    for i, char in enumerate(pattern):
        if char == '{':
            if depth == 0:
                brace_start = i
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0 and brace_start != -1:
                brace_end = i
                break

    if brace_start == -1 or brace_end == -1:
        return [pattern]

    prefix = pattern[:brace_start]
    suffix = pattern[brace_end + 1:]
    alternatives = pattern[brace_start + 1:brace_end]

    # Split on top-level commas only
    parts = []
    current = ''
    depth = 0
    for char in alternatives:
        if char == '{':
            depth += 1
            current += char
        elif char == '}':
            depth -= 1
            current += char
        elif char == ',' and depth == 0:
            parts.append(current)
            current = ''
        else:
            current += char
    parts.append(current)

    expanded = []
    for part in parts:
        expanded.extend(expand_braces(prefix + part + suffix))
    return expanded


def glob_to_regex_string(glob: str) -> str:
    """Convert a single brace-free glob to a regex source string."""
    escaped = ''
    in_bracket = False

    for char in glob:
        if char == '[' and not in_bracket:
            in_bracket = True
            escaped += char
        elif char == ']' and in_bracket:
            in_bracket = False
            escaped += char
        elif in_bracket:
            # Bracket contents pass through, only backslash is escaped
            escaped += '\\\\' if char == '\\' else char
        elif char == '*':
            escaped += '.*'
        elif char == '?':
            escaped += '.'
        elif char in REGEX_METACHARACTERS:
            escaped += '\\' + char
        else:
            escaped += char

    return escaped


def glob_to_regex(pattern: str) -> Pattern:
    """Compile a glob pattern into an anchored, case-insensitive regex.

    Raises re.error when the pattern cannot compile (e.g. an unclosed
    bracket class).
    """
    parts = [glob_to_regex_string(p) for p in expand_braces(pattern)]
    combined = f"({'|'.join(parts)})" if len(parts) > 1 else parts[0]
    # \Z, not $, so a trailing newline is not skipped
    return re.compile(f'^{combined}\\Z', re.IGNORECASE)


class GlobMatcher:
    """Whole-string matcher for one glob pattern.

    A pattern that fails to compile never matches anything.
    """

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.regex: Optional[Pattern] = None
        self.error: Optional[str] = None
        try:
            # Bracket classes like [[] compile fine but warn about nested sets
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', FutureWarning)
                self.regex = glob_to_regex(pattern)
        except re.error as e:
            self.error = str(e)
            logger.debug("Invalid glob pattern %r: %s", pattern, e)

    @property
    def is_valid(self) -> bool:
        return self.regex is not None

    def test(self, name: str) -> bool:
        if self.regex is None:
            return False
        return self.regex.match(name) is not None

    def __repr__(self):
        return f'GlobMatcher({self.pattern!r})'


@lru_cache(maxsize=1024)
def compile_glob(pattern: str) -> GlobMatcher:
    """Compile a glob pattern, reusing matchers for repeated patterns."""
    return GlobMatcher(pattern)


def matches(matcher: GlobMatcher, name: str) -> bool:
    """Test a name against a compiled matcher."""
    return matcher.test(name)


def matches_pattern(name: str, pattern: str) -> bool:
    """Test if a counterparty name matches a glob pattern."""
    return compile_glob(pattern).test(name)
