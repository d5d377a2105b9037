"""
Categorization rule engine for counterparty names.

Rules are organized by type, and types execute in a hardcoded order:
custom "pattern" rules always run before built-in "default_pattern"
rules, whatever their numeric order. Within a type, rules run in
user-defined rule_order. Only enabled rules take part, and the first
matching rule wins.

Rule rows (CSV or database) use these columns:

    id,rule_type,pattern,category_id,rule_order,enabled
    1,pattern,STARBUCKS*,12,10,1
    2,default_pattern,*AMAZON*,4,10,1

Reordering swaps rule_order with the adjacent rule of the same type, so a
custom rule can never be moved behind a default rule and vice versa.
"""

import csv
import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ledgerlens.glob_pattern import compile_glob

logger = logging.getLogger(__name__)

# Rule types in execution order
RULE_TYPE_ORDER = ('pattern', 'default_pattern')
UNKNOWN_TYPE_PRIORITY = 99
RULE_ORDER_STEP = 10

RULE_COLUMNS = ('id', 'rule_type', 'pattern', 'category_id', 'rule_order', 'enabled')


@dataclass(frozen=True)
class CategorizationRule:
    """A glob pattern that assigns a category to matching names."""

    id: int
    rule_type: str
    pattern: str
    category_id: int
    rule_order: int
    enabled: bool = True

    @property
    def type_priority(self) -> int:
        return type_priority(self.rule_type)


@dataclass(frozen=True)
class CategorizationResult:
    """Outcome of evaluating one name. Both fields are None when nothing matched."""

    category_id: Optional[int] = None
    matched_rule_id: Optional[int] = None

    @property
    def matched(self) -> bool:
        return self.matched_rule_id is not None


class RuleParseError(Exception):
    """Error reading rule rows."""

    def __init__(self, message: str, line_number: int = 0, line: str = ""):
        self.line_number = line_number
        self.line = line
        if line_number:
            message = f"Line {line_number}: {message}"
        super().__init__(message)


def type_priority(rule_type: str) -> int:
    """Position of a rule type in RULE_TYPE_ORDER (unknown types sort last)."""
    try:
        return RULE_TYPE_ORDER.index(rule_type)
    except ValueError:
        return UNKNOWN_TYPE_PRIORITY


def order_rules(rules: Iterable[CategorizationRule]) -> List[CategorizationRule]:
    """Enabled rules sorted by (type priority, rule_order). The sort is stable."""
    enabled = [r for r in rules if r.enabled]
    return sorted(enabled, key=lambda r: (type_priority(r.rule_type), r.rule_order))


def apply_rules(name: str, rules: Iterable[CategorizationRule]) -> CategorizationResult:
    """Categorize a name. First matching rule wins; never raises."""
    for rule in order_rules(rules):
        # Both rule types share the same glob matching; other types are skipped
        if rule.rule_type not in RULE_TYPE_ORDER:
            continue
        if compile_glob(rule.pattern).test(name):
            logger.debug("%r matched rule %s (%s)", name, rule.id, rule.pattern)
            return CategorizationResult(category_id=rule.category_id, matched_rule_id=rule.id)

    return CategorizationResult()


def reprocess_uncategorized(names_by_id: Mapping[Any, str],
                            rules: Iterable[CategorizationRule]) -> Dict[Any, int]:
    """Run names through the rules and return {id: category_id} for matches.

    Names that match no rule are left out; the caller keeps their current
    (uncategorized) category.
    """
    ordered = order_rules(rules)
    categorized = {}
    for entity_id, name in names_by_id.items():
        result = apply_rules(name, ordered)
        if result.matched:
            categorized[entity_id] = result.category_id
    logger.info("Reprocessed %d names, %d categorized", len(names_by_id), len(categorized))
    return categorized


# =============================================================================
# Ordering helpers
# =============================================================================

def next_rule_order(rules: Iterable[CategorizationRule], rule_type: str) -> int:
    """Next free rule_order for a type, leaving a gap of 10 for insertion."""
    orders = [r.rule_order for r in rules if r.rule_type == rule_type]
    return (max(orders) if orders else 0) + RULE_ORDER_STEP


def reorder_rules(rules: Iterable[CategorizationRule], rule_type: str,
                  rule_ids: List[int]) -> List[CategorizationRule]:
    """Renumber the listed rules of one type as 10, 20, 30, ... in list order.

    Rules of other types, or not listed, keep their order.
    """
    positions = {rule_id: index for index, rule_id in enumerate(rule_ids)}
    reordered = []
    for rule in rules:
        if rule.rule_type == rule_type and rule.id in positions:
            rule = replace(rule, rule_order=(positions[rule.id] + 1) * RULE_ORDER_STEP)
        reordered.append(rule)
    return reordered


def _swap_with_neighbour(rules: List[CategorizationRule], rule_id: int,
                         direction: int) -> List[CategorizationRule]:
    rules = list(rules)
    rule = next((r for r in rules if r.id == rule_id), None)
    if rule is None:
        return rules

    same_type = [r for r in rules if r.rule_type == rule.rule_type and r.id != rule.id]
    if direction < 0:
        candidates = [r for r in same_type if r.rule_order < rule.rule_order]
        neighbour = max(candidates, key=lambda r: r.rule_order, default=None)
    else:
        candidates = [r for r in same_type if r.rule_order > rule.rule_order]
        neighbour = min(candidates, key=lambda r: r.rule_order, default=None)

    if neighbour is None:
        # Already first/last within its type
        return rules

    swapped = []
    for r in rules:
        if r.id == rule.id:
            r = replace(r, rule_order=neighbour.rule_order)
        elif r.id == neighbour.id:
            r = replace(r, rule_order=rule.rule_order)
        swapped.append(r)
    return swapped


def move_rule_up(rules: Iterable[CategorizationRule], rule_id: int) -> List[CategorizationRule]:
    """Swap rule_order with the previous rule of the same type."""
    return _swap_with_neighbour(list(rules), rule_id, -1)


def move_rule_down(rules: Iterable[CategorizationRule], rule_id: int) -> List[CategorizationRule]:
    """Swap rule_order with the next rule of the same type."""
    return _swap_with_neighbour(list(rules), rule_id, 1)


# =============================================================================
# Engine
# =============================================================================

class RuleEngine:
    """
    Holds a snapshot of categorization rules and evaluates names against it.

    The engine never writes anything back: reordering returns updated rules
    in `rules` and the caller persists them.
    """

    def __init__(self, rules: Optional[Iterable[CategorizationRule]] = None):
        self.rules: List[CategorizationRule] = list(rules or [])

    def load_file(self, filepath) -> None:
        """Load rules from a rules CSV file."""
        self.rules = load_rules_csv(filepath)

    @property
    def ordered_rules(self) -> List[CategorizationRule]:
        return order_rules(self.rules)

    def rules_of_type(self, rule_type: str) -> List[CategorizationRule]:
        return [r for r in self.ordered_rules if r.rule_type == rule_type]

    def apply(self, name: str) -> CategorizationResult:
        return apply_rules(name, self.ordered_rules)

    def apply_all(self, names: Iterable[str]) -> List[CategorizationResult]:
        ordered = self.ordered_rules
        return [apply_rules(name, ordered) for name in names]

    def next_order(self, rule_type: str) -> int:
        return next_rule_order(self.rules, rule_type)

    def move_up(self, rule_id: int) -> None:
        self.rules = move_rule_up(self.rules, rule_id)

    def move_down(self, rule_id: int) -> None:
        self.rules = move_rule_down(self.rules, rule_id)

    def reorder(self, rule_type: str, rule_ids: List[int]) -> None:
        self.rules = reorder_rules(self.rules, rule_type, rule_ids)


def load_rules(rows: Iterable[Mapping[str, Any]]) -> RuleEngine:
    """Build an engine from database-style rule rows."""
    return RuleEngine(rule_from_row(row) for row in rows)


# =============================================================================
# Row conversion
# =============================================================================

_TRUE_VALUES = {'1', 'true', 'yes', 'y', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'n', 'off', ''}


def _parse_enabled(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise RuleParseError(f"Invalid enabled value: {value!r}")


def _parse_int(row: Mapping[str, Any], column: str) -> int:
    value = row[column]
    try:
        return int(str(value).strip())
    except ValueError:
        raise RuleParseError(f"Column '{column}' must be an integer, got {value!r}")


def rule_from_row(row: Mapping[str, Any]) -> CategorizationRule:
    """Convert a persisted rule row into a CategorizationRule."""
    missing = [c for c in RULE_COLUMNS if c not in row or row[c] is None]
    # enabled is optional and defaults to on
    missing = [c for c in missing if c != 'enabled']
    if missing:
        raise RuleParseError(f"Missing column(s): {', '.join(missing)}")

    rule_type = str(row['rule_type']).strip()
    if rule_type not in RULE_TYPE_ORDER:
        raise RuleParseError(
            f"Unknown rule type: '{rule_type}'. Use one of: {', '.join(RULE_TYPE_ORDER)}"
        )

    enabled = row.get('enabled')
    return CategorizationRule(
        id=_parse_int(row, 'id'),
        rule_type=rule_type,
        pattern=str(row['pattern']),
        category_id=_parse_int(row, 'category_id'),
        rule_order=_parse_int(row, 'rule_order'),
        enabled=True if enabled is None else _parse_enabled(enabled),
    )


def rule_to_row(rule: CategorizationRule) -> Dict[str, Any]:
    """Convert a rule back to its persisted column layout."""
    return {
        'id': rule.id,
        'rule_type': rule.rule_type,
        'pattern': rule.pattern,
        'category_id': rule.category_id,
        'rule_order': rule.rule_order,
        'enabled': 1 if rule.enabled else 0,
    }


def load_rules_csv(csv_path) -> List[CategorizationRule]:
    """Load categorization rules from a CSV file.

    Lines starting with # are comments. Rows with an empty pattern are
    skipped. A missing file means no rules.
    """
    if not os.path.exists(csv_path):
        return []

    rules = []
    # (physical line number, text) of every line handed to the csv reader
    kept = []

    def content_lines(f):
        for line_num, line in enumerate(f, 1):
            stripped = line.strip()
            if stripped and not stripped.startswith('#'):
                kept.append((line_num, line))
                yield line

    with open(csv_path, 'r', encoding='utf-8', newline='') as f:
        reader = csv.DictReader(content_lines(f))
        if reader.fieldnames is None:
            return []

        missing = [c for c in RULE_COLUMNS if c != 'enabled' and c not in reader.fieldnames]
        if missing:
            raise RuleParseError(f"Missing column(s) in header: {', '.join(missing)}", kept[0][0])

        # reader.line_num counts lines consumed, so a quoted field spanning
        # several lines maps back to its first physical line
        consumed = reader.line_num
        for row in reader:
            first, consumed = consumed, reader.line_num
            if not (row.get('pattern') or '').strip():
                continue
            try:
                rules.append(rule_from_row(row))
            except RuleParseError as e:
                text = ''.join(line for _, line in kept[first:consumed]).rstrip('\n')
                raise RuleParseError(str(e), kept[first][0], text)

    return rules


def write_rules_csv(csv_path, rules: Iterable[CategorizationRule]) -> None:
    """Write rules to a CSV file with the persisted column layout."""
    with open(csv_path, 'w', encoding='utf-8', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=list(RULE_COLUMNS))
        writer.writeheader()
        for rule in rules:
            writer.writerow(rule_to_row(rule))
