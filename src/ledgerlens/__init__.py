"""ledgerlens - categorization rules and counterparty grouping for statement ledgers."""

from ._version import VERSION as __version__
from .glob_pattern import compile_glob, matches, matches_pattern
from .grouping import (
    EntityInfo,
    GroupingConfig,
    GroupingSuggestion,
    ParentWithChildren,
    suggest_groupings,
)
from .name_utils import lcp_similarity, normalize_name
from .rule_engine import (
    CategorizationResult,
    CategorizationRule,
    RuleEngine,
    apply_rules,
)

__all__ = [
    '__version__',
    'CategorizationResult',
    'CategorizationRule',
    'EntityInfo',
    'GroupingConfig',
    'GroupingSuggestion',
    'ParentWithChildren',
    'RuleEngine',
    'apply_rules',
    'compile_glob',
    'lcp_similarity',
    'matches',
    'matches_pattern',
    'normalize_name',
    'suggest_groupings',
]
