"""
Entity grouping engine.

Suggests parent/child groupings for vendors or counterparties whose names
are variants of the same merchant ("AMAZON*1234ABC", "AMAZON*5678XYZ").
Names are compared in normalized form using Longest Common Prefix (LCP)
similarity. Original names are never modified.

The hierarchy is strictly two levels deep: parents and their direct
children. Suggestions only ever target top-level parents, an entity that
already has a parent is never offered as a parent, and an entity that
already has children is never placed under another one.

Passes, in order (an entity lands in at most one suggestion):
1. Sibling matching against existing parents that have children
2. Matching against existing root parents without children
3. Grouping by identical normalized name
4. Pairwise LCP grouping of whatever is left
5. Merging new parent suggestions that share a first word
6. Filtering: new parents need 2+ children, existing parents need 1+

The engine is pure: it reads the entities it is given and returns
suggestions. Applying them is up to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ledgerlens.name_utils import (
    DEFAULT_MIN_NAME_LENGTH,
    DEFAULT_SIMILARITY_THRESHOLD,
    create_canonical_name,
    extract_first_word,
    lcp_similarity,
    longest_common_prefix,
    normalize_name,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityInfo:
    """A vendor or counterparty: id, original name, and optional parent id."""

    id: Any
    name: str
    parent_id: Any = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass(frozen=True)
class ParentWithChildren:
    """An existing parent together with its direct children."""

    parent: EntityInfo
    children: Sequence[EntityInfo] = ()


@dataclass
class GroupingConfig:
    """Tuning knobs for suggest_groupings.

    similarity_threshold: minimum LCP similarity (0-1) to consider a match
    min_name_length: normalized names shorter than this are never grouped
    debug: log the pass-by-pass trace at INFO instead of DEBUG
    """

    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    min_name_length: int = DEFAULT_MIN_NAME_LENGTH
    debug: bool = False

    def __post_init__(self):
        if not 0 < self.similarity_threshold <= 1:
            raise ValueError(
                f"similarity_threshold must be in (0, 1], got {self.similarity_threshold}"
            )
        if self.min_name_length < 1:
            raise ValueError(f"min_name_length must be at least 1, got {self.min_name_length}")

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> 'GroupingConfig':
        values = values or {}
        return cls(
            similarity_threshold=float(values.get('similarity_threshold', DEFAULT_SIMILARITY_THRESHOLD)),
            min_name_length=int(values.get('min_name_length', DEFAULT_MIN_NAME_LENGTH)),
            debug=bool(values.get('debug', False)),
        )


@dataclass
class GroupingSuggestion:
    """A proposed group of children under a parent.

    parent_id is set when the parent already exists and is None when the
    suggestion would create a new parent named parent_name.
    """

    parent_name: str
    child_ids: List[Any] = field(default_factory=list)
    child_names: List[str] = field(default_factory=list)
    normalized_form: str = ""
    parent_id: Any = None

    @property
    def is_existing_parent(self) -> bool:
        return self.parent_id is not None

    def add_child(self, entity: EntityInfo) -> None:
        self.child_ids.append(entity.id)
        self.child_names.append(entity.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'parent_name': self.parent_name,
            'parent_id': self.parent_id,
            'child_ids': list(self.child_ids),
            'child_names': list(self.child_names),
            'normalized_form': self.normalized_form,
        }


@dataclass(frozen=True)
class _ParentRef:
    parent_id: Any
    parent_name: str
    parent_norm: str


def suggest_groupings(
    entities: Iterable[EntityInfo],
    existing_parents: Iterable[EntityInfo] = (),
    parents_with_children: Iterable[ParentWithChildren] = (),
    config: Optional[GroupingConfig] = None,
) -> List[GroupingSuggestion]:
    """
    Suggest entity groupings based on name similarity.

    Args:
        entities: Entities to analyze. Only those without a parent are placed.
        existing_parents: Root entities without children that may become parents
        parents_with_children: Existing two-level trees, used for sibling matching
        config: GroupingConfig (defaults apply when omitted)

    Returns:
        List of GroupingSuggestion. Suggestions extending existing parents
        come first, followed by new parent suggestions.

    For an LCP group (pass 4) normalized_form is the shared prefix with
    trailing whitespace stripped: "starbucks coffee" and "starbucks tea"
    give "starbucks", not "starbucks ".
    """
    cfg = config or GroupingConfig()
    log = logger.info if cfg.debug else logger.debug
    threshold = cfg.similarity_threshold
    min_length = cfg.min_name_length

    entities = list(entities)
    existing_parents = list(existing_parents)
    parents_with_children = list(parents_with_children)

    log("Grouping %d entities, %d existing parents, %d parents with children "
        "(threshold=%s, min_name_length=%s)",
        len(entities), len(existing_parents), len(parents_with_children), threshold, min_length)

    # Parents in a two-level tree must be roots; skip anything else
    trees = []
    for tree in parents_with_children:
        if tree.parent.is_root:
            trees.append(tree)
        else:
            log("  Ignoring tree under non-root parent %r (%s)", tree.parent.name, tree.parent.id)
    tree_parent_ids = {tree.parent.id for tree in trees}

    # Only ungrouped entities are candidates. Entities that already have
    # children are never re-parented.
    ungrouped = [e for e in entities if e.is_root and e.id not in tree_parent_ids]
    if not ungrouped:
        log("No ungrouped entities, nothing to suggest")
        return []
    ungrouped_ids = {e.id for e in ungrouped}

    normalized: Dict[Any, str] = {}
    for entity in ungrouped:
        norm = normalize_name(entity.name)
        if len(norm) >= min_length:
            normalized[entity.id] = norm
            log("  %s: %r -> %r", entity.id, entity.name, norm)
        else:
            log("  %s: %r -> %r (skipped, too short)", entity.id, entity.name, norm)

    by_id = {e.id: e for e in ungrouped}

    # Existing root parents, minus the entities being analyzed so two
    # entities never suggest each other as parent
    root_parents = [
        p for p in existing_parents
        if p.is_root and p.id not in ungrouped_ids and p.id not in tree_parent_ids
    ]
    parent_norms: Dict[Any, str] = {}
    for parent in root_parents:
        norm = normalize_name(parent.name)
        if len(norm) >= min_length:
            parent_norms[parent.id] = norm
    root_parents_by_id = {p.id: p for p in root_parents}

    # Normalized child and parent names -> the top-level parent they belong to
    sibling_map: Dict[str, _ParentRef] = {}
    for tree in trees:
        parent = tree.parent
        ref = _ParentRef(parent.id, parent.name, normalize_name(parent.name))
        for child in tree.children:
            child_norm = normalize_name(child.name)
            if len(child_norm) >= min_length:
                sibling_map[child_norm] = ref
        if len(ref.parent_norm) >= min_length:
            sibling_map[ref.parent_norm] = ref

    suggestions: List[GroupingSuggestion] = []
    by_parent: Dict[Any, GroupingSuggestion] = {}
    assigned = set()

    def suggestion_for(parent_id, parent_name, parent_norm):
        suggestion = by_parent.get(parent_id)
        if suggestion is None:
            suggestion = GroupingSuggestion(
                parent_name=parent_name,
                normalized_form=parent_norm,
                parent_id=parent_id,
            )
            by_parent[parent_id] = suggestion
            suggestions.append(suggestion)
        return suggestion

    # Pass 1: siblings and parents of existing trees
    log("Pass 1: sibling matching")
    for entity_id, norm in normalized.items():
        for known_norm, ref in sibling_map.items():
            if entity_id == ref.parent_id:
                continue
            similarity = lcp_similarity(norm, known_norm)
            if similarity >= threshold:
                suggestion_for(ref.parent_id, ref.parent_name, ref.parent_norm).add_child(by_id[entity_id])
                assigned.add(entity_id)
                log("  MATCH: %r -> parent %r (%.3f with %r)",
                    by_id[entity_id].name, ref.parent_name, similarity, known_norm)
                break
    log("After pass 1: %d assigned", len(assigned))

    # Pass 2: existing root parents without children
    log("Pass 2: existing root parents")
    for entity_id, norm in normalized.items():
        if entity_id in assigned:
            continue
        for parent_id, parent_norm in parent_norms.items():
            if entity_id == parent_id:
                continue
            similarity = lcp_similarity(norm, parent_norm)
            if similarity >= threshold:
                parent = root_parents_by_id[parent_id]
                suggestion_for(parent_id, parent.name, parent_norm).add_child(by_id[entity_id])
                assigned.add(entity_id)
                log("  MATCH: %r -> parent %r (%.3f)", by_id[entity_id].name, parent.name, similarity)
                break
    log("After pass 2: %d assigned", len(assigned))

    # Pass 3: identical normalized names
    log("Pass 3: exact normalized matches")
    remaining = [e for e in ungrouped if e.id not in assigned and e.id in normalized]
    exact_groups: Dict[str, List[EntityInfo]] = {}
    for entity in remaining:
        exact_groups.setdefault(normalized[entity.id], []).append(entity)

    for norm, group in exact_groups.items():
        if len(group) < 2:
            continue
        suggestions.append(GroupingSuggestion(
            parent_name=create_canonical_name(norm),
            child_ids=[e.id for e in group],
            child_names=[e.name for e in group],
            normalized_form=norm,
        ))
        assigned.update(e.id for e in group)
        log("  EXACT GROUP %r: %s", norm, ', '.join(e.name for e in group))
    log("After pass 3: %d assigned", len(assigned))

    # Pass 4: LCP similarity between the rest, each entity seeds a group
    log("Pass 4: LCP similarity")
    still_remaining = [e for e in remaining if e.id not in assigned]
    for i, seed in enumerate(still_remaining):
        if seed.id in assigned:
            continue
        seed_norm = normalized[seed.id]
        group = [seed]

        for other in still_remaining[i + 1:]:
            if other.id in assigned:
                continue
            similarity = lcp_similarity(seed_norm, normalized[other.id])
            if similarity >= threshold:
                group.append(other)
                log("  LCP MATCH: %r <-> %r (%.3f)", seed.name, other.name, similarity)

        if len(group) < 2:
            continue

        common_prefix = seed_norm
        for member in group:
            common_prefix = longest_common_prefix(common_prefix, normalized[member.id])
        # "starbucks coffee" + "starbucks tea" share "starbucks "
        common_prefix = common_prefix.rstrip()

        suggestions.append(GroupingSuggestion(
            parent_name=create_canonical_name(common_prefix),
            child_ids=[e.id for e in group],
            child_names=[e.name for e in group],
            normalized_form=common_prefix,
        ))
        assigned.update(e.id for e in group)
        log("  LCP GROUP %r: %d entities", common_prefix, len(group))
    log("After pass 4: %d assigned", len(assigned))

    # Pass 5: merge new parents sharing a first word
    log("Pass 5: parent merging (%d suggestions)", len(suggestions))
    merged = merge_similar_parent_suggestions(suggestions, cfg)

    # Pass 6: never create a single-child tree
    log("Pass 6: filtering")
    result = []
    for suggestion in merged:
        required = 1 if suggestion.is_existing_parent else 2
        keep = len(suggestion.child_ids) >= required
        log("  %r: %s parent, %d children -> %s",
            suggestion.parent_name,
            'existing' if suggestion.is_existing_parent else 'new',
            len(suggestion.child_ids),
            'KEEP' if keep else 'REMOVE')
        if keep:
            result.append(suggestion)

    log("Final result: %d suggestions", len(result))
    return result


def merge_similar_parent_suggestions(
    suggestions: List[GroupingSuggestion],
    config: Optional[GroupingConfig] = None,
) -> List[GroupingSuggestion]:
    """Merge new parent suggestions whose names share the same first word.

    "Amazon Reta" and "Amazon Mktpl" become one "Amazon" suggestion.
    Suggestions for existing parents are returned unchanged, ahead of the
    merged new ones.
    """
    cfg = config or GroupingConfig()
    log = logger.info if cfg.debug else logger.debug

    existing = [s for s in suggestions if s.is_existing_parent]
    new = [s for s in suggestions if not s.is_existing_parent]

    if len(new) <= 1:
        return list(suggestions)

    first_words = [extract_first_word(normalize_name(s.parent_name)) for s in new]
    merged_indices = set()
    merged = []

    for i, suggestion in enumerate(new):
        if i in merged_indices:
            continue
        merged_indices.add(i)
        first_word = first_words[i]

        if len(first_word) < cfg.min_name_length:
            merged.append(suggestion)
            continue

        to_merge = [suggestion]
        for j in range(i + 1, len(new)):
            if j in merged_indices:
                continue
            if len(first_words[j]) < cfg.min_name_length:
                continue
            if first_words[j] == first_word:
                to_merge.append(new[j])
                merged_indices.add(j)
                log("  MERGE: %r + %r (first word %r)",
                    suggestion.parent_name, new[j].parent_name, first_word)

        if len(to_merge) == 1:
            merged.append(suggestion)
            continue

        combined = GroupingSuggestion(
            parent_name=create_canonical_name(first_word),
            normalized_form=first_word,
        )
        for s in to_merge:
            combined.child_ids.extend(s.child_ids)
            combined.child_names.extend(s.child_names)
        log("  MERGED GROUP %r with %d children", combined.parent_name, len(combined.child_ids))
        merged.append(combined)

    return existing + merged
