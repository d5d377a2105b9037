"""
Flat entity index and batch planning for grouping suggestions.

Entities are kept in a flat id -> EntityInfo map plus a parent -> children
index. With the hierarchy capped at two levels this is all the tree
structure the grouping engine needs.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ledgerlens.grouping import (
    EntityInfo,
    GroupingConfig,
    GroupingSuggestion,
    ParentWithChildren,
    suggest_groupings,
)

logger = logging.getLogger(__name__)


class GroupingApplyError(Exception):
    """An accepted suggestion would break the two-level hierarchy."""

    def __init__(self, message: str, suggestion: Optional[GroupingSuggestion] = None):
        self.suggestion = suggestion
        if suggestion is not None:
            message = f"Suggestion '{suggestion.parent_name}': {message}"
        super().__init__(message)


@dataclass
class GroupingPlan:
    """What the caller should write for one accepted suggestion.

    When create_parent is True the caller inserts a new entity named
    parent_name and uses its id as the parent of child_ids.
    """

    parent_name: str
    child_ids: List[Any] = field(default_factory=list)
    parent_id: Any = None
    create_parent: bool = False


class EntityIndex:
    """Arena of entities keyed by id, with a parent -> children index."""

    def __init__(self):
        self.entities: Dict[Any, EntityInfo] = {}
        self.children: Dict[Any, List[Any]] = {}

    @classmethod
    def from_entities(cls, entities: Iterable[EntityInfo]) -> 'EntityIndex':
        index = cls()
        for entity in entities:
            index.add(entity)
        return index

    def add(self, entity: EntityInfo) -> None:
        if entity.id in self.entities:
            raise ValueError(f"Duplicate entity id: {entity.id}")
        self.entities[entity.id] = entity
        if entity.parent_id is not None:
            self.children.setdefault(entity.parent_id, []).append(entity.id)

    def __len__(self):
        return len(self.entities)

    def __contains__(self, entity_id):
        return entity_id in self.entities

    def get(self, entity_id) -> Optional[EntityInfo]:
        return self.entities.get(entity_id)

    def children_of(self, entity_id) -> List[EntityInfo]:
        return [self.entities[c] for c in self.children.get(entity_id, []) if c in self.entities]

    def has_children(self, entity_id) -> bool:
        return bool(self.children.get(entity_id))

    def roots(self) -> List[EntityInfo]:
        return [e for e in self.entities.values() if e.parent_id is None]

    def ungrouped(self) -> List[EntityInfo]:
        """Root entities that are neither a parent nor a child."""
        return [e for e in self.roots() if not self.has_children(e.id)]

    def childless_roots(self) -> List[EntityInfo]:
        """Candidates to become parents. Same set as ungrouped()."""
        return self.ungrouped()

    def parents_with_children(self) -> List[ParentWithChildren]:
        return [
            ParentWithChildren(parent=e, children=tuple(self.children_of(e.id)))
            for e in self.roots() if self.has_children(e.id)
        ]

    def find_root_by_name(self, name: str) -> Optional[EntityInfo]:
        for entity in self.roots():
            if entity.name == name:
                return entity
        return None

    def depth_ok(self) -> bool:
        """True when no child has children of its own and every parent exists."""
        for parent_id in self.children:
            parent = self.entities.get(parent_id)
            if parent is None or parent.parent_id is not None:
                return False
        return True


def suggest_for(index: EntityIndex, config: Optional[GroupingConfig] = None) -> List[GroupingSuggestion]:
    """Run suggest_groupings with inputs derived from an index."""
    return suggest_groupings(
        index.roots(),
        existing_parents=index.childless_roots(),
        parents_with_children=index.parents_with_children(),
        config=config,
    )


def plan_grouping_application(index: EntityIndex,
                              accepted: Iterable[GroupingSuggestion]) -> List[GroupingPlan]:
    """
    Validate a batch of accepted suggestions and turn them into write plans.

    The whole batch is checked before anything is returned, so a caller that
    applies the plans in one transaction either applies all of them or
    none. A new-parent suggestion reuses an existing root entity with the same
    name when there is one.

    Raises:
        GroupingApplyError: if applying the batch would nest deeper than two
            levels, place an entity under itself, or reuse a child twice.
    """
    plans = []
    claimed = {}
    batch_parents = set()

    for suggestion in accepted:
        child_ids = list(suggestion.child_ids)
        if not child_ids:
            raise GroupingApplyError("no children", suggestion)

        for child_id in child_ids:
            child = index.get(child_id)
            if child is None:
                raise GroupingApplyError(f"unknown entity id {child_id}", suggestion)
            if child.parent_id is not None:
                raise GroupingApplyError(f"'{child.name}' already has a parent", suggestion)
            if index.has_children(child_id):
                raise GroupingApplyError(f"'{child.name}' already has children", suggestion)
            if child_id in claimed:
                raise GroupingApplyError(
                    f"'{child.name}' is also in suggestion '{claimed[child_id]}'", suggestion
                )
            claimed[child_id] = suggestion.parent_name

        if suggestion.parent_id is not None:
            parent = index.get(suggestion.parent_id)
            if parent is None:
                raise GroupingApplyError(f"unknown parent id {suggestion.parent_id}", suggestion)
            if parent.parent_id is not None:
                raise GroupingApplyError(f"parent '{parent.name}' is not a root entity", suggestion)
            if parent.id in child_ids:
                raise GroupingApplyError("entity cannot be its own parent", suggestion)
            plan = GroupingPlan(parent_name=parent.name, child_ids=child_ids, parent_id=parent.id)
        else:
            if len(child_ids) < 2:
                raise GroupingApplyError("a new parent needs at least two children", suggestion)
            existing = index.find_root_by_name(suggestion.parent_name)
            if existing is not None and existing.id not in child_ids:
                plan = GroupingPlan(
                    parent_name=existing.name, child_ids=child_ids, parent_id=existing.id
                )
            else:
                plan = GroupingPlan(
                    parent_name=suggestion.parent_name, child_ids=child_ids, create_parent=True
                )

        if plan.parent_id is not None:
            batch_parents.add(plan.parent_id)
        plans.append(plan)

    # A parent in this batch must not also be re-parented by it
    for parent_id in batch_parents:
        if parent_id in claimed:
            raise GroupingApplyError(
                f"'{index.get(parent_id).name}' is both a parent and a child in this batch"
            )

    logger.info("Planned %d groupings (%d new parents)",
                len(plans), sum(1 for p in plans if p.create_parent))
    return plans
