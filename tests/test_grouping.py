"""Tests for the entity grouping engine."""

import logging

import pytest

from ledgerlens.grouping import (
    EntityInfo,
    GroupingConfig,
    GroupingSuggestion,
    ParentWithChildren,
    merge_similar_parent_suggestions,
    suggest_groupings,
)


def entities(*names, start=1):
    return [EntityInfo(id=start + i, name=name) for i, name in enumerate(names)]


def summary(suggestions):
    return [(s.parent_name, s.parent_id, sorted(s.child_ids)) for s in suggestions]


class TestGroupingConfig:
    """Tests for GroupingConfig validation."""

    def test_defaults(self):
        cfg = GroupingConfig()
        assert cfg.similarity_threshold == 0.6
        assert cfg.min_name_length == 3
        assert cfg.debug is False

    @pytest.mark.parametrize("threshold", [0, -0.1, 1.5])
    def test_threshold_out_of_range(self, threshold):
        with pytest.raises(ValueError, match="similarity_threshold"):
            GroupingConfig(similarity_threshold=threshold)

    def test_threshold_of_one_allowed(self):
        assert GroupingConfig(similarity_threshold=1).similarity_threshold == 1

    def test_min_name_length_must_be_positive(self):
        with pytest.raises(ValueError, match="min_name_length"):
            GroupingConfig(min_name_length=0)

    def test_from_dict(self):
        cfg = GroupingConfig.from_dict({'similarity_threshold': '0.75', 'debug': True})
        assert cfg.similarity_threshold == 0.75
        assert cfg.min_name_length == 3
        assert cfg.debug is True

    def test_from_empty_dict(self):
        assert GroupingConfig.from_dict(None) == GroupingConfig()


class TestNewParentSuggestions:
    """Exact and LCP grouping among ungrouped entities."""

    def test_exact_normalized_match(self):
        result = suggest_groupings(entities("AMAZON*1234ABC", "AMAZON*5678XYZ"))
        assert len(result) == 1
        suggestion = result[0]
        assert suggestion.parent_name == "Amazon"
        assert suggestion.parent_id is None
        assert not suggestion.is_existing_parent
        assert suggestion.child_ids == [1, 2]
        assert suggestion.child_names == ["AMAZON*1234ABC", "AMAZON*5678XYZ"]
        assert suggestion.normalized_form == "amazon"

    def test_unrelated_names_produce_nothing(self):
        assert suggest_groupings(entities("STARBUCKS", "WALMART", "TARGET")) == []

    def test_two_merchants_two_groups(self):
        result = suggest_groupings(entities(
            "AMAZON*111", "STARBUCKS #1", "AMAZON*222", "STARBUCKS #2",
        ))
        assert summary(result) == [("Amazon", None, [1, 3]), ("Starbucks", None, [2, 4])]

    def test_lcp_group_uses_trimmed_common_prefix(self):
        result = suggest_groupings(
            entities("STARBUCKS COFFEE", "STARBUCKS TEA"),
            config=GroupingConfig(similarity_threshold=0.7),
        )
        assert summary(result) == [("Starbucks", None, [1, 2])]
        assert result[0].normalized_form == "starbucks"

    def test_threshold_is_respected(self):
        result = suggest_groupings(
            entities("STARBUCKS COFFEE", "STARBUCKS TEA"),
            config=GroupingConfig(similarity_threshold=0.8),
        )
        assert result == []

    def test_similar_prefix_below_default_threshold(self):
        """'uber eats' and 'uber ride' share only 5 of 9 characters."""
        assert suggest_groupings(entities("UBER EATS", "UBER RIDE")) == []

    def test_lcp_group_collects_all_matches_of_seed(self):
        result = suggest_groupings(entities("NETFLIX.COM", "NETFLIX STREAMING", "NETFLIX"))
        assert summary(result) == [("Netflix", None, [1, 2, 3])]

    def test_short_names_never_grouped(self):
        assert suggest_groupings(entities("AB #1", "AB #2")) == []

    def test_min_name_length_configurable(self):
        result = suggest_groupings(
            entities("AB #1", "AB #2"), config=GroupingConfig(min_name_length=2)
        )
        assert summary(result) == [("Ab", None, [1, 2])]

    def test_empty_input(self):
        assert suggest_groupings([]) == []

    def test_entities_with_parents_are_not_candidates(self):
        items = [
            EntityInfo(1, "AMAZON*1", parent_id=99),
            EntityInfo(2, "AMAZON*2", parent_id=99),
        ]
        assert suggest_groupings(items) == []

    def test_deterministic(self):
        items = entities("AMAZON*1", "AMAZON MKTPL", "STARBUCKS #1", "STARBUCKS #2", "UBER")
        assert suggest_groupings(items) == suggest_groupings(items)

    def test_each_entity_in_at_most_one_suggestion(self):
        items = entities(
            "AMAZON*1", "AMAZON*2", "AMAZON MKTPL", "AMAZON RETAIL",
            "STARBUCKS #1", "STARBUCKS COFFEE", "STAR MARKET",
        )
        seen = []
        for suggestion in suggest_groupings(items):
            seen.extend(suggestion.child_ids)
        assert len(seen) == len(set(seen))


class TestExistingParents:
    """Sibling matching and matching against childless root parents."""

    def test_sibling_matching_picks_existing_parent(self):
        parent = EntityInfo(10, "Amazon")
        child = EntityInfo(11, "AMAZON MKTPL*1", parent_id=10)
        new = EntityInfo(1, "AMAZON RETAIL*99")

        result = suggest_groupings(
            [parent, child, new],
            parents_with_children=[ParentWithChildren(parent, (child,))],
        )
        assert summary(result) == [("Amazon", 10, [1])]
        assert result[0].is_existing_parent

    def test_sibling_match_on_child_name(self):
        parent = EntityInfo(10, "Whole Foods")
        child = EntityInfo(11, "WHOLE FOODS MARKET #102", parent_id=10)

        result = suggest_groupings(
            entities("WHOLE FOODS MKT #55"),
            parents_with_children=[ParentWithChildren(parent, (child,))],
        )
        assert summary(result) == [("Whole Foods", 10, [1])]

    def test_childless_root_parent(self):
        result = suggest_groupings(
            entities("NETFLIX.COM", "NETFLIX*STREAM"),
            existing_parents=[EntityInfo(20, "Netflix")],
        )
        assert summary(result) == [("Netflix", 20, [1, 2])]

    def test_single_child_allowed_for_existing_parent(self):
        result = suggest_groupings(
            entities("NETFLIX.COM"),
            existing_parents=[EntityInfo(20, "Netflix")],
        )
        assert summary(result) == [("Netflix", 20, [1])]

    def test_existing_parents_come_first(self):
        result = suggest_groupings(
            entities("AMAZON*1", "AMAZON*2", "NETFLIX.COM"),
            existing_parents=[EntityInfo(20, "Netflix")],
        )
        assert summary(result) == [("Netflix", 20, [3]), ("Amazon", None, [1, 2])]

    def test_analyzed_entity_not_offered_as_existing_parent(self):
        """An entity under analysis cannot be both parent and candidate child."""
        items = entities("NETFLIX.COM", "NETFLIX STREAMING") + [EntityInfo(20, "Netflix")]
        result = suggest_groupings(items, existing_parents=[EntityInfo(20, "Netflix")])
        assert summary(result) == [("Netflix", None, [1, 2, 20])]

    def test_non_root_existing_parent_ignored(self):
        result = suggest_groupings(
            entities("NETFLIX.COM", "NETFLIX STREAMING"),
            existing_parents=[EntityInfo(20, "Netflix", parent_id=5)],
        )
        assert summary(result) == [("Netflix", None, [1, 2])]

    def test_tree_parent_never_placed_under_another(self):
        """A parent that already has children stays a root."""
        parent = EntityInfo(10, "Amazon")
        child = EntityInfo(11, "AMAZON MKTPL", parent_id=10)
        other = EntityInfo(30, "Amazon Web Services")

        result = suggest_groupings(
            [parent, child, EntityInfo(1, "AMAZON*7")],
            existing_parents=[other],
            parents_with_children=[ParentWithChildren(parent, (child,))],
        )
        for suggestion in result:
            assert 10 not in suggestion.child_ids
            assert 11 not in suggestion.child_ids
        assert summary(result) == [("Amazon", 10, [1])]

    def test_tree_under_non_root_parent_ignored(self):
        parent = EntityInfo(10, "Amazon", parent_id=3)
        child = EntityInfo(11, "AMAZON MKTPL", parent_id=10)

        result = suggest_groupings(
            entities("AMAZON*7"),
            parents_with_children=[ParentWithChildren(parent, (child,))],
        )
        assert result == []

    def test_sibling_matching_runs_before_root_parents(self):
        parent = EntityInfo(10, "Amazon")
        child = EntityInfo(11, "AMAZON MKTPL", parent_id=10)

        result = suggest_groupings(
            entities("AMAZON*7"),
            existing_parents=[EntityInfo(20, "Amazon.com")],
            parents_with_children=[ParentWithChildren(parent, (child,))],
        )
        assert summary(result) == [("Amazon", 10, [1])]


class TestMerging:
    """Merging new parents that share a first word."""

    def test_suggestions_with_same_first_word_merged(self):
        result = suggest_groupings(entities(
            "AMAZON RETAIL #1", "AMAZON RETAIL #2", "AMAZON MKTPL #1", "AMAZON MKTPL #2",
        ))
        assert summary(result) == [("Amazon", None, [1, 2, 3, 4])]
        assert result[0].normalized_form == "amazon"

    def test_short_first_word_not_merged(self):
        result = suggest_groupings(entities(
            "SQ *BLUE BOTTLE #1", "SQ *BLUE BOTTLE #2", "SQ *JOES PIZZA #1", "SQ *JOES PIZZA #2",
        ))
        assert summary(result) == [
            ("Sq Blue Bottle", None, [1, 2]),
            ("Sq Joes Pizza", None, [3, 4]),
        ]

    def test_merge_keeps_existing_parents_first(self):
        existing = GroupingSuggestion("Netflix", [5], ["NETFLIX.COM"], "netflix", parent_id=20)
        retail = GroupingSuggestion("Amazon Retail", [1, 2], ["A1", "A2"], "amazon retail")
        mktpl = GroupingSuggestion("Amazon Mktpl", [3, 4], ["A3", "A4"], "amazon mktpl")

        result = merge_similar_parent_suggestions([retail, existing, mktpl])
        assert summary(result) == [("Netflix", 20, [5]), ("Amazon", None, [1, 2, 3, 4])]
        assert result[1].child_names == ["A1", "A2", "A3", "A4"]

    def test_existing_parents_never_merged(self):
        first = GroupingSuggestion("Amazon", [1], ["A1"], "amazon", parent_id=10)
        second = GroupingSuggestion("Amazon Prime", [2], ["A2"], "amazon prime", parent_id=11)
        assert merge_similar_parent_suggestions([first, second]) == [first, second]

    def test_single_new_suggestion_unchanged(self):
        only = GroupingSuggestion("Amazon", [1, 2], ["A1", "A2"], "amazon")
        assert merge_similar_parent_suggestions([only]) == [only]

    def test_different_first_words_kept_apart(self):
        amazon = GroupingSuggestion("Amazon", [1, 2], ["A1", "A2"], "amazon")
        apple = GroupingSuggestion("Apple", [3, 4], ["B1", "B2"], "apple")
        assert merge_similar_parent_suggestions([amazon, apple]) == [amazon, apple]


class TestSuggestionAndLogging:
    """Serialization and the debug trace."""

    def test_to_dict(self):
        suggestion = GroupingSuggestion("Amazon", [1, 2], ["A1", "A2"], "amazon")
        assert suggestion.to_dict() == {
            'parent_name': "Amazon",
            'parent_id': None,
            'child_ids': [1, 2],
            'child_names': ["A1", "A2"],
            'normalized_form': "amazon",
        }

    def test_debug_trace_logged_at_info(self, caplog):
        caplog.set_level(logging.INFO, logger='ledgerlens.grouping')
        suggest_groupings(entities("AMAZON*1", "AMAZON*2"), config=GroupingConfig(debug=True))
        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("Pass 1") for m in messages)
        assert any("EXACT GROUP 'amazon'" in m for m in messages)
        assert any(m == "Final result: 1 suggestions" for m in messages)

    def test_trace_quiet_without_debug(self, caplog):
        caplog.set_level(logging.INFO, logger='ledgerlens.grouping')
        suggest_groupings(entities("AMAZON*1", "AMAZON*2"))
        assert not [r for r in caplog.records if r.name == 'ledgerlens.grouping']
