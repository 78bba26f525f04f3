"""Tests for relation-type normalisation and the pattern matcher."""

import pytest

from life_graph.relations import (
    RelationMatcher,
    candidates_from_dicts,
    default_strength,
    normalize_relation_type,
)


@pytest.fixture
def matcher():
    return RelationMatcher()


def _edges(candidates):
    return [(c.source, c.target, c.type) for c in candidates]


class TestNormalize:
    @pytest.mark.parametrize("word,expected", [
        ("brother", "sibling_of"),
        ("brothers", "sibling_of"),
        ("Sister", "sibling_of"),
        ("boss", "manager_of"),
        ("friends", "friend_of"),
        ("wife", "spouse_of"),
        ("  coworker ", "colleague_of"),
    ])
    def test_known_words(self, word, expected):
        assert normalize_relation_type(word) == expected

    def test_unmapped_passes_through(self):
        assert normalize_relation_type("mentor") == "mentor"

    def test_deterministic(self):
        assert normalize_relation_type("brother") == normalize_relation_type("brothers")

    def test_strengths(self):
        assert default_strength("spouse_of") == 1.0
        assert default_strength("neighbor_of") == 0.5
        assert default_strength("mentor") == 1.0


class TestMatcher:
    def test_is_my(self, matcher):
        assert _edges(matcher.extract("John is my brother")) == [("me", "John", "sibling_of")]

    def test_is_my_with_relative_clause(self, matcher):
        edges = _edges(matcher.extract("John is my brother who lives in Seattle"))
        assert edges == [("me", "John", "sibling_of"), ("John", "Seattle", "lives_in")]

    def test_lives_in_target_type(self, matcher):
        cands = matcher.extract("Maria lives in New York")
        assert _edges(cands) == [("Maria", "New York", "lives_in")]
        assert cands[0].target_type == "location"
        assert cands[0].edge_strength() == 0.6

    def test_possessive_owner(self, matcher):
        assert _edges(matcher.extract("Tom is Sarah's husband")) == [("Sarah", "Tom", "spouse_of")]

    def test_my_relation_name(self, matcher):
        assert _edges(matcher.extract("I had dinner with my best friend Alex")) == [("me", "Alex", "friend_of")]

    def test_works_at(self, matcher):
        cands = matcher.extract("Priya works at Acme Corp.")
        assert _edges(cands) == [("Priya", "Acme Corp", "employee_of")]
        assert cands[0].target_type == "organization"

    def test_first_person_works_at(self, matcher):
        assert _edges(matcher.extract("I work at Google")) == [("me", "Google", "employee_of")]

    def test_symmetric_emits_two_edges(self, matcher):
        edges = _edges(matcher.extract("Alice and Bob are friends"))
        assert edges == [("Alice", "Bob", "friend_of"), ("Bob", "Alice", "friend_of")]

    def test_unresolvable_pronoun_dropped(self, matcher):
        assert matcher.extract("He lives in Paris") == []

    def test_no_relation(self, matcher):
        assert matcher.extract("I spent $25 on lunch today") == []
        assert matcher.extract("") == []


class TestExplicitCandidates:
    def test_incomplete_dropped(self):
        cands = candidates_from_dicts([
            {"source": "Ann", "target": "Bo", "type": "friend"},
            {"source": "Ann", "type": "friend"},
            {"target": "Bo", "type": "friend"},
            {"source": "Ann", "target": "Bo"},
            "garbage",
        ])
        assert _edges(cands) == [("Ann", "Bo", "friend_of")]

    def test_duplicates_and_self_loops_dropped(self):
        cands = candidates_from_dicts([
            {"source": "Ann", "target": "Bo", "type": "friend"},
            {"source": "Ann", "target": "Bo", "type": "friends"},
            {"source": "Ann", "target": "Ann", "type": "friend"},
        ])
        assert len(cands) == 1

    def test_explicit_strength_and_types(self):
        cands = candidates_from_dicts([
            {"source": "I", "target": "Lisbon", "type": "lives_in", "target_type": "location", "strength": "0.3"},
        ])
        assert cands[0].source == "me"
        assert cands[0].target_type == "location"
        assert cands[0].edge_strength() == 0.3

    def test_non_string_names_dropped(self):
        cands = candidates_from_dicts([
            {"source": 42, "target": "Bob", "type": "friend"},
            {"source": "Ann", "target": ["Bob"], "type": "friend"},
            {"source": None, "target": {"name": "Bob"}, "type": "friend"},
            {"source": "Ann", "target": "Cy", "type": 7},
        ])
        assert cands == []
