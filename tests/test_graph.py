"""Tests for the agreement status graph."""
import pytest
from django.apps import apps
from django.core.exceptions import ImproperlyConfigured

from django_isa import graph
from django_isa.graph import (
    INITIAL_STATUS,
    STATUS_CODES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    IsaStatus,
    allowed_transitions,
    can_transition,
    check_status_graph,
    is_terminal,
    reachable_from,
    validate_status_graph,
)


class TestStatusGraph:

    def test_graph_is_valid(self):
        """The shipped graph should pass validation."""
        assert validate_status_graph() == []
        assert validate_status_graph(TRANSITIONS, INITIAL_STATUS, TERMINAL_STATUSES, IsaStatus.values) == []

    def test_initial_status_is_learning(self):
        assert INITIAL_STATUS == IsaStatus.LEARNING

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {IsaStatus.COMPLETED, IsaStatus.DROPPED_OUT}
        assert is_terminal("completed")
        assert is_terminal(IsaStatus.DROPPED_OUT)
        assert not is_terminal(IsaStatus.WORKING)

    @pytest.mark.parametrize("status", [IsaStatus.COMPLETED, IsaStatus.DROPPED_OUT])
    def test_terminal_statuses_have_no_exits(self, status):
        assert allowed_transitions(status) == []

    @pytest.mark.parametrize("from_status,to_status", [
        ("learning", "studying_paid"),
        ("learning", "dropped_out"),
        ("studying_paid", "working"),
        ("working", "completed"),
        ("working", "delinquent"),
        ("unemployed", "working"),
        ("delinquent", "working"),
        ("delinquent", "completed"),
    ])
    def test_allowed_edges(self, from_status, to_status):
        assert can_transition(from_status, to_status)

    @pytest.mark.parametrize("from_status,to_status", [
        ("studying_paid", "learning"),
        ("learning", "completed"),
        ("learning", "delinquent"),
        ("unemployed", "completed"),
        ("completed", "working"),
        ("dropped_out", "learning"),
        ("working", "learning"),
    ])
    def test_rejected_edges(self, from_status, to_status):
        assert not can_transition(from_status, to_status)

    def test_every_non_terminal_status_can_drop_out(self):
        for status in IsaStatus.values:
            if not is_terminal(status):
                assert can_transition(status, IsaStatus.DROPPED_OUT)


class TestStatusCodes:

    def test_codes_are_stable(self):
        assert IsaStatus.LEARNING.code == 0
        assert IsaStatus.STUDYING_PAID.code == 1
        assert IsaStatus.WORKING.code == 2
        assert IsaStatus.DELINQUENT.code == 3
        assert IsaStatus.DROPPED_OUT.code == 4
        assert IsaStatus.COMPLETED.code == 5
        assert IsaStatus.UNEMPLOYED.code == 6

    def test_every_status_has_unique_code(self):
        assert set(STATUS_CODES) == set(IsaStatus.values)
        assert len(set(STATUS_CODES.values())) == len(STATUS_CODES)

    def test_codes_lookup_by_plain_string(self):
        assert STATUS_CODES["working"] == 2


class TestValidateStatusGraph:

    def test_unknown_initial_status(self):
        errors = validate_status_graph({"a": ["b"]}, "x", ["b"], ["a", "b"])
        assert "initial status 'x' is not a known status" in errors

    def test_unknown_terminal_status(self):
        errors = validate_status_graph({"a": ["b"]}, "a", ["b", "z"], ["a", "b"])
        assert "terminal status 'z' is not a known status" in errors

    def test_unknown_target(self):
        errors = validate_status_graph({"a": ["b", "c"]}, "a", ["b"], ["a", "b"])
        assert "'a' moves to unknown status 'c'" in errors

    def test_terminal_with_exit(self):
        errors = validate_status_graph({"a": ["b"], "b": ["a"]}, "a", ["b"], ["a", "b"])
        assert "terminal status 'b' has exits" in errors

    def test_unreachable_status(self):
        errors = validate_status_graph({"a": ["b"]}, "a", ["b"], ["a", "b", "c"])
        assert "status 'c' cannot be reached from 'a'" in errors

    def test_dead_end_status(self):
        """An open status with no way to a terminal one strands agreements."""
        errors = validate_status_graph({"a": ["b", "c"], "c": ["c"]}, "a", ["b"], ["a", "b", "c"])
        assert errors == ["status 'c' never reaches a terminal status"]

    def test_reachable_from_includes_start(self):
        assert reachable_from("a", {"a": ["b"], "b": ["c"]}) == {"a", "b", "c"}
        assert reachable_from("c", {"a": ["b"]}) == {"c"}


class TestCheckStatusGraph:

    def test_shipped_graph_passes(self):
        check_status_graph()

    def test_broken_graph_raises(self):
        with pytest.raises(ImproperlyConfigured, match="cannot be reached"):
            check_status_graph(transitions={IsaStatus.LEARNING: [IsaStatus.DROPPED_OUT]})

    def test_app_ready_checks_graph(self, monkeypatch):
        """Startup refuses a graph that drops an edge agreements depend on."""
        broken = dict(TRANSITIONS)
        broken[IsaStatus.WORKING] = [IsaStatus.UNEMPLOYED]
        broken[IsaStatus.UNEMPLOYED] = [IsaStatus.WORKING]
        broken[IsaStatus.DELINQUENT] = [IsaStatus.WORKING]
        monkeypatch.setattr(graph, "TRANSITIONS", broken)

        with pytest.raises(ImproperlyConfigured, match="never reaches a terminal"):
            apps.get_app_config("django_isa").ready()
