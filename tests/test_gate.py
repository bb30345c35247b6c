from __future__ import annotations

from deploypipe.core.services.runner import BranchGate, allows

ALLOW_LIST = {"main", "master", "production"}


def test_exact_match_allows() -> None:
    assert allows("main", ALLOW_LIST) is True
    assert allows("production", ALLOW_LIST) is True


def test_match_is_case_sensitive() -> None:
    assert allows("Main", ALLOW_LIST) is False
    assert allows("MASTER", ALLOW_LIST) is False


def test_no_prefix_or_glob_matching() -> None:
    assert allows("main-hotfix", ALLOW_LIST) is False
    assert allows("release/main", ALLOW_LIST) is False
    assert allows("ma*", {"ma*"}) is True
    assert allows("main", {"ma*"}) is False


def test_absent_branch_never_allowed() -> None:
    assert allows(None, ALLOW_LIST) is False
    assert allows("", ALLOW_LIST) is False


def test_gate_decision_is_cached() -> None:
    gate = BranchGate("main", ALLOW_LIST)
    assert gate.allowed is True

    gate.allow_list = frozenset()
    assert gate.allowed is True
    assert "main" in gate.reason()
