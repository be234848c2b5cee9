from __future__ import annotations

import itertools

import pytest

from factories import make_project
from studioflow.project.model import AssetStatus, Phase, Project
from studioflow.workflow import (
    GateSeverity,
    can_transition,
    evaluate_gates,
    mark_step_skipped,
)


def _ids(gates):
    return [gate.id for gate in gates]


def test_unmet_critical_steps_are_blockers():
    gates = evaluate_gates(Phase.GENESIS, Project())
    blockers = [gate for gate in gates if gate.severity == GateSeverity.BLOCKER]
    assert _ids(blockers) == ["write_script", "analyze_script"]
    assert blockers[1].auto_fixable is True
    assert blockers[0].message == "Script is required to proceed"


def test_unmet_recommended_steps_are_warnings():
    gates = evaluate_gates(Phase.GENESIS, make_project())
    assert all(gate.severity == GateSeverity.WARNING for gate in gates)
    assert _ids(gates) == ["set_style", "set_aspect_ratio"]


def test_skipped_critical_step_still_blocks_but_skipped_recommended_does_not_warn():
    project = mark_step_skipped(Phase.MANIFEST, "assign_voices", make_project(voiced=False))
    project = mark_step_skipped(Phase.MANIFEST, "review_timeline", project)
    gates = evaluate_gates(Phase.MANIFEST, project)
    assert "assign_voices" in _ids(gates)
    assert "review_timeline" not in _ids(gates)


def test_optional_steps_never_gate():
    gates = evaluate_gates(Phase.SYNTHESIS, make_project())
    assert "add_broll" not in _ids(gates)
    assert "adjust_audio_mixing" not in _ids(gates)


def test_overridden_gates_are_suppressed():
    project = make_project(quality_gate_overrides=["generate_assets"])
    assert "generate_assets" not in _ids(evaluate_gates(Phase.SYNTHESIS, project))
    assert can_transition(Phase.SYNTHESIS, Phase.POST, project).allowed


def test_forward_transition_blocked_by_blockers():
    decision = can_transition(Phase.GENESIS, Phase.MANIFEST, Project())
    assert decision.allowed is False
    assert _ids(decision.blockers) == ["write_script", "analyze_script"]


def test_backward_and_same_phase_transitions_always_allowed():
    project = make_project(voiced=False)
    assert can_transition(Phase.MANIFEST, Phase.GENESIS, project).allowed
    assert can_transition(Phase.MANIFEST, Phase.MANIFEST, project).allowed


def test_forward_transition_allowed_with_only_warnings():
    decision = can_transition(Phase.GENESIS, Phase.SYNTHESIS, make_project())
    assert decision.allowed
    assert decision.blockers == []
    assert _ids(decision.warnings) == ["set_style", "set_aspect_ratio"]


@pytest.mark.parametrize(
    "project",
    [
        Project(),
        make_project(voiced=False),
        make_project().update_asset(1, status=AssetStatus.COMPLETE),
    ],
)
def test_transition_refused_only_when_ahead_and_blocked(project):
    for active, target in itertools.product(list(Phase), repeat=2):
        blocked = any(
            gate.severity == GateSeverity.BLOCKER for gate in evaluate_gates(active, project)
        )
        expected = not (target.position > active.position and blocked)
        assert can_transition(active, target, project).allowed is expected
