"""Unit tests for gate policies and approvers."""

from __future__ import annotations

import io

import pytest

from kubepromote.contracts.errors import GateRejected
from kubepromote.contracts.models import Environment, PromotionDecision, PromotionRequest
from kubepromote.contracts.types import ApprovedBy, GatePolicy
from kubepromote.gatekeeper.approval import ConsoleApprover, StaticApprover
from kubepromote.gatekeeper.gate import OVERRIDE_REASON, Gatekeeper
from kubepromote.observability.metrics import GATE_DECISIONS

STAGING = Environment(name="staging", namespace="staging")
PRODUCTION = Environment(
    name="production",
    namespace="production",
    gate_policy=GatePolicy.MANUAL_APPROVAL,
    branches=("master",),
)


def _request(deploy_to_prod: bool = False) -> PromotionRequest:
    return PromotionRequest(
        image_name="app", tag="3", branch="master", deploy_to_prod=deploy_to_prod
    )


def test_automatic_gate_approves() -> None:
    request = _request()
    decision = Gatekeeper().evaluate(STAGING, request, request.artifact())

    assert decision is not None
    assert decision.approved
    assert decision.approved_by is ApprovedBy.AUTOMATIC
    assert decision.environment == "staging"


def test_manual_gate_without_approver_is_pending() -> None:
    request = _request()

    assert Gatekeeper().evaluate(PRODUCTION, request, request.artifact()) is None


def test_deploy_to_prod_overrides_manual_gate() -> None:
    request = _request(deploy_to_prod=True)
    decision = Gatekeeper().evaluate(PRODUCTION, request, request.artifact())

    assert decision is not None
    assert decision.approved
    assert decision.approved_by is ApprovedBy.AUTOMATIC
    assert decision.reason == OVERRIDE_REASON


def test_operator_rejection_is_returned() -> None:
    request = _request()
    decision = Gatekeeper(StaticApprover(False, "change freeze")).evaluate(
        PRODUCTION, request, request.artifact()
    )

    assert decision is not None
    assert not decision.approved
    assert decision.approved_by is ApprovedBy.OPERATOR
    assert decision.reason == "change freeze"


def test_decision_for_other_environment_is_refused() -> None:
    class WrongApprover:
        def request(self, environment, artifact):  # type: ignore[no-untyped-def]
            return PromotionDecision(
                environment="staging", approved=True, approved_by=ApprovedBy.OPERATOR
            )

    request = _request()
    with pytest.raises(GateRejected) as excinfo:
        Gatekeeper(WrongApprover()).evaluate(PRODUCTION, request, request.artifact())

    assert excinfo.value.environment == "production"
    assert "staging" in excinfo.value.message


def test_decisions_are_counted() -> None:
    request = _request(deploy_to_prod=True)
    counter = GATE_DECISIONS.labels(
        environment="production", approved_by="automatic", approved="true"
    )
    before = counter.value

    Gatekeeper().evaluate(PRODUCTION, request, request.artifact())

    assert counter.value == before + 1


@pytest.mark.parametrize(
    ("answer", "approved"), [("y", True), ("YES", True), ("n", False), ("", False)]
)
def test_console_approver_answers(answer: str, approved: bool) -> None:
    out = io.StringIO()
    approver = ConsoleApprover(prompt=lambda _: answer, out=out)
    request = _request()

    decision = approver.request(PRODUCTION, request.artifact())

    assert decision is not None
    assert decision.approved is approved
    assert decision.approved_by is ApprovedBy.OPERATOR
    assert "app-3-master" in out.getvalue()


def test_console_approver_without_terminal_defers() -> None:
    def closed_stdin(_: str) -> str:
        raise EOFError

    request = _request()
    approver = ConsoleApprover(prompt=closed_stdin, out=io.StringIO())

    assert approver.request(PRODUCTION, request.artifact()) is None
