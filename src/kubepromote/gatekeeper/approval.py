"""Sources of operator decisions for manually gated environments."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import sys
from typing import Protocol, TextIO

from kubepromote.contracts.models import Environment, PromotionDecision, ReleaseArtifact
from kubepromote.contracts.types import ApprovedBy


class Approver(Protocol):
    """Asks for a decision; ``None`` means nobody has decided yet."""

    def request(
        self, environment: Environment, artifact: ReleaseArtifact
    ) -> PromotionDecision | None: ...


@dataclass(slots=True)
class DeferredApprover:
    """Never decides; the run suspends at the gate."""

    def request(
        self, environment: Environment, artifact: ReleaseArtifact
    ) -> PromotionDecision | None:
        return None


@dataclass(slots=True)
class StaticApprover:
    """Answers every gate the same way."""

    approved: bool
    reason: str | None = None

    def request(
        self, environment: Environment, artifact: ReleaseArtifact
    ) -> PromotionDecision | None:
        return PromotionDecision(
            environment=environment.name,
            approved=self.approved,
            approved_by=ApprovedBy.OPERATOR,
            reason=self.reason,
        )


class ConsoleApprover:
    """Prompts the operator on the terminal and blocks until they answer."""

    def __init__(
        self,
        prompt: Callable[[str], str] = input,
        out: TextIO | None = None,
    ) -> None:
        self._prompt = prompt
        self._out = out or sys.stderr

    def request(
        self, environment: Environment, artifact: ReleaseArtifact
    ) -> PromotionDecision | None:
        print(
            f"Release {artifact.release_id} ({artifact.image_reference}) "
            f"is ready for {environment.name}.",
            file=self._out,
        )
        try:
            answer = self._prompt(f"Deploy to {environment.name}? [y/N] ")
        except EOFError:
            return None
        approved = answer.strip().lower() in {"y", "yes"}
        return PromotionDecision(
            environment=environment.name,
            approved=approved,
            approved_by=ApprovedBy.OPERATOR,
            reason=None if approved else "declined at console",
        )
