"""
CRD update strategies.

The strategy set is closed: SAFE, FORCE and SKIP. Each one turns the
analyzer's change list into a Decision; the engine applies the CRD on
PROCEED / PROCEED_WITH_WARNING and leaves the cluster untouched on ABORT.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from crdwise.crd.analyzer import ChangeSeverity, CrdChange, count_by_severity, max_severity


class DecisionAction(str, Enum):
    """What the engine should do with a CRD update."""

    PROCEED = "proceed"
    PROCEED_WITH_WARNING = "proceed_with_warning"
    ABORT = "abort"


class Decision(BaseModel):
    """
    Outcome of a strategy decision.

    Attributes:
        action: Proceed, proceed with a warning, or abort
        reason: Human-readable explanation
        changes: The full change list the decision was based on
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    action: DecisionAction
    reason: str
    changes: list[CrdChange] = Field(default_factory=list)

    @property
    def proceeds(self) -> bool:
        return self.action != DecisionAction.ABORT

    @property
    def warns(self) -> bool:
        """True when the update goes ahead with Warning or Dangerous changes."""
        if not self.proceeds or not self.changes:
            return False
        return self.action == DecisionAction.PROCEED_WITH_WARNING or max_severity(self.changes) != ChangeSeverity.SAFE


class UpdateStrategy(str, Enum):
    """
    How CRD updates are handled.

    SAFE: apply safe changes, warn on risky ones, abort on dangerous ones.
    FORCE: always proceed, even on dangerous changes, reporting every change.
    SKIP: never update an existing CRD that differs from the new one.
    """

    SAFE = "safe"
    FORCE = "force"
    SKIP = "skip"

    @classmethod
    def from_options(cls, skip: bool = False, force: bool = False) -> "UpdateStrategy":
        """Map CLI flags to a strategy. Skip wins over force."""
        if skip:
            return cls.SKIP
        if force:
            return cls.FORCE
        return cls.SAFE

    def decide(self, changes: list[CrdChange]) -> Decision:
        """Decide whether a CRD update with these changes may be applied."""
        changes = list(changes)
        if not changes:
            return Decision(action=DecisionAction.PROCEED, reason="no changes", changes=changes)

        severity = max_severity(changes)
        counts = count_by_severity(changes)
        summary = (
            f"{counts[ChangeSeverity.DANGEROUS]} dangerous, "
            f"{counts[ChangeSeverity.WARNING]} warning, "
            f"{counts[ChangeSeverity.SAFE]} safe"
        )

        match self:
            case UpdateStrategy.SAFE:
                if severity == ChangeSeverity.DANGEROUS:
                    return Decision(
                        action=DecisionAction.ABORT,
                        reason=f"dangerous changes detected ({summary})",
                        changes=changes,
                    )
                if severity == ChangeSeverity.WARNING:
                    return Decision(
                        action=DecisionAction.PROCEED_WITH_WARNING,
                        reason=f"changes may reject existing data ({summary})",
                        changes=changes,
                    )
                return Decision(action=DecisionAction.PROCEED, reason=f"safe changes ({summary})", changes=changes)
            case UpdateStrategy.FORCE:
                reason = f"safe changes ({summary})" if severity == ChangeSeverity.SAFE else f"forced update ({summary})"
                return Decision(action=DecisionAction.PROCEED, reason=reason, changes=changes)
            case UpdateStrategy.SKIP:
                return Decision(
                    action=DecisionAction.ABORT,
                    reason=f"CRD updates are skipped ({summary})",
                    changes=changes,
                )
