"""
Trigger matching for deal stage change events.

Pure module: no database or service imports.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol

from dealflow.core.logging import get_logger
from dealflow.services.workflows.errors import WorkflowConfigError

logger = get_logger(__name__)


class StageTransition(Protocol):
    from_stage_id: Optional[str]
    to_stage_id: str
    pipeline: Optional[str]


@dataclass(frozen=True)
class TriggerRule:
    """
    Stage/pipeline filter of one workflow.

    ``from_stage_id`` and ``pipeline_filter`` set to None mean "any".
    """

    id: str
    name: str
    active: bool
    to_stage_id: str
    from_stage_id: Optional[str] = None
    pipeline_filter: Optional[str] = None

    def __post_init__(self):
        if not self.to_stage_id:
            raise WorkflowConfigError(f"Workflow {self.id} has no to_stage_id")


def rule_matches(rule: TriggerRule, event: StageTransition) -> bool:
    """All filters must hold; an absent filter matches anything."""
    if not rule.active or not rule.to_stage_id:
        return False
    if rule.to_stage_id != event.to_stage_id:
        return False
    if rule.from_stage_id and rule.from_stage_id != event.from_stage_id:
        return False
    if rule.pipeline_filter and rule.pipeline_filter != event.pipeline:
        return False
    return True


def match(event: StageTransition, rules: Iterable[TriggerRule]) -> List[TriggerRule]:
    """
    Return every rule satisfied by ``event``, in input order.

    Rules are evaluated independently; there is no first-match short-circuit.
    """
    matched = [rule for rule in rules if rule_matches(rule, event)]
    logger.debug(
        "Event %s -> %s matched %d rule(s)",
        event.from_stage_id,
        event.to_stage_id,
        len(matched),
    )
    return matched
