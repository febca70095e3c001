"""
Schema and DTO package.
"""

from dealflow.schemas.action_config import DraftEmailConfig, SendMode
from dealflow.schemas.dispatch import DispatchOutcome, DispatchRequest, RenderedEmail
from dealflow.schemas.event import DealStageChangedEvent
from dealflow.schemas.template_context import TemplateContext

__all__ = [
    "DraftEmailConfig",
    "SendMode",
    "DispatchOutcome",
    "DispatchRequest",
    "RenderedEmail",
    "DealStageChangedEvent",
    "TemplateContext",
]
