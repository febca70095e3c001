"""
Draft-email action configuration.

Persisted shape (``workflow_actions.config``)::

    {subject_template, body_template, body_html_template, use_html,
     send_mode, delay_minutes, recurring_every_days, recurring_times}
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

MAX_RECURRING_TIMES = 30
MAX_DELAY_MINUTES = 60 * 24 * 365
MAX_RECURRING_EVERY_DAYS = 365

FALSE_STRINGS = frozenset({"", "0", "false", "no", "off"})

DEFAULT_SUBJECT_TEMPLATE = "Your information request has been processed"

DEFAULT_BODY_TEMPLATE = "\n".join(
    [
        "Hi {{patient.first_name}}",
        "",
        "We wanted to let you know that your request for information has now been processed.",
        "",
        "Deal: {{deal.title}}",
        "Pipeline: {{deal.pipeline}}",
        "",
        "Best regards,",
        "Your clinic team",
    ]
)


class SendMode(str, Enum):
    """Delivery timing mode."""

    IMMEDIATE = "immediate"
    DELAY = "delay"
    RECURRING = "recurring"


def _positive(value: Optional[int], maximum: Optional[int] = None) -> Optional[int]:
    if value is None or value <= 0:
        return None
    return min(value, maximum) if maximum else value


class DraftEmailConfig(BaseModel):
    """Templates and delivery timing of a ``draft_email_patient`` action."""

    subject_template: Optional[str] = None
    body_template: Optional[str] = None
    body_html_template: Optional[str] = None
    use_html: bool = False
    send_mode: SendMode = SendMode.IMMEDIATE
    delay_minutes: Optional[int] = None
    recurring_every_days: Optional[int] = None
    recurring_times: Optional[int] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("send_mode", mode="before")
    @classmethod
    def _coerce_send_mode(cls, value: Any) -> SendMode:
        try:
            return SendMode(value)
        except ValueError:
            return SendMode.IMMEDIATE

    @field_validator(
        "delay_minutes", "recurring_every_days", "recurring_times", mode="before"
    )
    @classmethod
    def _coerce_number(cls, value: Any) -> Optional[int]:
        # Stored configs come from a JSON editor; anything non-numeric is "unset".
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, (float, str)):
            # Fractions are truncated to whole minutes or days
            try:
                return int(float(value))
            except (ValueError, OverflowError):
                return None
        return None

    @field_validator("use_html", mode="before")
    @classmethod
    def _coerce_bool(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() not in FALSE_STRINGS
        return bool(value)

    @property
    def effective_subject_template(self) -> str:
        if self.subject_template is None:
            return DEFAULT_SUBJECT_TEMPLATE
        return self.subject_template

    @property
    def effective_body_template(self) -> str:
        if self.body_template is None:
            return DEFAULT_BODY_TEMPLATE
        return self.body_template

    @property
    def effective_delay_minutes(self) -> Optional[int]:
        return _positive(self.delay_minutes, MAX_DELAY_MINUTES)

    @property
    def effective_every_days(self) -> Optional[int]:
        return _positive(self.recurring_every_days, MAX_RECURRING_EVERY_DAYS)

    @property
    def effective_times(self) -> Optional[int]:
        times = _positive(self.recurring_times)
        return min(times, MAX_RECURRING_TIMES) if times else None

    def limit_violations(self) -> List[str]:
        """Timing values of the selected mode that exceed their maximum."""
        violations = []
        if (
            self.send_mode == SendMode.DELAY
            and self.delay_minutes is not None
            and self.delay_minutes > MAX_DELAY_MINUTES
        ):
            violations.append(f"delay_minutes must be at most {MAX_DELAY_MINUTES}")
        if (
            self.send_mode == SendMode.RECURRING
            and self.recurring_every_days is not None
            and self.recurring_every_days > MAX_RECURRING_EVERY_DAYS
        ):
            violations.append(
                f"recurring_every_days must be at most {MAX_RECURRING_EVERY_DAYS}"
            )
        return violations

    def normalized(self) -> "DraftEmailConfig":
        """
        Config as it is persisted on save.

        Timing fields that do not belong to the selected mode, or that are not
        positive, are dropped; values above their maximum are clamped.
        """
        mode = self.send_mode
        return self.model_copy(
            update={
                "delay_minutes": (
                    self.effective_delay_minutes if mode == SendMode.DELAY else None
                ),
                "recurring_every_days": (
                    self.effective_every_days if mode == SendMode.RECURRING else None
                ),
                "recurring_times": (
                    self.effective_times if mode == SendMode.RECURRING else None
                ),
            }
        )

    def to_stored(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_stored(cls, config: Optional[Dict[str, Any]]) -> "DraftEmailConfig":
        return cls.model_validate(config or {})
