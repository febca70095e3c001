"""
Workflow engine exceptions.
"""


class WorkflowError(Exception):
    """Base class for workflow engine errors."""


class WorkflowConfigError(WorkflowError):
    """A rule or action configuration is invalid and cannot be saved or matched."""


class InvalidEventError(WorkflowError):
    """An ingested event is malformed."""


class EntityNotFoundError(WorkflowError):
    """A CRM record referenced by an event or occurrence does not exist."""


class DispatchError(WorkflowError):
    """A dispatch request could not be delivered."""

    def __init__(self, message: str, dedup_key: str = ""):
        super().__init__(message)
        self.dedup_key = dedup_key
