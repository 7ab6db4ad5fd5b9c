"""Exception hierarchy for the NSG controller."""


class NsgControllerError(Exception):
    """Base class for every error raised by the controller."""


class ConfigurationError(NsgControllerError):
    """Startup configuration is missing, unreadable or invalid. Fatal."""


class RemoteOperationError(NsgControllerError):
    """A call to the Azure or Kubernetes API failed. Retried on the next pass."""


class RuleConflictError(NsgControllerError):
    """The merged rule collection contains a name or priority collision."""

    def __init__(self, message: str, conflicts=None):
        super().__init__(message)
        self.conflicts = conflicts or []


class RulePriorityExhaustedError(NsgControllerError):
    """More rules were requested than fit in the allowed priority range."""
