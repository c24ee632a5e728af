from __future__ import annotations


class TriggerOperatorError(Exception):
    """Base class for errors raised by the operator."""


class ConfigError(TriggerOperatorError):
    """The cluster-wide settings could not be loaded at startup."""


class TemporaryError(TriggerOperatorError):
    """A reconcile failure that may succeed on a later attempt."""


class FunctionNotFound(TemporaryError):
    def __init__(self, namespace: str, name: str):
        super().__init__(f"Function {namespace}/{name} not found")
        self.namespace = namespace
        self.name = name


class PermanentError(TriggerOperatorError):
    """A reconcile failure that retrying cannot fix.

    Keys failing with this error are dropped from the work queue at once.
    """


class InvalidFunctionSpec(PermanentError):
    pass


class InvalidPayload(PermanentError):
    pass


class CronJobConflict(PermanentError):
    def __init__(self, namespace: str, name: str):
        super().__init__(
            f"Found a conflicting CronJob {namespace}/{name} not created by the operator"
        )
        self.namespace = namespace
        self.name = name
