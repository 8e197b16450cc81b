"""Error taxonomy shared by the credit, availability, flag and suspension services.

- NotFoundError: missing user/invitation/call/flag. Surfaced, never retried.
- PolicyViolationError: a rule denied the request. Carries a reason code
  and a human-readable message.
- TransientDependencyError: an external collaborator (calendar) failed.
  Recovered locally by the caller.
- DataIntegrityAnomaly: tolerated bad data. Logged, never raised to callers.
"""


class CallgateError(Exception):
    """Base exception for service errors."""

    pass


class NotFoundError(CallgateError):
    """Requested record does not exist."""

    pass


class PolicyViolationError(CallgateError):
    """A booking/credit/flag rule rejected the request."""

    reason = "policy_violation"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class TransientDependencyError(CallgateError):
    """External dependency failed or timed out."""

    pass


class DataIntegrityAnomaly(CallgateError):
    """Inconsistent data that is tolerated by heuristics."""

    pass


class InvalidIdentifierError(CallgateError, ValueError):
    """Identifier could not be normalized."""

    pass
