"""
Failure kinds raised by the core.

Every error carries a human-readable reason and a ``kind`` string so a
caller can tell the category apart without inspecting the message.
"""


class HubError(Exception):
    kind = "error"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)

    def to_dict(self) -> dict:
        return {"error": self.reason, "kind": self.kind}


class NotFound(HubError):
    """Missing entity, or one the requester does not own."""
    kind = "not_found"


class InvalidState(HubError):
    """Operation attempted in the wrong lifecycle state."""
    kind = "invalid_state"


class ConflictingWrite(HubError):
    """A concurrent write invalidated what the operation assumed."""
    kind = "conflicting_write"


class IntegrityViolation(HubError):
    """The write would break a stored invariant."""
    kind = "integrity_violation"
