"""Exception types raised by the Longbox core."""


class LongboxError(Exception):
    """Base error type."""


class NotFoundError(LongboxError):
    """A library, folder, file or series does not exist."""

    def __init__(self, kind: str, key: object):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class PreconditionError(LongboxError):
    """A mutation was rejected; the message carries the reason."""


class ConflictError(LongboxError):
    """An identity that must be unique already exists."""


class InvalidTransitionError(LongboxError):
    """A status change that the transition table does not allow."""

    def __init__(self, entity: str, current: object, target: object):
        super().__init__(f"{entity}: cannot transition {current} -> {target}")
        self.current = current
        self.target = target
