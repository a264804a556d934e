"""Error taxonomy for the rollout engine."""


class RolloutError(Exception):
    """Base class for all rollout engine errors."""


class StoreError(RolloutError):
    """
    A cluster store call failed.

    Store errors are transient from the engine's point of view: they are
    returned to the caller so the key gets requeued.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """The requested object does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status=404)


class AlreadyExistsError(StoreError):
    """An object with the same identity already exists."""

    def __init__(self, message: str):
        super().__init__(message, status=409)


class ConflictError(StoreError):
    """The object was modified since it was read (resourceVersion mismatch)."""

    def __init__(self, message: str):
        super().__init__(message, status=409)


class MalformedObjectError(RolloutError):
    """A member object spec could not be parsed into a resource document."""


class TemplateError(RolloutError):
    """A deployment or revision spec does not match the template schema."""
