"""
Error taxonomy for the crosswalk engine.

Every error except StoreIntegrityError is local and recoverable by the caller:
the HTTP layer translates them into 4xx responses. StoreIntegrityError means the
persisted store is corrupt and is raised at startup instead of being masked.
"""


class CrosswalkError(Exception):
    """Base class for recoverable engine errors."""

    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CrosswalkError):
    """Malformed or out-of-range input, rejected before any state change."""

    status_code = 422


class NotFoundError(CrosswalkError):
    """Unknown framework, version, requirement, control, mapping or drift."""

    status_code = 404


class ConcurrentModificationError(CrosswalkError):
    """The version stamp read by the caller is stale. Re-read and retry."""

    status_code = 409


class InvalidStateTransition(CrosswalkError):
    """Illegal lifecycle move (drift, control or framework version)."""

    status_code = 409


class DuplicateDriftError(CrosswalkError):
    """A drift for the same requirement and version pair is already recorded."""

    status_code = 409


class StoreIntegrityError(Exception):
    """Corrupt store detected at startup or ingestion. Fatal."""

    def __init__(self, problems: list[str]):
        super().__init__("; ".join(problems))
        self.problems = problems
