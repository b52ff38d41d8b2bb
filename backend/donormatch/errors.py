from __future__ import annotations


class MatchingError(Exception):
    """Base class for errors surfaced by the matching and lifecycle engine."""


class NotFound(MatchingError):
    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class InvalidTransition(MatchingError):
    def __init__(self, kind: str, current: str, target: str, reason: str | None = None) -> None:
        message = f"{kind} cannot move from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.kind = kind
        self.current = current
        self.target = target


class NotAuthorized(MatchingError):
    pass


class StaleState(MatchingError):
    """The record changed between load and save; reload and reapply."""


class StorageError(MatchingError):
    """The persistence collaborator failed. Safe to retry."""


class DuplicateMatch(MatchingError):
    def __init__(self, request_id: str, donor_id: str) -> None:
        super().__init__(f"an active match already exists for request {request_id} and donor {donor_id}")
        self.request_id = request_id
        self.donor_id = donor_id


class DonorIneligible(MatchingError):
    def __init__(self, donor_id: str, reason: str) -> None:
        super().__init__(f"donor {donor_id} is not eligible: {reason}")
        self.donor_id = donor_id
        self.reason = reason


class InvalidUpdate(MatchingError):
    """The edit does not fit the record it targets."""


class RecordInUse(MatchingError):
    def __init__(self, kind: str, record_id: str, reason: str) -> None:
        super().__init__(f"{kind} {record_id} is in use: {reason}")
        self.kind = kind
        self.record_id = record_id
        self.reason = reason


class VersionConflict(Exception):
    """Raised by stores when the expected version no longer matches."""

    def __init__(self, kind: str, record_id: str, expected: int) -> None:
        super().__init__(f"{kind} {record_id} changed since version {expected}")
        self.kind = kind
        self.record_id = record_id
        self.expected = expected
