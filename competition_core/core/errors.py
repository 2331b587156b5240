"""Structured error taxonomy for the competition engine.

Every error carries a machine readable ``kind`` and a human message so the
admin layer can render it without inspecting exception types.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class CompetitionError(Exception):
    """Base exception for all engine errors."""

    kind = "CompetitionError"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, "details": self.details}


class ValidationError(CompetitionError):
    """Raised when request data is invalid."""

    kind = "ValidationError"
    status_code = 422


class InvalidRoundWindow(ValidationError):
    """Raised when a round's end date is not after its start date."""

    kind = "InvalidRoundWindow"


class NotFound(CompetitionError):
    """Raised when a round, participant, prize or payment does not exist."""

    kind = "NotFound"
    status_code = 404

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            f"{resource} {resource_id} not found",
            {"resource": resource, "id": str(resource_id)},
        )
        self.resource = resource


class RoundNotActive(CompetitionError):
    """Raised when an entry is submitted outside the round window."""

    kind = "RoundNotActive"
    status_code = 409


class RoundNotEnded(CompetitionError):
    """Raised when qualification runs before the round has ended."""

    kind = "RoundNotEnded"
    status_code = 409


class EntryConflict(CompetitionError):
    """Raised when a post is already entered or a resubmission is rejected."""

    kind = "EntryConflict"
    status_code = 409


class ParticipantDisqualified(CompetitionError):
    """Raised when a disqualified participant tries to enter."""

    kind = "ParticipantDisqualified"
    status_code = 403


class CompetitionNotConcluded(CompetitionError):
    """Raised when payouts are requested before the competition ended."""

    kind = "CompetitionNotConcluded"
    status_code = 409


class DuplicatePayment(CompetitionError):
    """Raised when a live payment already exists for a prize and winner."""

    kind = "DuplicatePayment"
    status_code = 409


class InvalidTransition(CompetitionError):
    """Raised when a payment state transition is not allowed."""

    kind = "InvalidTransition"
    status_code = 409

    def __init__(self, source: str, target: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot transition payment from {source} to {target}",
            {"source": source, "target": target},
        )
        self.source = source
        self.target = target


class AlreadyCompleted(InvalidTransition):
    """Raised when completing a payment that is already completed."""

    kind = "AlreadyCompleted"

    def __init__(self, payment_id: Any):
        super().__init__(
            "COMPLETED",
            "COMPLETED",
            f"Payment {payment_id} is already completed",
        )


class ReconciliationInProgress(CompetitionError):
    """Raised when another reconciliation holds the competition lock."""

    kind = "ReconciliationInProgress"
    status_code = 409

    def __init__(self, competition_id: Any, retry_after: int):
        super().__init__(
            f"Reconciliation already running for competition {competition_id}, retry later",
            {"competition_id": str(competition_id), "retry_after": retry_after},
        )
        self.retry_after = retry_after


class ReconciliationPartialFailure(CompetitionError):
    """Raised when some participants could not be repaired."""

    kind = "ReconciliationPartialFailure"
    status_code = 500

    def __init__(self, failures: List[Dict[str, Any]], summary: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Reconciliation failed for {len(failures)} participant(s)",
            {"failures": failures, "summary": summary or {}},
        )
        self.failures = failures
