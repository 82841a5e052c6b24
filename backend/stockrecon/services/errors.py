# Overview: Error taxonomy shared by the reconciliation services.

"""
Every service failure is one of these types. Routes map them to HTTP
responses through status_code; nothing here is retried by the services
themselves.
"""


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""
    status_code = 400

    def to_dict(self) -> dict:
        return {"error": str(self)}


class ValidationError(ReconciliationError):
    """400-level input problem."""
    status_code = 400


class NotFoundError(ReconciliationError):
    """Referenced branch, product, session or request does not exist."""
    status_code = 404


class ConflictError(ReconciliationError):
    """Invariant-violating concurrent attempt (e.g., second in-progress count for a branch)."""
    status_code = 409


class InvalidStateError(ReconciliationError):
    """Operation attempted against an entity in the wrong lifecycle state."""
    status_code = 409


class AlreadyDecidedError(InvalidStateError):
    """
    Authorize/Reject on a request that is no longer pending.

    Callers treat this as "the decision already happened", not as a
    failure to retry.
    """

    def to_dict(self) -> dict:
        return {"error": str(self), "already_decided": True}


class TransientStoreError(ReconciliationError):
    """
    Store I/O or contention failure inside an atomic transaction.

    The transaction was rolled back, so the whole operation is safe to retry.
    """
    status_code = 503

    def to_dict(self) -> dict:
        return {"error": str(self), "retryable": True}
