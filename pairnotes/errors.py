# pairnotes/errors.py

from __future__ import annotations


class PairNotesError(Exception):
    """
    Base for every failure that is reported back as `{success: false, message}`.

    `status_code` classifies the failure in the operational log; the response itself
    is always HTTP 200.
    """

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PairNotesError):
    status_code = 422


class AuthError(PairNotesError):
    status_code = 401


class NotAuthenticatedError(PairNotesError):
    status_code = 401


class IdempotencyError(PairNotesError):
    status_code = 409


class NotFoundError(PairNotesError):
    status_code = 404


class StorageError(PairNotesError):
    status_code = 500
