#!/usr/bin/env python3
"""Error taxonomy for the proposal pipeline.

Every failure the pipeline surfaces is a ProposalError carrying an explicit
``kind`` discriminant. The boundary maps kinds to responses through
HTTP_STATUS_BY_KIND instead of inspecting exception classes.

Kinds:
    invalid_request        - the caller's payload was malformed (400)
    validation             - model output rejected on every round (422)
    provider_rate_limited  - provider kept returning 429 (429, retry hint)
    provider_failure       - provider unreachable or refused the call (502)
    precondition           - e.g. empty catalog (500)
    logging                - interaction could not be recorded (500)
    persistence            - proposal could not be stored (500)
    consistency            - canonical data changed mid-request (500)
"""

import math

INVALID_REQUEST = "invalid_request"
VALIDATION = "validation"
PROVIDER_RATE_LIMITED = "provider_rate_limited"
PROVIDER_FAILURE = "provider_failure"
PRECONDITION = "precondition"
LOGGING = "logging"
PERSISTENCE = "persistence"
CONSISTENCY = "consistency"

ERROR_KINDS = frozenset({
    INVALID_REQUEST, VALIDATION, PROVIDER_RATE_LIMITED, PROVIDER_FAILURE,
    PRECONDITION, LOGGING, PERSISTENCE, CONSISTENCY,
})

HTTP_STATUS_BY_KIND = {
    INVALID_REQUEST: 400,
    VALIDATION: 422,
    PROVIDER_RATE_LIMITED: 429,
    PROVIDER_FAILURE: 502,
    PRECONDITION: 500,
    LOGGING: 500,
    PERSISTENCE: 500,
    CONSISTENCY: 500,
}

# Kinds where the caller's inputs were fine and retrying later may succeed.
RETRY_LATER_KINDS = frozenset({PROVIDER_RATE_LIMITED, PROVIDER_FAILURE})


class ProposalError(Exception):
    """Base pipeline error. ``kind`` is always one of ERROR_KINDS."""

    kind = None

    def __init__(self, message: str, kind: str = None):
        super().__init__(message)
        kind = kind or self.kind
        if kind not in ERROR_KINDS:
            raise ValueError(f"Unknown error kind: {kind}")
        self.kind = kind
        self.message = message

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]


class RequestValidationError(ProposalError):
    kind = INVALID_REQUEST


class ValidationRejection(ProposalError):
    """Model output failed verification. The message is fed back to the model."""
    kind = VALIDATION


class ProviderFailureError(ProposalError):
    kind = PROVIDER_FAILURE

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class ProviderRateLimitError(ProviderFailureError):
    kind = PROVIDER_RATE_LIMITED

    def __init__(self, message: str, provider: str = "",
                 retry_after_seconds: float = 0.0):
        super().__init__(message, provider=provider)
        self.retry_after_seconds = retry_after_seconds


class PreconditionError(ProposalError):
    kind = PRECONDITION


class InteractionLogError(ProposalError):
    kind = LOGGING


class PersistenceError(ProposalError):
    kind = PERSISTENCE


class DataConsistencyError(ProposalError):
    kind = CONSISTENCY


def error_payload(err: ProposalError) -> dict:
    """Render the {ok, data, error} envelope for a pipeline error."""
    data = None
    if err.kind == PROVIDER_RATE_LIMITED:
        data = {
            "provider": getattr(err, "provider", ""),
            "retry_after_seconds": math.ceil(err.retry_after_seconds or 0),
        }
    return {
        "ok": False,
        "data": data,
        "error": err.message,
        "kind": err.kind,
        "retry_later": err.kind in RETRY_LATER_KINDS,
    }
