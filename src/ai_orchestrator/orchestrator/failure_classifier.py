"""Deterministic backend failure classification.

The executor never retries; the classification travels on
`AdapterTransportError` so the orchestration caller can decide.
"""

from __future__ import annotations

from dataclasses import dataclass

from ai_orchestrator.orchestrator.errors import AdapterTransportError
from ai_orchestrator.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

TRANSIENT_STATUS_CODES: tuple[int, ...] = (408, 409, 425, 429, 500, 502, 503, 504)
TRANSIENT_EXIT_CODES: tuple[int, ...] = (137, 143)

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
    "exceeded",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "invalid x-api-key",
    "authentication",
    "api key not valid",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
    "not available in your region",
    "does not exist",
)
_RATE_LIMIT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "overloaded",
    "please retry",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "could not resolve host",
    "timed out",
)
_TRANSIENT_CLASSES = frozenset({FailureClass.BACKEND_TRANSIENT, FailureClass.TIMEOUT})


@dataclass(slots=True)
class BackendFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def transient(self) -> bool:
        return self.failure_class in _TRANSIENT_CLASSES

    def to_log_details(self, *, provider_id: str) -> dict[str, object]:
        """Serialize classifier diagnostics for task log entries."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "provider": provider_id,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_backend_failure(  # noqa: PLR0911
    *,
    provider_id: str,
    message: str,
    status_code: int | None = None,
    exit_code: int | None = None,
    timed_out: bool = False,
) -> BackendFailureClassification:
    """Classify an HTTP or process failure into a deterministic class."""

    if timed_out:
        return BackendFailureClassification(
            failure_class=FailureClass.TIMEOUT,
            reason_code=f"{provider_id}_timeout",
            matched_rule="timeout",
            matched_pattern=None,
        )

    haystack = message.lower()

    pattern = _first_match(haystack, _BILLING_OR_QUOTA_PATTERNS)
    if pattern is not None or status_code == 402:
        return BackendFailureClassification(
            failure_class=FailureClass.BILLING_OR_QUOTA,
            reason_code=f"{provider_id}_billing_or_quota",
            matched_rule="billing_or_quota",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _ACCESS_OR_AUTH_PATTERNS)
    if pattern is not None or status_code in (401, 403):
        return BackendFailureClassification(
            failure_class=FailureClass.ACCESS_OR_AUTH,
            reason_code=f"{provider_id}_access_or_auth",
            matched_rule="access_or_auth",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _MODEL_NOT_AVAILABLE_PATTERNS)
    if pattern is not None:
        return BackendFailureClassification(
            failure_class=FailureClass.MODEL_NOT_AVAILABLE,
            reason_code=f"{provider_id}_model_not_available",
            matched_rule="model_not_available",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _RATE_LIMIT_TRANSIENT_PATTERNS)
    if pattern is not None or status_code == 429:
        return BackendFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"{provider_id}_rate_limit_transient",
            matched_rule="rate_limit_transient",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    transient_code = status_code in TRANSIENT_STATUS_CODES or exit_code in TRANSIENT_EXIT_CODES
    if pattern is not None or transient_code:
        return BackendFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"{provider_id}_backend_transient",
            matched_rule=(
                "transient_code" if transient_code and pattern is None else "generic_transient"
            ),
            matched_pattern=pattern,
        )

    return BackendFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code=f"{provider_id}_backend_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def transport_error(
    *,
    provider_id: str,
    message: str,
    status_code: int | None = None,
    exit_code: int | None = None,
    timed_out: bool = False,
) -> AdapterTransportError:
    """Build an `AdapterTransportError` carrying its classification."""

    classified = classify_backend_failure(
        provider_id=provider_id,
        message=message,
        status_code=status_code,
        exit_code=exit_code,
        timed_out=timed_out,
    )
    return AdapterTransportError(
        message,
        transient=classified.transient,
        failure_class=classified.failure_class,
        status_code=status_code,
        details=classified.to_log_details(provider_id=provider_id),
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
