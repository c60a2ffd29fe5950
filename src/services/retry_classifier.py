"""
Retry Classifier - Decides what to do with a dispatch outcome

Only Strava's own 429 is retried: it is the one failure known to be transient
and caused by our own call volume. Anything else fails the request.
"""

from src.api.errors import (
    AuthExpired,
    GovernorError,
    ProviderError,
    RateLimited,
    RetryBudgetExhausted
)
from src.models.models import DispatchOutcome, QueueItem

SUCCESS = "success"
RATE_LIMITED = "rate_limited"
AUTH = "auth"
FATAL = "fatal"

# Decisions for a classified outcome
RESOLVE = "resolve"
REQUEUE = "requeue"
REJECT = "reject"

AUTH_STATUS_CODES = {401, 403}
RATE_LIMIT_STATUS_CODE = 429


def classify(outcome: DispatchOutcome) -> str:
    """
    Classify a dispatch outcome

    Returns:
        One of SUCCESS, RATE_LIMITED, AUTH or FATAL
    """
    if outcome.ok:
        return SUCCESS
    if outcome.status_code == RATE_LIMIT_STATUS_CODE:
        return RATE_LIMITED
    if outcome.status_code in AUTH_STATUS_CODES:
        return AUTH
    return FATAL


def decide(kind: str, item: QueueItem) -> str:
    """
    Decide the fate of a queue item given its outcome class

    Args:
        kind: Result of classify()
        item: The dispatched item (its retry budget is consulted)

    Returns:
        RESOLVE, REQUEUE or REJECT
    """
    if kind == SUCCESS:
        return RESOLVE
    if kind == RATE_LIMITED and item.can_retry():
        return REQUEUE
    return REJECT


def error_for(kind: str, outcome: DispatchOutcome, item: QueueItem) -> GovernorError:
    """
    Exception delivered to the caller of a rejected item

    The queue only rejects a 429 once the retry budget is spent, so it always
    gets RetryBudgetExhausted. RateLimited is returned to callers that classify
    a 429 outside the queue while retries remain.
    """
    endpoint = item.request_spec.endpoint
    message = outcome.error or f"HTTP {outcome.status_code}"
    if kind == RATE_LIMITED:
        # not reached from the queue: decide() requeues while can_retry() holds
        if item.can_retry():
            return RateLimited(message, outcome.status_code, endpoint)
        return RetryBudgetExhausted(endpoint, item.attempts)
    if kind == AUTH:
        return AuthExpired(message, outcome.status_code, endpoint)
    return ProviderError(message, outcome.status_code, endpoint)
