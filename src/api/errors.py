"""
Error taxonomy for calls made through the request governor
"""

from typing import Optional


class GovernorError(Exception):
    """Base class for every failure delivered by the governor"""
    pass


class ProviderCallError(GovernorError):
    """A dispatched call that Strava answered with a failure"""

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class RateLimited(ProviderCallError):
    """Strava answered 429 Too Many Requests"""
    pass


class AuthExpired(ProviderCallError):
    """The bearer token was rejected (401/403); needs an external refresh"""
    pass


class ProviderError(ProviderCallError):
    """Any other upstream or network failure"""
    pass


class RetryBudgetExhausted(GovernorError):
    """Strava kept rate limiting a request after every allowed re-queue"""

    def __init__(self, endpoint: str, attempts: int):
        super().__init__(f"Still rate limited after {attempts} attempts: {endpoint}")
        self.endpoint = endpoint
        self.attempts = attempts


class NotFound(GovernorError):
    """Unknown or expired sync task id"""

    def __init__(self, task_id: str):
        super().__init__(f"Sync task not found: {task_id}")
        self.task_id = task_id
