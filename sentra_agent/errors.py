"""
Agent-side exceptions.
"""

from typing import Optional


class ConfigError(Exception):
    """Agent configuration validation error"""
    pass


class SamplingUnavailable(Exception):
    """A metric's OS source could not be read; the metric degrades to absent"""
    pass


class TransientExecutionFailure(Exception):
    """A remote command errored or timed out; reported back as a failed result"""
    pass


class CollectorRejected(Exception):
    """The collector answered with a structured error response"""

    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    @property
    def is_unknown_agent(self) -> bool:
        return self.code == 'unknown_agent'
