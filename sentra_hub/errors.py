"""
Collector error taxonomy.

Every error carries a stable machine-readable code and the HTTP status the
API renders it with.
"""


class CollectorError(Exception):
    """Base class for structured collector errors"""

    code = 'collector_error'
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'status': 'error', 'code': self.code, 'error': self.message}


class UnknownAgent(CollectorError):
    """Token was never pre-provisioned; no retry without re-provisioning"""
    code = 'unknown_agent'
    status_code = 403


class Unauthorized(CollectorError):
    """Caller may not act on this agent"""
    code = 'unauthorized'
    status_code = 403


class Unauthenticated(Unauthorized):
    """No caller identity was presented"""
    status_code = 401


class AlreadyOwned(CollectorError):
    """Agent is already claimed by a different owner"""
    code = 'already_owned'
    status_code = 409


class MalformedInput(CollectorError):
    """A required field is missing or invalid"""
    code = 'malformed_input'
    status_code = 400


class CommandNotFound(CollectorError):
    """No such command for this caller"""
    code = 'command_not_found'
    status_code = 404
