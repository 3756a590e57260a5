"""
Collector domain records.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

PENDING = 'pending'
DONE = 'done'
FAILED = 'failed'
TERMINAL_STATUSES = (DONE, FAILED)

RESTART = 'restart'
COMMAND_TYPES = (RESTART,)


@dataclass
class Agent:
    """A pre-provisioned agent identity"""
    id: int
    app_id: str
    user_id: Optional[int] = None
    hostname: Optional[str] = None
    os: Optional[str] = None
    last_seen: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class MetricSample:
    """One heartbeat's metrics; append-only"""
    agent_id: int
    cpu: Optional[float] = None
    ram: Optional[float] = None
    uptime: Optional[float] = None
    timestamp: Optional[datetime] = None
    swap: Optional[float] = None
    disk_device: Optional[str] = None
    disk_read_kbps: Optional[float] = None
    disk_write_kbps: Optional[float] = None
    id: Optional[int] = None
    received_at: Optional[datetime] = None


@dataclass
class ServiceRecord:
    """Latest observed state of one service, keyed by (agent_id, service_name)"""
    agent_id: int
    service_name: str
    display_name: Optional[str] = None
    status: Optional[str] = None
    last_updated: Optional[datetime] = None


@dataclass
class Command:
    """A queued remote operation for one agent"""
    id: int
    agent_id: int
    service_name: str
    command_type: str = RESTART
    status: str = PENDING
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
