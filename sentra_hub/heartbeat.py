"""
Heartbeat protocol: the agent-facing exchanges.

A heartbeat runs Authenticating -> Updating -> QueryingCommands -> Responding.
Pending commands ride back on every heartbeat until the agent reports a
terminal result, so delivery is at-least-once and FIFO per agent.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sentra_hub.commands import CommandQueue
from sentra_hub.errors import UnknownAgent
from sentra_hub.inventory import ReconcileResult, ServiceInventory
from sentra_hub.models import Agent, Command, MetricSample
from sentra_hub.registry import AgentRegistry
from sentra_hub.store import Store
from sentra_log import get_logger

logger = get_logger(__name__)


@dataclass
class HeartbeatReport:
    """What an agent sends on each heartbeat"""
    cpu: Optional[float] = None
    ram: Optional[float] = None
    uptime: Optional[float] = None
    timestamp: Optional[datetime] = None
    hostname: Optional[str] = None
    os: Optional[str] = None
    swap: Optional[float] = None
    disk: Dict[str, Any] = field(default_factory=dict)

    def to_sample(self, agent_id: int) -> MetricSample:
        disk = self.disk or {}
        timestamp = self.timestamp
        # Agents without an offset report UTC
        if timestamp is not None and timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return MetricSample(
            agent_id=agent_id,
            cpu=self.cpu,
            ram=self.ram,
            uptime=self.uptime,
            timestamp=timestamp,
            swap=self.swap,
            disk_device=disk.get('device'),
            disk_read_kbps=disk.get('read_kbps'),
            disk_write_kbps=disk.get('write_kbps')
        )


@dataclass
class HeartbeatResult:
    agent: Agent
    last_seen: Optional[datetime]
    commands: List[Command]


def _token_hint(token: Optional[str]) -> str:
    return (token or '')[:6] + '...'


class HeartbeatProtocol:
    """Handles register, heartbeat, command-result and inventory exchanges"""

    def __init__(
        self,
        store: Store,
        registry: Optional[AgentRegistry] = None,
        queue: Optional[CommandQueue] = None,
        inventory: Optional[ServiceInventory] = None
    ):
        self.store = store
        self.registry = registry or AgentRegistry(store)
        self.queue = queue or CommandQueue(store)
        self.inventory = inventory or ServiceInventory(store)

    def authenticate(self, token: Optional[str]) -> Agent:
        try:
            return self.registry.lookup(token)
        except UnknownAgent:
            logger.warning("Rejected unknown agent", extra={'context': {'token': _token_hint(token)}})
            raise

    def register(self, token: Optional[str], hostname: Optional[str] = None, os: Optional[str] = None) -> Agent:
        agent = self.authenticate(token)
        return self.registry.touch(agent.app_id, hostname, os)

    def heartbeat(self, token: Optional[str], report: HeartbeatReport) -> HeartbeatResult:
        # Authenticating
        agent = self.authenticate(token)

        # Updating
        self.store.insert_sample(report.to_sample(agent.id))
        agent = self.registry.touch(agent.app_id, report.hostname, report.os)

        # QueryingCommands
        commands = self.queue.pending(agent.id)

        # Responding
        logger.debug(
            "Heartbeat accepted",
            extra={'context': {'agent_id': agent.id, 'pending': len(commands)}}
        )
        return HeartbeatResult(agent=agent, last_seen=agent.last_seen, commands=commands)

    def report_result(
        self,
        token: Optional[str],
        command_id: int,
        success: bool,
        error: Optional[str] = None
    ) -> Tuple[Command, bool]:
        agent = self.authenticate(token)
        return self.queue.resolve(agent.id, command_id, success, error)

    def push_services(self, token: Optional[str], entries: Iterable[Any]) -> ReconcileResult:
        agent = self.authenticate(token)
        return self.inventory.reconcile(agent.id, entries)
