"""
Durable store interface and an in-process implementation.

Components receive a Store instance explicitly; there is no module-level
connection or pool. PostgresStore (sentra_hub.db) is the production backend,
MemoryStore serves tests and single-process trials.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sentra_hub.models import PENDING, Agent, Command, MetricSample, ServiceRecord


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Store(ABC):
    """Keyed persistence for agents, samples, service records and commands"""

    # agents

    @abstractmethod
    def create_agent(self, app_id: str, user_id: Optional[int] = None) -> Agent:
        pass

    @abstractmethod
    def get_agent(self, agent_id: int) -> Optional[Agent]:
        pass

    @abstractmethod
    def get_agent_by_token(self, app_id: str) -> Optional[Agent]:
        pass

    @abstractmethod
    def touch_agent(self, agent_id: int, hostname: Optional[str], os: Optional[str]) -> Agent:
        """Set last_seen to now; hostname/os only change when not None"""

    @abstractmethod
    def set_owner(self, agent_id: int, user_id: int) -> Agent:
        pass

    @abstractmethod
    def list_agents(self, user_id: int) -> List[Agent]:
        """Owner's agents, most recently seen first"""

    # samples

    @abstractmethod
    def insert_sample(self, sample: MetricSample) -> MetricSample:
        pass

    @abstractmethod
    def count_samples(self, agent_id: int) -> int:
        pass

    @abstractmethod
    def latest_samples(self, user_id: int, limit: int = 50) -> List[dict]:
        """Newest samples of the owner's agents joined with app_id/hostname"""

    # services

    @abstractmethod
    def upsert_service(self, record: ServiceRecord) -> ServiceRecord:
        pass

    @abstractmethod
    def services_for_agent(self, agent_id: int) -> List[ServiceRecord]:
        pass

    @abstractmethod
    def list_services(self, user_id: int) -> List[dict]:
        """Owner's service inventory joined with app_id/hostname"""

    # commands

    @abstractmethod
    def insert_command(self, agent_id: int, service_name: str, command_type: str) -> Command:
        pass

    @abstractmethod
    def get_command(self, command_id: int) -> Optional[Command]:
        pass

    @abstractmethod
    def pending_commands(self, agent_id: int) -> List[Command]:
        """Pending commands of one agent, oldest first"""

    @abstractmethod
    def finish_command(
        self,
        command_id: int,
        agent_id: int,
        status: str,
        error_message: Optional[str]
    ) -> Optional[Command]:
        """
        Atomically move a pending command of this agent to a terminal status,
        stamping executed_at in the same write. Returns None when no pending
        command matched.
        """

    def close(self):
        pass


class MemoryStore(Store):
    """Thread-safe in-memory Store"""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = {name: itertools.count(1) for name in ('agent', 'sample', 'command')}
        self._agents: Dict[int, Agent] = {}
        self._samples: List[MetricSample] = []
        self._services: Dict[Tuple[int, str], ServiceRecord] = {}
        self._commands: Dict[int, Command] = {}

    def create_agent(self, app_id: str, user_id: Optional[int] = None) -> Agent:
        with self._lock:
            if any(a.app_id == app_id for a in self._agents.values()):
                raise ValueError(f"app_id already provisioned: {app_id}")
            agent = Agent(
                id=next(self._ids['agent']),
                app_id=app_id,
                user_id=user_id,
                created_at=utcnow()
            )
            self._agents[agent.id] = agent
            return replace(agent)

    def get_agent(self, agent_id: int) -> Optional[Agent]:
        with self._lock:
            agent = self._agents.get(agent_id)
            return replace(agent) if agent else None

    def get_agent_by_token(self, app_id: str) -> Optional[Agent]:
        with self._lock:
            for agent in self._agents.values():
                if agent.app_id == app_id:
                    return replace(agent)
            return None

    def touch_agent(self, agent_id: int, hostname: Optional[str], os: Optional[str]) -> Agent:
        with self._lock:
            agent = self._agents[agent_id]
            agent.last_seen = utcnow()
            if hostname is not None:
                agent.hostname = hostname
            if os is not None:
                agent.os = os
            return replace(agent)

    def set_owner(self, agent_id: int, user_id: int) -> Agent:
        with self._lock:
            agent = self._agents[agent_id]
            agent.user_id = user_id
            return replace(agent)

    def list_agents(self, user_id: int) -> List[Agent]:
        with self._lock:
            agents = [replace(a) for a in self._agents.values() if a.user_id == user_id]
        never = datetime.min.replace(tzinfo=timezone.utc)
        agents.sort(key=lambda a: a.id)
        agents.sort(key=lambda a: a.last_seen or never, reverse=True)
        return agents

    def insert_sample(self, sample: MetricSample) -> MetricSample:
        with self._lock:
            stored = replace(sample, id=next(self._ids['sample']), received_at=utcnow())
            self._samples.append(stored)
            return replace(stored)

    def count_samples(self, agent_id: int) -> int:
        with self._lock:
            return sum(1 for s in self._samples if s.agent_id == agent_id)

    def latest_samples(self, user_id: int, limit: int = 50) -> List[dict]:
        with self._lock:
            rows = []
            for sample in reversed(self._samples):
                agent = self._agents.get(sample.agent_id)
                if agent is None or agent.user_id != user_id:
                    continue
                row = vars(replace(sample))
                row.update(app_id=agent.app_id, hostname=agent.hostname)
                rows.append(row)
        never = datetime.min.replace(tzinfo=timezone.utc)
        rows.sort(key=lambda r: (r['timestamp'] or never, r['id']), reverse=True)
        return rows[:limit]

    def upsert_service(self, record: ServiceRecord) -> ServiceRecord:
        with self._lock:
            stored = replace(record, last_updated=record.last_updated or utcnow())
            self._services[(record.agent_id, record.service_name)] = stored
            return replace(stored)

    def services_for_agent(self, agent_id: int) -> List[ServiceRecord]:
        with self._lock:
            records = [replace(r) for (aid, _), r in self._services.items() if aid == agent_id]
        return sorted(records, key=lambda r: r.service_name)

    def list_services(self, user_id: int) -> List[dict]:
        with self._lock:
            rows = []
            for record in self._services.values():
                agent = self._agents.get(record.agent_id)
                if agent is None or agent.user_id != user_id:
                    continue
                row = vars(replace(record))
                row.update(app_id=agent.app_id, hostname=agent.hostname)
                rows.append(row)
        return sorted(rows, key=lambda r: (r['hostname'] or '', r['service_name']))

    def insert_command(self, agent_id: int, service_name: str, command_type: str) -> Command:
        with self._lock:
            command = Command(
                id=next(self._ids['command']),
                agent_id=agent_id,
                service_name=service_name,
                command_type=command_type,
                status=PENDING,
                created_at=utcnow()
            )
            self._commands[command.id] = command
            return replace(command)

    def get_command(self, command_id: int) -> Optional[Command]:
        with self._lock:
            command = self._commands.get(command_id)
            return replace(command) if command else None

    def pending_commands(self, agent_id: int) -> List[Command]:
        with self._lock:
            pending = [
                replace(c) for c in self._commands.values()
                if c.agent_id == agent_id and c.status == PENDING
            ]
        return sorted(pending, key=lambda c: (c.created_at, c.id))

    def finish_command(
        self,
        command_id: int,
        agent_id: int,
        status: str,
        error_message: Optional[str]
    ) -> Optional[Command]:
        with self._lock:
            command = self._commands.get(command_id)
            if command is None or command.agent_id != agent_id or command.status != PENDING:
                return None
            command.status = status
            command.error_message = error_message
            command.executed_at = utcnow()
            return replace(command)
