"""
Command Queue: per-agent FIFO of pending remote operations.
"""

from typing import List, Optional, Tuple

from sentra_hub.errors import CommandNotFound, MalformedInput, Unauthorized
from sentra_hub.models import COMMAND_TYPES, DONE, FAILED, RESTART, Agent, Command
from sentra_hub.store import Store
from sentra_log import get_logger

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 2000


class CommandQueue:
    """
    Enqueue side is operator-facing and owner-checked; resolve side is driven
    by the agent's result report. Nothing here is ever deleted.
    """

    def __init__(self, store: Store, allow_unclaimed: bool = True):
        self.store = store
        # Legacy allowance: anyone authenticated may command an unclaimed agent
        self.allow_unclaimed = allow_unclaimed

    def _may_command(self, agent: Optional[Agent], owner_id: int) -> bool:
        if agent is None:
            return False
        if agent.user_id is None:
            return self.allow_unclaimed
        return agent.user_id == owner_id

    def enqueue(
        self,
        agent_id: int,
        service_name: str,
        owner_id: int,
        command_type: str = RESTART
    ) -> Command:
        """Insert a new pending command; duplicates are kept as separate entries"""
        service_name = (service_name or '').strip()
        if not service_name:
            raise MalformedInput("agentId and serviceName required")
        if command_type not in COMMAND_TYPES:
            raise MalformedInput(f"Unsupported command type: {command_type}")

        agent = self.store.get_agent(agent_id)
        if not self._may_command(agent, owner_id):
            raise Unauthorized("No permission for this agent")

        command = self.store.insert_command(agent_id, service_name, command_type)
        logger.info(
            "Command enqueued",
            extra={'context': {
                'command_id': command.id,
                'agent_id': agent_id,
                'service': service_name,
                'type': command_type,
            }}
        )
        return command

    def pending(self, agent_id: int) -> List[Command]:
        """Pending commands in enqueue order"""
        return self.store.pending_commands(agent_id)

    def resolve(
        self,
        agent_id: int,
        command_id: int,
        success: bool,
        error: Optional[str] = None
    ) -> Tuple[Command, bool]:
        """
        Record the agent's outcome for a command.

        Returns (command, changed). A repeated report for an already terminal
        command leaves it untouched and returns changed=False. Ids that do not
        exist or belong to another agent raise CommandNotFound.
        """
        status = DONE if success else FAILED
        message = error[:MAX_ERROR_LENGTH] if error else None

        command = self.store.finish_command(command_id, agent_id, status, message)
        if command is not None:
            logger.info(
                "Command resolved",
                extra={'context': {'command_id': command_id, 'agent_id': agent_id, 'status': status}}
            )
            return command, True

        existing = self.store.get_command(command_id)
        if existing is None or existing.agent_id != agent_id:
            logger.warning(
                "Result reported for unknown command",
                extra={'context': {'command_id': command_id, 'agent_id': agent_id}}
            )
            raise CommandNotFound(f"No command {command_id} for this agent")

        return existing, False

    def get(self, command_id: int, owner_id: int) -> Command:
        """Owner-scoped direct lookup"""
        command = self.store.get_command(command_id)
        if command is None:
            raise CommandNotFound(f"No command {command_id}")
        agent = self.store.get_agent(command.agent_id)
        if agent is None or agent.user_id != owner_id:
            raise CommandNotFound(f"No command {command_id}")
        return command
