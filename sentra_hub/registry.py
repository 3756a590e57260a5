"""
Agent Identity Registry: maps pre-provisioned tokens to agent records.
"""

import secrets
from typing import List, Optional

from sentra_hub.errors import AlreadyOwned, MalformedInput, UnknownAgent
from sentra_hub.models import Agent
from sentra_hub.store import Store
from sentra_log import get_logger

logger = get_logger(__name__)


def _present(value: Optional[str]) -> Optional[str]:
    """Empty or whitespace-only strings count as absent"""
    if value is None:
        return None
    value = value.strip()
    return value or None


class AgentRegistry:
    """Owns the agent's mutable identity fields (hostname, os, last_seen, owner)"""

    def __init__(self, store: Store):
        self.store = store

    def lookup(self, token: Optional[str]) -> Agent:
        if not token:
            raise UnknownAgent("Agent token required")
        agent = self.store.get_agent_by_token(token)
        if agent is None:
            raise UnknownAgent("Unknown AppID. Please register this agent first.")
        return agent

    def touch(self, token: str, hostname: Optional[str] = None, os: Optional[str] = None) -> Agent:
        """Record that the agent was seen; never blanks hostname/os"""
        agent = self.lookup(token)
        return self.store.touch_agent(agent.id, _present(hostname), _present(os))

    def claim(self, token: Optional[str], owner_id: int) -> Agent:
        """
        Bind a provisioned agent to an owner.

        Re-claiming by the current owner is a no-op; claiming an agent owned
        by someone else raises AlreadyOwned. Unknown tokens are rejected,
        there is no self-registration.
        """
        token = _present(token)
        if not token:
            raise MalformedInput("app_id required")

        agent = self.lookup(token)
        if agent.user_id == owner_id:
            return agent
        if agent.user_id is not None:
            logger.warning(
                "Claim refused, agent already owned",
                extra={'context': {'agent_id': agent.id, 'owner_id': owner_id}}
            )
            raise AlreadyOwned("App ID is registered to another account")

        claimed = self.store.set_owner(agent.id, owner_id)
        logger.info("Agent claimed", extra={'context': {'agent_id': agent.id, 'owner_id': owner_id}})
        return claimed

    def agents_for_owner(self, owner_id: int) -> List[Agent]:
        return self.store.list_agents(owner_id)

    def provision(self, token: Optional[str] = None, owner_id: Optional[int] = None) -> Agent:
        """Operator step: create an agent record for a new token"""
        token = _present(token) or secrets.token_urlsafe(24)
        if self.store.get_agent_by_token(token) is not None:
            raise MalformedInput(f"Token already provisioned: {token}")
        agent = self.store.create_agent(token, owner_id)
        logger.info("Agent provisioned", extra={'context': {'agent_id': agent.id}})
        return agent
