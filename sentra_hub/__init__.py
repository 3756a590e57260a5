"""
sentra_hub: central collector

Receives agent heartbeats, keeps the agent registry, service inventory and
command queue, and hands pending commands back to agents on each heartbeat.
"""

from sentra_hub.commands import CommandQueue
from sentra_hub.heartbeat import HeartbeatProtocol, HeartbeatReport
from sentra_hub.inventory import ServiceInventory
from sentra_hub.registry import AgentRegistry
from sentra_hub.store import MemoryStore, Store

__all__ = [
    'AgentRegistry', 'CommandQueue', 'HeartbeatProtocol', 'HeartbeatReport',
    'MemoryStore', 'ServiceInventory', 'Store',
]
__version__ = '1.0.0'
