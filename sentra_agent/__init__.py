"""
sentra_agent: host-side telemetry agent

Samples CPU, memory/swap and disk throughput, reports them to the collector
on each heartbeat, and executes the commands the collector hands back.
"""

from sentra_agent.agent import SentraAgent
from sentra_agent.client import CollectorClient
from sentra_agent.sampler import ProcSampler, PsutilSampler, Sampler, select_sampler

__all__ = ['SentraAgent', 'CollectorClient', 'Sampler', 'ProcSampler', 'PsutilSampler', 'select_sampler']
__version__ = '1.0.0'
