#!/usr/bin/env python3
"""
Agent daemon: sample the host, heartbeat to the collector, run delivered commands.
"""

import os
import signal
import sys
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

import click
import requests
import yaml

from sentra_agent import host
from sentra_agent.client import CollectorClient, PendingCommand
from sentra_agent.errors import CollectorRejected, ConfigError, TransientExecutionFailure
from sentra_agent.sampler import Sampler, SystemSample, select_sampler
from sentra_agent.services import ServiceManager, select_service_manager
from sentra_log import get_logger, setup_logging

logger = get_logger(__name__)

DEFAULTS = {
    'interval': 30,
    'services_interval': 10,
    'request_timeout': 5,
    'command_timeout': 5,
    'services': None,
}
REQUIRED = ('collector_url', 'app_id')
SUPPORTED_COMMANDS = ('restart',)


def _expand(value):
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [_expand(v) for v in value]
    return value


def load_agent_config(config_path: Optional[str], overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Load and validate the agent's YAML config

    Args:
        config_path: Path to the YAML file, or None to use overrides only
        overrides: Values taking precedence over the file (None values ignored)

    Returns:
        dict: Validated configuration with defaults applied

    Raises:
        ConfigError: If the file is unreadable or a required key is missing
    """
    data: Dict[str, Any] = {}
    if config_path:
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigError(f"Config file not found: {config_path}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}")

        if not isinstance(data, dict):
            raise ConfigError("Config file must contain a mapping")
        # Accept both a flat file and one nested under "agent:"
        data = data.get('agent', data)

    config = dict(DEFAULTS)
    config.update({k: _expand(v) for k, v in data.items()})
    config.update({k: v for k, v in (overrides or {}).items() if v is not None})

    for key in REQUIRED:
        if not config.get(key):
            raise ConfigError(f"Missing required field: {key}")

    for key in ('interval', 'services_interval', 'request_timeout', 'command_timeout'):
        try:
            config[key] = float(config[key]) if key.endswith('timeout') else int(config[key])
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid value for {key}: {config[key]!r}")
        if config[key] <= 0:
            raise ConfigError(f"{key} must be positive")

    return config


def build_heartbeat_payload(sample: SystemSample, hostname: str, os_label: str) -> Dict[str, Any]:
    """Heartbeat body; identical whichever sampler produced the sample"""
    return {
        'cpu': round(sample.cpu_percent, 2) if sample.cpu_percent is not None else None,
        'ram': round(sample.memory.used_percent, 2) if sample.memory else None,
        'swap': round(sample.swap.used_percent, 2) if sample.swap else None,
        'disk': {
            'device': sample.disk.device,
            'read_kbps': round(sample.disk.read_kbps, 2),
            'write_kbps': round(sample.disk.write_kbps, 2),
        },
        'uptime': int(sample.uptime_seconds) if sample.uptime_seconds is not None else None,
        'timestamp': sample.timestamp.isoformat(),
        'hostname': hostname,
        'os': os_label,
    }


class CommandLedger:
    """
    Remembers outcomes of recently executed commands by id.

    Delivery is at-least-once, so a command is re-delivered until its result
    reaches the collector; the ledger turns a re-delivery into a re-report.
    """

    def __init__(self, capacity: int = 256):
        self.capacity = capacity
        self._results: 'OrderedDict[int, Tuple[bool, Optional[str]]]' = OrderedDict()

    def get(self, command_id: int) -> Optional[Tuple[bool, Optional[str]]]:
        return self._results.get(command_id)

    def record(self, command_id: int, success: bool, error: Optional[str]) -> None:
        self._results[command_id] = (success, error)
        self._results.move_to_end(command_id)
        while len(self._results) > self.capacity:
            self._results.popitem(last=False)

    def __contains__(self, command_id: int) -> bool:
        return command_id in self._results


class SentraAgent:
    """Main agent daemon"""

    def __init__(
        self,
        client: CollectorClient,
        sampler: Sampler,
        services: ServiceManager,
        interval: int = 30,
        services_interval: int = 10,
        hostname: Optional[str] = None,
        os_label: Optional[str] = None,
        install_signal_handlers: bool = True
    ):
        self.client = client
        self.sampler = sampler
        self.services = services
        self.interval = interval
        self.services_interval = services_interval
        self.hostname = hostname or host.hostname()
        self.os_label = os_label or host.os_label()
        self.ledger = CommandLedger()
        self.running = False
        self.cycles = 0

        if install_signal_handlers:
            signal.signal(signal.SIGTERM, self._handle_shutdown)
            signal.signal(signal.SIGINT, self._handle_shutdown)

    def _handle_shutdown(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        self.running = False

    def run(self):
        """Main daemon loop"""
        self.running = True
        click.echo(f"Starting sentra agent on {self.hostname} ({self.os_label})")
        click.echo(f"Sampler: {self.sampler.name} | Interval: {self.interval}s")

        registered = False
        try:
            while self.running:
                started = time.monotonic()
                try:
                    if not registered:
                        self.client.register(self.hostname, self.os_label)
                        registered = True
                    self.run_once()
                except CollectorRejected as e:
                    if e.is_unknown_agent:
                        logger.error("Collector does not know this app id; re-provision the agent")
                        break
                    logger.error(f"Collector rejected exchange: {e.code}: {e.message}")
                except requests.exceptions.RequestException as e:
                    logger.warning(f"Collector unreachable: {e}")
                except Exception:
                    # One bad cycle must not stop the daemon
                    logger.exception("Error in collection cycle")

                remaining = self.interval - (time.monotonic() - started)
                if self.running and remaining > 0:
                    time.sleep(remaining)
        finally:
            self._cleanup()

    def run_once(self):
        """Single sample/heartbeat/command cycle"""
        sample = self.sampler.sample()
        reply = self.client.heartbeat(build_heartbeat_payload(sample, self.hostname, self.os_label))
        push_due = self.cycles % self.services_interval == 0
        self.cycles += 1

        for command in reply.commands:
            self.handle_command(command)

        if push_due:
            self.push_services()

        logger.info(
            f"CPU: {_fmt(sample.cpu_percent)}% | "
            f"Mem: {_fmt(sample.memory.used_percent if sample.memory else None)}% | "
            f"Disk {sample.disk.device}: r {sample.disk.read_kbps:.1f} KB/s w {sample.disk.write_kbps:.1f} KB/s | "
            f"Commands: {len(reply.commands)}"
        )
        return reply

    def push_services(self) -> int:
        try:
            inventory = self.services.list_services()
        except TransientExecutionFailure as e:
            logger.warning(f"Service discovery failed: {e}")
            return 0
        if not inventory:
            return 0

        try:
            return self.client.push_services([s.to_dict() for s in inventory])
        except CollectorRejected as e:
            if e.is_unknown_agent:
                raise
            logger.warning(f"Service inventory rejected: {e.code}: {e.message}")
        except requests.exceptions.RequestException as e:
            logger.warning(f"Service inventory push failed: {e}")
        return 0

    def handle_command(self, command: PendingCommand) -> Tuple[bool, Optional[str]]:
        """Execute a delivered command once and report its outcome"""
        previous = self.ledger.get(command.id)
        if previous is not None:
            success, error = previous
            logger.info(
                "Re-reporting already executed command",
                extra={'context': {'command_id': command.id}}
            )
        else:
            success, error = self._execute(command)
            self.ledger.record(command.id, success, error)

        try:
            self.client.report_result(command.id, success, error)
        except CollectorRejected as e:
            if e.code != 'command_not_found':
                raise
            logger.warning(
                "Collector no longer knows command",
                extra={'context': {'command_id': command.id}}
            )
        return success, error

    def _execute(self, command: PendingCommand) -> Tuple[bool, Optional[str]]:
        context = {'command_id': command.id, 'type': command.type, 'service': command.service_name}
        if command.type not in SUPPORTED_COMMANDS:
            logger.warning("Unsupported command type", extra={'context': context})
            return False, f"Unsupported command type: {command.type}"

        try:
            self.services.restart(command.service_name)
        except TransientExecutionFailure as e:
            logger.error(f"Command failed: {e}", extra={'context': context})
            return False, str(e)

        logger.info("Command executed", extra={'context': context})
        return True, None

    def _cleanup(self):
        logger.info("Agent stopped")
        self.client.close()


def _fmt(value: Optional[float]) -> str:
    return f"{value:.1f}" if value is not None else '?'


@click.command()
@click.option('--config', type=click.Path(exists=True), default=None, help='Path to agent.yml')
@click.option('--app-id', default=None, help='Pre-provisioned agent token (overrides config)')
@click.option('--collector-url', default=None, help='Collector base URL (overrides config)')
@click.option('--once', is_flag=True, help='Run a single cycle and exit')
def main(config: Optional[str], app_id: Optional[str], collector_url: Optional[str], once: bool):
    """Run the sentra monitoring agent"""
    setup_logging(service='sentra-agent')

    try:
        settings = load_agent_config(config, {'app_id': app_id, 'collector_url': collector_url})
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    client = CollectorClient(
        settings['collector_url'],
        settings['app_id'],
        timeout=settings['request_timeout']
    )
    agent = SentraAgent(
        client=client,
        sampler=select_sampler(),
        services=select_service_manager(
            timeout=settings['command_timeout'],
            only=settings['services']
        ),
        interval=settings['interval'],
        services_interval=settings['services_interval'],
        install_signal_handlers=not once
    )

    if once:
        try:
            agent.client.register(agent.hostname, agent.os_label)
            reply = agent.run_once()
        except (CollectorRejected, requests.exceptions.RequestException) as e:
            click.echo(f"Cycle failed: {e}", err=True)
            sys.exit(1)
        finally:
            client.close()
        click.echo(f"Heartbeat ok, last seen {reply.last_seen}, {len(reply.commands)} command(s)")
        return

    agent.run()


if __name__ == '__main__':
    main()
