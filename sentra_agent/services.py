"""
Local service inventory and restart execution.

Commands are run as argument lists, never through a shell, and bounded by a
wall-clock timeout. Failures surface as TransientExecutionFailure so the agent
can report them back as a failed command result.
"""

import json
import re
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Iterable, List, Optional

from sentra_agent.errors import TransientExecutionFailure
from sentra_log import get_logger

logger = get_logger(__name__)

COMMAND_TIMEOUT = 5  # seconds
_SERVICE_NAME_RE = re.compile(r'^[A-Za-z0-9@._:\-]+$')


@dataclass
class ServiceInfo:
    """One observed service"""
    name: str
    display_name: Optional[str]
    status: Optional[str]

    def to_dict(self) -> dict:
        return asdict(self)


def validate_service_name(name: str) -> str:
    if not name or len(name) > 256 or not _SERVICE_NAME_RE.match(name):
        raise TransientExecutionFailure(f"Refusing unsafe service name: {name!r}")
    return name


def run_command(args: List[str], timeout: float = COMMAND_TIMEOUT) -> str:
    """Run a command and return stdout, raising TransientExecutionFailure on error"""
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise TransientExecutionFailure(f"{args[0]} timed out after {timeout}s")
    except OSError as e:
        raise TransientExecutionFailure(f"{args[0]} could not be started: {e}")

    if result.returncode != 0:
        detail = (result.stderr or result.stdout or '').strip()[:500]
        raise TransientExecutionFailure(
            f"{args[0]} exited with {result.returncode}" + (f": {detail}" if detail else '')
        )
    return result.stdout


class ServiceManager(ABC):
    """Lists and restarts services on the local host"""

    def __init__(self, timeout: float = COMMAND_TIMEOUT, only: Optional[Iterable[str]] = None):
        self.timeout = timeout
        self.only = set(only) if only else None

    def list_services(self) -> List[ServiceInfo]:
        services = self._discover()
        if self.only is not None:
            services = [s for s in services if s.name in self.only]
        return services

    @abstractmethod
    def _discover(self) -> List[ServiceInfo]:
        pass

    @abstractmethod
    def restart(self, name: str) -> None:
        """Restart a service, raising TransientExecutionFailure on failure"""


class SystemdServices(ServiceManager):
    """systemd units via systemctl"""

    def _discover(self) -> List[ServiceInfo]:
        output = run_command(
            ['systemctl', 'list-units', '--type=service', '--all', '--no-pager', '--no-legend'],
            timeout=self.timeout
        )
        return parse_systemctl_units(output)

    def restart(self, name: str) -> None:
        run_command(['systemctl', 'restart', validate_service_name(name)], timeout=self.timeout)


class WindowsServices(ServiceManager):
    """Windows services via PowerShell"""

    def _discover(self) -> List[ServiceInfo]:
        output = run_command(
            [
                'powershell', '-NoProfile', '-Command',
                'Get-Service | Select-Object Name, DisplayName, '
                '@{Name="Status";Expression={$_.Status.ToString()}} | ConvertTo-Json'
            ],
            timeout=self.timeout
        )
        return parse_powershell_services(output)

    def restart(self, name: str) -> None:
        run_command(
            ['powershell', '-NoProfile', '-Command',
             f"Restart-Service -Name '{validate_service_name(name)}' -ErrorAction Stop"],
            timeout=self.timeout
        )


def parse_systemctl_units(output: str) -> List[ServiceInfo]:
    """
    Parse `systemctl list-units --no-legend` output.

    Columns are UNIT LOAD ACTIVE SUB DESCRIPTION; failed units carry a
    leading bullet. Status is the SUB state (running, exited, dead, ...).
    """
    services = []
    for line in output.splitlines():
        parts = line.replace('●', ' ').split()
        if len(parts) < 4:
            continue
        name, _load, active, sub = parts[:4]
        description = ' '.join(parts[4:]) or None
        services.append(ServiceInfo(
            name=name,
            display_name=description,
            status=sub or active
        ))
    return services


def parse_powershell_services(output: str) -> List[ServiceInfo]:
    if not output.strip():
        return []
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise TransientExecutionFailure(f"Unparsable Get-Service output: {e}")

    # ConvertTo-Json emits a bare object for a single service
    if isinstance(data, dict):
        data = [data]

    return [
        ServiceInfo(
            name=item.get('Name'),
            display_name=item.get('DisplayName'),
            status=str(item['Status']).lower() if item.get('Status') is not None else None
        )
        for item in data
        if isinstance(item, dict) and item.get('Name')
    ]


def select_service_manager(
    platform: Optional[str] = None,
    timeout: float = COMMAND_TIMEOUT,
    only: Optional[Iterable[str]] = None
) -> ServiceManager:
    platform = platform or sys.platform
    if platform.startswith('win'):
        return WindowsServices(timeout=timeout, only=only)
    return SystemdServices(timeout=timeout, only=only)
