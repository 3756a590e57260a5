"""
Host identity: hostname, OS label and primary address.
"""

import platform
import socket
from pathlib import Path
from typing import Dict, Optional

import psutil

OS_NAMES = {'Linux': 'Linux', 'Darwin': 'macOS', 'Windows': 'Windows'}


def hostname() -> str:
    return socket.gethostname()


def read_os_release(path: str = '/etc/os-release') -> Dict[str, str]:
    """Parse an os-release file into a dict (empty if unreadable)"""
    values = {}
    try:
        content = Path(path).read_text()
    except OSError:
        return values

    for line in content.splitlines():
        if '=' not in line or line.startswith('#'):
            continue
        key, _, value = line.partition('=')
        values[key.strip()] = value.strip().strip('"')
    return values


def os_name(system: Optional[str] = None) -> str:
    system = system or platform.system()
    return OS_NAMES.get(system, system or 'Unknown')


def os_label(system: Optional[str] = None, os_release_path: str = '/etc/os-release') -> str:
    """
    Human-readable OS label, e.g. "Ubuntu 24.04.1 LTS" or "Windows 10".

    On Linux this prefers PRETTY_NAME, then "ID VERSION_ID", from os-release.
    """
    system = system or platform.system()
    name = os_name(system)

    if system == 'Linux':
        release = read_os_release(os_release_path)
        if release.get('PRETTY_NAME'):
            return release['PRETTY_NAME']
        if release.get('ID') and release.get('VERSION_ID'):
            return f"{release['ID'].upper()} {release['VERSION_ID']}"
        return name

    return f"{name} {platform.release()}".strip()


def primary_ip() -> str:
    """First non-loopback IPv4 address, or 127.0.0.1"""
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, psutil.Error):
        return '127.0.0.1'

    for addrs in interfaces.values():
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith('127.'):
                return addr.address
    return '127.0.0.1'
