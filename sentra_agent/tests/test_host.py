"""
Unit tests for host identity helpers.
"""

import socket
from types import SimpleNamespace
from unittest.mock import patch

from sentra_agent import host


class TestOsLabel:
    def test_pretty_name_preferred(self, tmp_path):
        release = tmp_path / 'os-release'
        release.write_text('NAME="Ubuntu"\nID=ubuntu\nVERSION_ID="24.04"\nPRETTY_NAME="Ubuntu 24.04.1 LTS"\n')

        assert host.os_label('Linux', str(release)) == 'Ubuntu 24.04.1 LTS'

    def test_id_and_version(self, tmp_path):
        release = tmp_path / 'os-release'
        release.write_text('ID=rhel\nVERSION_ID="9.4"\n')

        assert host.os_label('Linux', str(release)) == 'RHEL 9.4'

    def test_missing_release_file(self, tmp_path):
        assert host.os_label('Linux', str(tmp_path / 'missing')) == 'Linux'

    def test_windows(self):
        with patch('sentra_agent.host.platform.release', return_value='10'):
            assert host.os_label('Windows') == 'Windows 10'

    def test_os_name_mapping(self):
        assert host.os_name('Darwin') == 'macOS'
        assert host.os_name('FreeBSD') == 'FreeBSD'


class TestPrimaryIp:
    def test_first_non_loopback_ipv4(self):
        interfaces = {
            'lo': [SimpleNamespace(family=socket.AF_INET, address='127.0.0.1')],
            'eth0': [
                SimpleNamespace(family=socket.AF_INET6, address='fe80::1'),
                SimpleNamespace(family=socket.AF_INET, address='10.0.0.12'),
            ],
        }
        with patch('sentra_agent.host.psutil.net_if_addrs', return_value=interfaces):
            assert host.primary_ip() == '10.0.0.12'

    def test_loopback_fallback(self):
        with patch('sentra_agent.host.psutil.net_if_addrs', return_value={}):
            assert host.primary_ip() == '127.0.0.1'
