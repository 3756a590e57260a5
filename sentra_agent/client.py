"""
HTTP client for the collector's agent-facing exchanges.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from sentra_agent.errors import CollectorRejected
from sentra_log import get_logger

logger = get_logger(__name__)

APP_ID_HEADER = 'X-APP-ID'
DEFAULT_TIMEOUT = 5  # seconds per exchange


@dataclass
class PendingCommand:
    """A command delivered on a heartbeat"""
    id: int
    type: str
    service_name: str


@dataclass
class HeartbeatReply:
    last_seen: Optional[str]
    commands: List[PendingCommand]


class CollectorClient:
    """Talks to the collector on behalf of one agent token"""

    def __init__(
        self,
        base_url: str,
        app_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        user_agent: str = 'sentra-agent'
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or self._build_session()
        self.session.headers.update({
            APP_ID_HEADER: app_id,
            'User-Agent': user_agent
        })

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        # Only connection failures are retried; a POST that reached the
        # collector may already be stored
        retry_strategy = Retry(
            total=2,
            connect=2,
            read=0,
            status=0,
            backoff_factor=0.5,
        )
        adapter = HTTPAdapter(pool_connections=1, pool_maxsize=1, max_retries=retry_strategy)
        session.mount('http://', adapter)
        session.mount('https://', adapter)
        return session

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self.session.post(
            f"{self.base_url}{path}",
            json=payload,
            timeout=self.timeout
        )

        if 400 <= response.status_code < 500:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise CollectorRejected(
                code=body.get('code', 'http_error'),
                message=body.get('error', response.text[:200]),
                status_code=response.status_code
            )

        response.raise_for_status()
        return response.json()

    def register(self, hostname: Optional[str], os_label: Optional[str]) -> bool:
        body = self._post('/api/auth/register', {'hostname': hostname, 'os': os_label})
        return bool(body.get('registered'))

    def heartbeat(self, payload: Dict[str, Any]) -> HeartbeatReply:
        body = self._post('/api/status/update', payload)
        commands = [
            PendingCommand(
                id=int(c['id']),
                type=c.get('type', 'restart'),
                service_name=c.get('service_name', '')
            )
            for c in body.get('commands', [])
        ]
        return HeartbeatReply(last_seen=body.get('last_seen'), commands=commands)

    def push_services(self, services: List[Dict[str, Any]], timestamp: Optional[str] = None) -> int:
        body = self._post('/api/status/services', {'services': services, 'timestamp': timestamp})
        return int(body.get('count', 0))

    def report_result(self, command_id: int, success: bool, error: Optional[str] = None) -> bool:
        """Report a command outcome; returns whether the collector changed its state"""
        body = self._post(
            '/api/status/service-command-result',
            {'id': command_id, 'success': success, 'error': error}
        )
        return bool(body.get('updated'))

    def close(self):
        self.session.close()
