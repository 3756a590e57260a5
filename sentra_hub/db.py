"""
PostgreSQL-backed Store with a thread-safe connection pool.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from sentra_hub.models import Agent, Command, MetricSample, ServiceRecord
from sentra_hub.store import Store

SCHEMA_PATH = Path(__file__).parent / 'schema.sql'

AGENT_COLUMNS = 'id, app_id, user_id, hostname, os, last_seen, created_at'
COMMAND_COLUMNS = (
    'id, agent_id, service_name, command_type, status, error_message, created_at, executed_at'
)
SAMPLE_COLUMNS = (
    'id, agent_id, cpu, ram, uptime, timestamp, swap, '
    'disk_device, disk_read_kbps, disk_write_kbps, received_at'
)


class PostgresStore(Store):
    """Store over PostgreSQL; each method is one transaction"""

    def __init__(
        self,
        database_url: str,
        min_connections: int = 1,
        max_connections: int = 10,
        statement_timeout_ms: int = 5000
    ):
        self.pool = ThreadedConnectionPool(
            min_connections,
            max_connections,
            database_url,
            cursor_factory=RealDictCursor,
            options=f'-c statement_timeout={int(statement_timeout_ms)}'
        )

    @contextmanager
    def get_connection(self):
        """Get a connection from the pool, committing on success"""
        conn = self.pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    def _fetchone(self, sql: str, params=()) -> Optional[dict]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()

    def _fetchall(self, sql: str, params=()) -> List[dict]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()

    def init_schema(self) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_PATH.read_text())

    # agents

    def create_agent(self, app_id: str, user_id: Optional[int] = None) -> Agent:
        row = self._fetchone(
            f"INSERT INTO agents (app_id, user_id) VALUES (%s, %s) RETURNING {AGENT_COLUMNS}",
            (app_id, user_id)
        )
        return Agent(**row)

    def get_agent(self, agent_id: int) -> Optional[Agent]:
        row = self._fetchone(f"SELECT {AGENT_COLUMNS} FROM agents WHERE id = %s", (agent_id,))
        return Agent(**row) if row else None

    def get_agent_by_token(self, app_id: str) -> Optional[Agent]:
        row = self._fetchone(
            f"SELECT {AGENT_COLUMNS} FROM agents WHERE app_id = %s LIMIT 1",
            (app_id,)
        )
        return Agent(**row) if row else None

    def touch_agent(self, agent_id: int, hostname: Optional[str], os: Optional[str]) -> Agent:
        row = self._fetchone(
            f"""
            UPDATE agents
               SET last_seen = NOW(),
                   hostname = COALESCE(%s, hostname),
                   os = COALESCE(%s, os)
             WHERE id = %s
            RETURNING {AGENT_COLUMNS}
            """,
            (hostname, os, agent_id)
        )
        return Agent(**row)

    def set_owner(self, agent_id: int, user_id: int) -> Agent:
        row = self._fetchone(
            f"UPDATE agents SET user_id = %s WHERE id = %s RETURNING {AGENT_COLUMNS}",
            (user_id, agent_id)
        )
        return Agent(**row)

    def list_agents(self, user_id: int) -> List[Agent]:
        rows = self._fetchall(
            f"""
            SELECT {AGENT_COLUMNS}
              FROM agents
             WHERE user_id = %s
             ORDER BY last_seen DESC NULLS LAST, id ASC
            """,
            (user_id,)
        )
        return [Agent(**row) for row in rows]

    # samples

    def insert_sample(self, sample: MetricSample) -> MetricSample:
        row = self._fetchone(
            f"""
            INSERT INTO agent_status (
                agent_id, cpu, ram, uptime, timestamp, swap,
                disk_device, disk_read_kbps, disk_write_kbps
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s, %s
            )
            RETURNING {SAMPLE_COLUMNS}
            """,
            (
                sample.agent_id, sample.cpu, sample.ram, sample.uptime, sample.timestamp,
                sample.swap, sample.disk_device, sample.disk_read_kbps, sample.disk_write_kbps
            )
        )
        return MetricSample(**row)

    def count_samples(self, agent_id: int) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS n FROM agent_status WHERE agent_id = %s",
            (agent_id,)
        )
        return row['n']

    def latest_samples(self, user_id: int, limit: int = 50) -> List[dict]:
        return self._fetchall(
            """
            SELECT s.id, s.agent_id, s.cpu, s.ram, s.uptime, s.timestamp, s.swap,
                   s.disk_device, s.disk_read_kbps, s.disk_write_kbps, s.received_at,
                   a.app_id, a.hostname
              FROM agent_status s
              JOIN agents a ON a.id = s.agent_id
             WHERE a.user_id = %s
             ORDER BY s.timestamp DESC NULLS LAST, s.id DESC
             LIMIT %s
            """,
            (user_id, limit)
        )

    # services

    def upsert_service(self, record: ServiceRecord) -> ServiceRecord:
        row = self._fetchone(
            """
            INSERT INTO agent_services (agent_id, service_name, display_name, status, last_updated)
            VALUES (%s, %s, %s, %s, COALESCE(%s, NOW()))
            ON CONFLICT (agent_id, service_name) DO UPDATE
               SET display_name = EXCLUDED.display_name,
                   status = EXCLUDED.status,
                   last_updated = EXCLUDED.last_updated
            RETURNING agent_id, service_name, display_name, status, last_updated
            """,
            (record.agent_id, record.service_name, record.display_name,
             record.status, record.last_updated)
        )
        return ServiceRecord(**row)

    def services_for_agent(self, agent_id: int) -> List[ServiceRecord]:
        rows = self._fetchall(
            """
            SELECT agent_id, service_name, display_name, status, last_updated
              FROM agent_services
             WHERE agent_id = %s
             ORDER BY service_name
            """,
            (agent_id,)
        )
        return [ServiceRecord(**row) for row in rows]

    def list_services(self, user_id: int) -> List[dict]:
        return self._fetchall(
            """
            SELECT sv.agent_id, sv.service_name, sv.display_name, sv.status, sv.last_updated,
                   a.app_id, a.hostname
              FROM agent_services sv
              JOIN agents a ON a.id = sv.agent_id
             WHERE a.user_id = %s
             ORDER BY a.hostname, sv.service_name
            """,
            (user_id,)
        )

    # commands

    def insert_command(self, agent_id: int, service_name: str, command_type: str) -> Command:
        row = self._fetchone(
            f"""
            INSERT INTO agent_service_commands (agent_id, service_name, command_type, status)
            VALUES (%s, %s, %s, 'pending')
            RETURNING {COMMAND_COLUMNS}
            """,
            (agent_id, service_name, command_type)
        )
        return Command(**row)

    def get_command(self, command_id: int) -> Optional[Command]:
        row = self._fetchone(
            f"SELECT {COMMAND_COLUMNS} FROM agent_service_commands WHERE id = %s",
            (command_id,)
        )
        return Command(**row) if row else None

    def pending_commands(self, agent_id: int) -> List[Command]:
        rows = self._fetchall(
            f"""
            SELECT {COMMAND_COLUMNS}
              FROM agent_service_commands
             WHERE agent_id = %s AND status = 'pending'
             ORDER BY created_at ASC, id ASC
            """,
            (agent_id,)
        )
        return [Command(**row) for row in rows]

    def finish_command(
        self,
        command_id: int,
        agent_id: int,
        status: str,
        error_message: Optional[str]
    ) -> Optional[Command]:
        row = self._fetchone(
            f"""
            UPDATE agent_service_commands
               SET status = %s, error_message = %s, executed_at = NOW()
             WHERE id = %s AND agent_id = %s AND status = 'pending'
            RETURNING {COMMAND_COLUMNS}
            """,
            (status, error_message, command_id, agent_id)
        )
        return Command(**row) if row else None

    def close(self):
        """Close all connections in the pool"""
        self.pool.closeall()
