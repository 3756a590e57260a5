"""
Tests for the store backends.

MemoryStore is exercised directly; PostgresStore runs against a mocked
connection pool to check transactions and the conditional command update.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from sentra_hub.db import PostgresStore
from sentra_hub.models import DONE, PENDING, MetricSample, ServiceRecord
from sentra_hub.store import MemoryStore

NOW = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


class TestMemoryStore:
    def test_returns_copies(self):
        store = MemoryStore()
        agent = store.create_agent('tok-1')

        agent.hostname = 'mutated'

        assert store.get_agent(agent.id).hostname is None

    def test_duplicate_token(self):
        store = MemoryStore()
        store.create_agent('tok-1')

        with pytest.raises(ValueError):
            store.create_agent('tok-1')

    def test_touch_coalesces(self):
        store = MemoryStore()
        agent = store.create_agent('tok-1')
        store.touch_agent(agent.id, 'web-1', 'Linux')

        touched = store.touch_agent(agent.id, None, None)

        assert touched.hostname == 'web-1'
        assert touched.os == 'Linux'

    def test_sample_gets_id_and_received_at(self):
        store = MemoryStore()
        agent = store.create_agent('tok-1')

        stored = store.insert_sample(MetricSample(agent_id=agent.id, cpu=1.0, ram=2.0, uptime=3, timestamp=NOW))

        assert stored.id == 1
        assert stored.received_at is not None
        assert store.count_samples(agent.id) == 1

    def test_upsert_keeps_one_row_per_key(self):
        store = MemoryStore()
        agent = store.create_agent('tok-1')
        for status in ('running', 'exited'):
            store.upsert_service(ServiceRecord(agent_id=agent.id, service_name='nginx', status=status))

        records = store.services_for_agent(agent.id)

        assert len(records) == 1
        assert records[0].status == 'exited'
        assert records[0].last_updated is not None

    def test_finish_only_from_pending(self):
        store = MemoryStore()
        agent = store.create_agent('tok-1')
        command = store.insert_command(agent.id, 'nginx', 'restart')

        finished = store.finish_command(command.id, agent.id, DONE, None)

        assert finished.status == DONE
        assert finished.executed_at is not None
        assert store.finish_command(command.id, agent.id, DONE, None) is None
        assert store.pending_commands(agent.id) == []

    def test_finish_other_agents_command(self):
        store = MemoryStore()
        owner = store.create_agent('tok-1')
        other = store.create_agent('tok-2')
        command = store.insert_command(owner.id, 'nginx', 'restart')

        assert store.finish_command(command.id, other.id, DONE, None) is None
        assert store.get_command(command.id).status == PENDING


@pytest.fixture
def pg():
    with patch('sentra_hub.db.ThreadedConnectionPool') as mock_pool_cls:
        pool = mock_pool_cls.return_value
        conn = MagicMock()
        pool.getconn.return_value = conn
        cursor = conn.cursor.return_value.__enter__.return_value

        store = PostgresStore('postgresql://sentra@localhost/sentra', statement_timeout_ms=2500)
        yield store, mock_pool_cls, pool, conn, cursor


def command_row(**overrides):
    row = {
        'id': 7,
        'agent_id': 1,
        'service_name': 'nginx',
        'command_type': 'restart',
        'status': DONE,
        'error_message': None,
        'created_at': NOW,
        'executed_at': NOW,
    }
    row.update(overrides)
    return row


class TestPostgresStore:
    def test_pool_configuration(self, pg):
        _, mock_pool_cls, _, _, _ = pg

        args, kwargs = mock_pool_cls.call_args
        assert args[2] == 'postgresql://sentra@localhost/sentra'
        assert kwargs['options'] == '-c statement_timeout=2500'

    def test_commits_and_returns_connection(self, pg):
        store, _, pool, conn, cursor = pg
        cursor.fetchone.return_value = None

        assert store.get_agent_by_token('missing') is None
        conn.commit.assert_called_once()
        pool.putconn.assert_called_once_with(conn)

    def test_rolls_back_on_error(self, pg):
        store, _, pool, conn, cursor = pg
        cursor.execute.side_effect = RuntimeError('connection lost')

        with pytest.raises(RuntimeError):
            store.count_samples(1)

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        pool.putconn.assert_called_once_with(conn)

    def test_finish_command_is_conditional(self, pg):
        store, _, _, _, cursor = pg
        cursor.fetchone.return_value = command_row()

        command = store.finish_command(7, 1, DONE, None)

        sql, params = cursor.execute.call_args[0]
        assert "status = 'pending'" in sql
        assert 'executed_at = NOW()' in sql
        assert params == (DONE, None, 7, 1)
        assert command.status == DONE

    def test_finish_command_no_match(self, pg):
        store, _, _, _, cursor = pg
        cursor.fetchone.return_value = None

        assert store.finish_command(7, 1, DONE, None) is None

    def test_touch_uses_coalesce(self, pg):
        store, _, _, _, cursor = pg
        cursor.fetchone.return_value = {
            'id': 1, 'app_id': 'tok-1', 'user_id': None, 'hostname': 'web-1',
            'os': 'Linux', 'last_seen': NOW, 'created_at': NOW,
        }

        agent = store.touch_agent(1, None, None)

        sql, params = cursor.execute.call_args[0]
        assert 'COALESCE(%s, hostname)' in sql
        assert params == (None, None, 1)
        assert agent.hostname == 'web-1'

    def test_upsert_on_conflict(self, pg):
        store, _, _, _, cursor = pg
        cursor.fetchone.return_value = {
            'agent_id': 1, 'service_name': 'nginx', 'display_name': None,
            'status': 'running', 'last_updated': NOW,
        }

        store.upsert_service(ServiceRecord(agent_id=1, service_name='nginx', status='running'))

        sql = cursor.execute.call_args[0][0]
        assert 'ON CONFLICT (agent_id, service_name) DO UPDATE' in sql

    def test_init_schema_runs_schema_file(self, pg):
        store, _, _, _, cursor = pg

        store.init_schema()

        sql = cursor.execute.call_args[0][0]
        assert 'CREATE TABLE IF NOT EXISTS agent_service_commands' in sql

    def test_close(self, pg):
        store, _, pool, _, _ = pg

        store.close()

        pool.closeall.assert_called_once()
