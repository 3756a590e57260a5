"""
Tests for collector settings and the collector CLI.
"""

from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from sentra_hub.__main__ import cli
from sentra_hub.config import CollectorSettings, build_store
from sentra_hub.db import PostgresStore
from sentra_hub.store import MemoryStore


class TestCollectorSettings:
    def test_defaults(self):
        settings = CollectorSettings.from_env({})

        assert settings.store == 'postgres'
        assert settings.db_url is None
        assert settings.allow_unclaimed_commands is True
        assert settings.status_limit == 50
        assert settings.statement_timeout_ms == 5000

    def test_from_environment(self):
        settings = CollectorSettings.from_env({
            'SENTRA_DB_URL': 'postgresql://localhost/sentra',
            'SENTRA_STORE': 'Memory',
            'SENTRA_ALLOW_UNCLAIMED_COMMANDS': 'false',
            'SENTRA_STATUS_LIMIT': '10',
            'SENTRA_LOG_LEVEL': 'DEBUG',
        })

        assert settings.store == 'memory'
        assert settings.allow_unclaimed_commands is False
        assert settings.status_limit == 10
        assert settings.log_level == 'DEBUG'

    def test_build_memory_store(self):
        assert isinstance(build_store(CollectorSettings(store='memory')), MemoryStore)

    def test_postgres_requires_url(self):
        with pytest.raises(ValueError, match='SENTRA_DB_URL'):
            build_store(CollectorSettings(store='postgres'))

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match='Unknown SENTRA_STORE'):
            build_store(CollectorSettings(store='sqlite'))

    def test_postgres_store(self):
        with patch('sentra_hub.config.PostgresStore') as mock_store:
            build_store(CollectorSettings(db_url='postgresql://localhost/sentra', statement_timeout_ms=800))

        mock_store.assert_called_once_with('postgresql://localhost/sentra', statement_timeout_ms=800)


class TestProvisionCommand:
    @pytest.fixture(autouse=True)
    def quiet_logging(self):
        with patch('sentra_hub.__main__.setup_logging'):
            yield

    def test_generates_token(self):
        runner = CliRunner()

        result = runner.invoke(cli, ['provision'], env={'SENTRA_STORE': 'memory'})

        assert result.exit_code == 0
        assert 'provisioned' in result.output
        assert 'App ID: ' in result.output

    def test_given_token_and_owner(self):
        runner = CliRunner()

        result = runner.invoke(cli, ['provision', 'tok-abc', '--owner', '4'], env={'SENTRA_STORE': 'memory'})

        assert result.exit_code == 0
        assert 'App ID: tok-abc' in result.output

    def test_missing_database_url(self):
        runner = CliRunner()

        result = runner.invoke(cli, ['provision'], env={'SENTRA_STORE': 'postgres', 'SENTRA_DB_URL': ''})

        assert result.exit_code == 1
        assert 'SENTRA_DB_URL' in result.output


class TestInitDbCommand:
    def test_memory_store_needs_no_schema(self):
        runner = CliRunner()

        result = runner.invoke(cli, ['init-db'], env={'SENTRA_STORE': 'memory'})

        assert result.exit_code == 0
        assert 'nothing to initialise' in result.output

    def test_applies_schema(self):
        runner = CliRunner()
        store = MagicMock(spec=PostgresStore)

        with patch('sentra_hub.__main__.build_store', return_value=store):
            result = runner.invoke(cli, ['init-db'])

        assert result.exit_code == 0
        store.init_schema.assert_called_once()
        store.close.assert_called_once()


class TestServeCommand:
    def test_runs_server(self):
        runner = CliRunner()

        with patch('sentra_hub.__main__.run_server') as mock_run:
            result = runner.invoke(cli, ['serve', '--port', '5005'])

        assert result.exit_code == 0
        mock_run.assert_called_once_with(host_addr='0.0.0.0', port=5005)
