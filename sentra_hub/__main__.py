"""
Collector CLI: python -m sentra_hub
"""
import sys
from typing import Optional

import click

from sentra_hub.api import run_server
from sentra_hub.config import CollectorSettings, build_store
from sentra_hub.db import PostgresStore
from sentra_hub.errors import MalformedInput
from sentra_hub.registry import AgentRegistry
from sentra_log import setup_logging


@click.group()
@click.version_option(version='1.0.0')
def cli():
    """Sentra collector"""
    pass


@cli.command()
@click.option('--host', default='0.0.0.0', help='Host to bind to')
@click.option('--port', default=4001, help='Port to bind to')
def serve(host: str, port: int):
    """Run the collector HTTP service"""
    click.echo(f'Starting Sentra collector on {host}:{port}')
    click.echo(f'API documentation at http://localhost:{port}/docs')
    run_server(host_addr=host, port=port)


@cli.command('init-db')
def init_db():
    """Create collector tables in SENTRA_DB_URL"""
    settings = CollectorSettings.from_env()
    try:
        store = build_store(settings)
    except ValueError as e:
        click.echo(click.style(f'❌ {e}', fg='red'), err=True)
        sys.exit(1)

    if not isinstance(store, PostgresStore):
        click.echo('Store is not PostgreSQL; nothing to initialise')
        return

    try:
        store.init_schema()
    finally:
        store.close()
    click.echo(click.style('✓ Schema applied', fg='green'))


@cli.command()
@click.argument('token', required=False)
@click.option('--owner', type=int, default=None, help='Owner id to bind immediately')
def provision(token: Optional[str], owner: Optional[int]):
    """Pre-register an agent token (generated when omitted)"""
    settings = CollectorSettings.from_env()
    setup_logging(level=settings.log_level, service='sentra-collector')
    try:
        store = build_store(settings)
    except ValueError as e:
        click.echo(click.style(f'❌ {e}', fg='red'), err=True)
        sys.exit(1)

    try:
        agent = AgentRegistry(store).provision(token, owner)
    except MalformedInput as e:
        click.echo(click.style(f'❌ {e.message}', fg='red'), err=True)
        sys.exit(1)
    finally:
        store.close()

    click.echo(click.style(f'✓ Agent {agent.id} provisioned', fg='green'))
    click.echo(f'App ID: {agent.app_id}')


def main():
    cli()


if __name__ == '__main__':
    main()
