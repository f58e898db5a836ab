"""Main CLI entry point for the AWS Service Broker."""

import click
import json
import sys
from dataclasses import asdict
from pathlib import Path

import yaml
from tabulate import tabulate

from aws_service_broker import __version__
from aws_service_broker.config import Config
from aws_service_broker.logging_config import setup_logging
from aws_service_broker.providers.aws_provider import SessionFactory, create_template_source
from aws_service_broker.services.catalog import CatalogRefresher
from aws_service_broker.storage.factory import StorageFactory
from aws_service_broker.utils.cache import Cache


def create_refresher(config: Config) -> CatalogRefresher:
    """Build a catalog refresher reading templates from the configured bucket."""
    template_source = create_template_source(
        SessionFactory(), config.broker.s3_bucket, config.broker.s3_region, config.broker.s3_key
    )
    return CatalogRefresher(
        template_source, Cache("catalog"), Cache("listings"), config.broker.broker_id
    )


@click.group()
@click.option('--config-file', '-c', type=click.Path(dir_okay=False),
              help='YAML configuration file; environment variables take precedence')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config_file, verbose):
    """AWS Service Broker - provision AWS services through CloudFormation."""
    ctx.ensure_object(dict)

    if config_file:
        config = Config.from_file(Path(config_file).expanduser())
    else:
        config = Config.from_env()

    if verbose:
        config.logging.level = 'DEBUG'
        setup_logging(config.logging)

    ctx.obj['config'] = config


@cli.command()
@click.option('--host', help='Address to listen on')
@click.option('--port', '-p', type=int, help='Port to listen on')
@click.pass_context
def serve(ctx, host, port):
    """Run the Open Service Broker API server."""
    from aws_service_broker.api.service_broker import run_server

    config = ctx.obj['config']
    if host:
        config.api.host = host
    if port:
        config.api.port = port

    setup_logging(config.logging)
    click.echo(f"🚀 Starting AWS Service Broker on {config.api.host}:{config.api.port}")
    run_server(config)


@cli.group()
def catalog():
    """Catalog commands."""
    pass


@catalog.command('list')
@click.option('--format', '-f', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.pass_context
def catalog_list(ctx, format):
    """List the services built from the template bucket."""
    try:
        services = create_refresher(ctx.obj['config']).refresh()
    except Exception as e:
        click.echo(f"❌ Failed to build catalog: {e}", err=True)
        raise click.Abort()

    if format == 'json':
        click.echo(json.dumps([s.model_dump(mode='json', exclude_none=True) for s in services], indent=2))
        return

    if not services:
        click.echo("No services found")
        return

    rows = [
        [service.name, service.id, ', '.join(plan.name for plan in service.plans)]
        for service in services
    ]
    click.echo(tabulate(rows, headers=['Service', 'ID', 'Plans'], tablefmt='grid'))


@catalog.command('refresh')
@click.pass_context
def catalog_refresh(ctx):
    """Rebuild the catalog and store every service definition."""
    config = ctx.obj['config']
    try:
        services = create_refresher(config).refresh()
        store = StorageFactory.create_data_store(config, SessionFactory())
        try:
            for service in services:
                store.put_service_definition(service)
        finally:
            store.close()
    except Exception as e:
        click.echo(f"❌ Catalog refresh failed: {e}", err=True)
        raise click.Abort()

    click.echo(f"✅ Stored {len(services)} service definitions")


@cli.command('config')
@click.pass_context
def show_config(ctx):
    """Show the effective configuration."""
    click.echo(yaml.safe_dump(asdict(ctx.obj['config']), default_flow_style=False, sort_keys=False))


@cli.command()
def version():
    """Show version information."""
    click.echo("AWS Service Broker")
    click.echo(f"Version: {__version__}")


def main():
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\n👋 Operation cancelled by user")
        sys.exit(1)
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
