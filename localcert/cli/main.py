"""Command line interface for the local certificate service."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click

from ..config import ServiceConfig, build_service, load_config
from ..errors import AuthenticationError, LocalCertError

logger = logging.getLogger(__name__)


def prompt_password(message: str) -> Optional[str]:
    """Interactive password prompt; None when the user aborts."""
    try:
        return click.prompt(message, hide_input=True, default="", show_default=False)
    except click.Abort:
        return None


def _fail(error: LocalCertError):
    raise click.ClickException(f"{error.kind.value}: {error}")


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False), help='JSON config file')
@click.option('--store-dir', type=click.Path(file_okay=False), help='Token and certificate directory')
@click.pass_context
def cli(ctx, debug, config_path, store_dir):
    """Local self-signed certificate manager."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    config = load_config(config_path)
    if store_dir:
        config = config.model_copy(update={"store_dir": Path(store_dir)})
    ctx.obj = config


@cli.command('get')
@click.argument('nickname')
@click.option('--pem', is_flag=True, help='Print the certificate in PEM form')
@click.pass_obj
def get_cert(config: ServiceConfig, nickname, pem):
    """Get the certificate for NICKNAME, creating it if needed."""
    with build_service(config, prompt_password) as service:
        try:
            record = asyncio.run(service.get_or_create_certificate_async(nickname))
        except LocalCertError as e:
            _fail(e)

    if pem:
        click.echo(record.pem, nl=False)
        return

    click.echo(f"✓ Certificate '{nickname}'")
    click.echo(f"  Subject:     {record.subject_name}")
    click.echo(f"  Serial:      {record.serial_number:x}")
    click.echo(f"  Valid from:  {record.not_before.isoformat()}")
    click.echo(f"  Valid to:    {record.not_after.isoformat()}")
    click.echo(f"  SHA-256:     {record.fingerprint}")


@cli.command('remove')
@click.argument('nickname')
@click.pass_obj
def remove_cert(config: ServiceConfig, nickname):
    """Remove the certificate and key stored for NICKNAME."""
    with build_service(config, prompt_password) as service:
        try:
            asyncio.run(service.remove_certificate_async(nickname))
        except LocalCertError as e:
            _fail(e)

    click.echo(f"✓ Removed certificate '{nickname}'")


@cli.command('list')
@click.pass_obj
def list_certs(config: ServiceConfig):
    """List stored certificates."""
    with build_service(config) as service:
        try:
            nicknames = service.store.nicknames()
            records = [r for name in nicknames for r in service.store.find_all(name)]
        except LocalCertError as e:
            _fail(e)

        click.echo(f"Certificates ({len(records)}):")
        for record in records:
            status = "valid" if service.validator.is_valid(record, record.nickname) else "invalid"
            click.echo(f"  - {record.nickname}: {record.subject_name} until {record.not_after.isoformat()} ({status})")


@cli.command('unlock-required')
@click.pass_obj
def unlock_required(config: ServiceConfig):
    """Report whether the key slot needs a password now."""
    with build_service(config) as service:
        try:
            required = service.is_unlock_required()
        except LocalCertError as e:
            _fail(e)

    click.echo("Unlock required" if required else "No unlock required")


@cli.command('set-password')
@click.pass_obj
def set_password(config: ServiceConfig):
    """Set or change the key slot password."""
    with build_service(config) as service:
        token = service.provider.token
        new_password = click.prompt("New password", hide_input=True, confirmation_prompt=True,
                                    default="", show_default=False)
        try:
            if token.needs_user_init():
                token.init_pin(new_password)
            else:
                old_password = ""
                if token.needs_login():
                    old_password = click.prompt("Current password", hide_input=True)
                token.change_password(old_password, new_password)
        except AuthenticationError as e:
            _fail(e)

    click.echo("✓ Key slot password updated")


def main():
    """Entry point for CLI."""
    cli()


if __name__ == '__main__':
    main()
