"""CLI entry point for the Our Memories relay."""

import json
from pathlib import Path

import click

from ourmem import __version__
from ourmem.config import load_config
from ourmem.errors import RelayError
from ourmem.formatting import format_pairing_code, format_time_ago, isoformat
from ourmem.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.option(
    "--server",
    "-s",
    default=None,
    help="Relay URL for device commands (overrides server_url).",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None, server: str | None) -> None:
    """Our Memories - pairing and signaling relay."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    if server:
        ctx.obj["config"].server_url = server
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"ourmem version {__version__}")


@main.command()
@click.option("--host", default=None, help="Address to bind (default from config).")
@click.option("--port", "-p", type=int, default=None, help="Port (default from config).")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the relay until interrupted."""
    import asyncio

    from ourmem.errors import EntropyError
    from ourmem.server import RateLimiter, RelayServer
    from ourmem.service import create_service

    config = ctx.obj["config"]
    host = host or config.bind_address
    port = config.port if port is None else port

    async def _serve():
        service = create_service(config)
        limiter = None
        if config.rate_limit.enabled:
            limiter = RateLimiter(
                config.rate_limit.max_requests, config.rate_limit.window_seconds
            )
        server = RelayServer(service, rate_limiter=limiter)

        try:
            await server.start(host, port)
            click.echo(f"Relay listening on {host}:{server.get_port()}")
            click.echo("Press Ctrl+C to stop")
            await asyncio.Event().wait()
        except EntropyError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)
        finally:
            await server.close()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


# =============================================================================
# Pairing
# =============================================================================

@main.group()
def pair() -> None:
    """Device pairing commands."""
    pass


@pair.command("create")
@click.option("--partner-a", required=True, help="First partner's name.")
@click.option("--partner-b", required=True, help="Second partner's name.")
@click.option("--love-date", required=True, help="Anniversary date (YYYY-MM-DD).")
@click.option("--story-start", required=True, help="Story start date (YYYY-MM-DD).")
@click.option("--cover-title", default=None, help="Album cover title.")
@click.option("--couple-id", default=None, help="Reuse an existing couple id.")
@click.option(
    "--browser",
    "-b",
    is_flag=True,
    help="Open QR code in browser.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default=None,
    help="Save QR code to file.",
)
@click.pass_context
def pair_create(
    ctx: click.Context,
    partner_a: str,
    partner_b: str,
    love_date: str,
    story_start: str,
    cover_title: str | None,
    couple_id: str | None,
    browser: bool,
    output: str | None,
) -> None:
    """Register a pairing with the relay and show the pairing code."""
    import asyncio
    import platform

    import aiohttp

    from ourmem.client import RelayClient
    from ourmem.onboarding import CoupleProfile, Onboarding
    from ourmem.pairing.qr_generator import QrGenerator

    config = ctx.obj["config"]

    profile = CoupleProfile(
        partner_a_name=partner_a,
        partner_b_name=partner_b,
        love_date=love_date,
        story_start=story_start,
    )
    if cover_title:
        profile.cover_title = cover_title
    if couple_id:
        profile.couple_id = couple_id

    async def _create():
        async with RelayClient(config.server_url) as client:
            onboarding = Onboarding(client)
            return await onboarding.create_invitation(
                profile, device_info={"platform": platform.system()}
            )

    try:
        invitation = asyncio.run(_create())
    except aiohttp.ClientConnectorError:
        click.echo("Error: Cannot connect to relay. Is it running?", err=True)
        click.echo("Start the relay with: ourmem serve", err=True)
        raise SystemExit(1)
    except RelayError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    qr_gen = QrGenerator(invitation.code)

    click.echo(f"Couple: {profile.couple_id}")
    if invitation.expires_at:
        click.echo(f"Expires: {invitation.expires_at}")

    if browser:
        import tempfile
        import webbrowser

        with tempfile.NamedTemporaryFile(suffix=".html", delete=False, mode="w") as f:
            f.write(qr_gen.to_html())
            webbrowser.open(f"file://{f.name}")
        click.echo("QR code opened in browser")
    elif output:
        qr_gen.to_png(output)
        click.echo(f"QR code saved to: {output}")
    else:
        click.echo(qr_gen.to_terminal())

    click.echo("\nPairing code:")
    click.echo(format_pairing_code(invitation.code))


@pair.command("join")
@click.argument("code")
@click.pass_context
def pair_join(ctx: click.Context, code: str) -> None:
    """Join a couple with a pairing code."""
    import asyncio

    import aiohttp

    from ourmem.client import RelayClient
    from ourmem.onboarding import Onboarding

    config = ctx.obj["config"]

    async def _join():
        async with RelayClient(config.server_url) as client:
            return await Onboarding(client).accept_invitation(code)

    try:
        profile = asyncio.run(_join())
    except aiohttp.ClientConnectorError:
        click.echo("Error: Cannot connect to relay. Is it running?", err=True)
        raise SystemExit(1)
    except RelayError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo("Pairing successful!")
    click.echo(f"Couple: {profile.couple_id}")
    click.echo(f"Partners: {profile.partner_a_name} & {profile.partner_b_name}")
    click.echo(f"Album: {profile.cover_title}")


@pair.command("inspect")
@click.argument("code")
def pair_inspect(code: str) -> None:
    """Decode a pairing code locally without contacting the relay."""
    from ourmem.pairing.codec import PairingCodec

    try:
        payload = PairingCodec().decode(code)
    except RelayError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    created = isoformat(payload.timestamp / 1000) if payload.timestamp else None

    click.echo(f"Couple:      {payload.couple_id}")
    click.echo(f"Partners:    {payload.partner_a_name} & {payload.partner_b_name}")
    click.echo(f"Album:       {payload.cover_title}")
    click.echo(f"Love date:   {payload.love_date}")
    click.echo(f"Story start: {payload.story_start}")
    click.echo(f"Created:     {format_time_ago(created)}")


# =============================================================================
# Backups
# =============================================================================

@main.group()
def backup() -> None:
    """Encrypted backup commands."""
    pass


@backup.command("push")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--couple-id", required=True, help="Couple id.")
@click.option("--passphrase", prompt=True, hide_input=True, help="Backup passphrase.")
@click.pass_context
def backup_push(ctx: click.Context, file: Path, couple_id: str, passphrase: str) -> None:
    """Encrypt FILE and upload it as the couple's latest backup."""
    import asyncio

    import aiohttp

    from ourmem.client import RelayClient
    from ourmem.crypto import encrypt_backup

    config = ctx.obj["config"]

    try:
        blob = encrypt_backup(passphrase, file.read_bytes())
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    async def _push():
        async with RelayClient(config.server_url) as client:
            return await client.upload_backup(couple_id, blob)

    try:
        asyncio.run(_push())
    except aiohttp.ClientConnectorError:
        click.echo("Error: Cannot connect to relay. Is it running?", err=True)
        raise SystemExit(1)
    except RelayError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Backup uploaded ({len(blob)} bytes encrypted)")


@backup.command("pull")
@click.option("--couple-id", required=True, help="Couple id.")
@click.option("--passphrase", prompt=True, hide_input=True, help="Backup passphrase.")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="Where to write the decrypted archive.",
)
@click.pass_context
def backup_pull(ctx: click.Context, couple_id: str, passphrase: str, output: Path) -> None:
    """Download and decrypt the couple's latest backup."""
    import asyncio

    import aiohttp

    from ourmem.client import RelayClient
    from ourmem.crypto import decrypt_backup

    config = ctx.obj["config"]

    if not passphrase:
        click.echo("Error: Passphrase must not be empty", err=True)
        raise SystemExit(1)

    async def _pull():
        async with RelayClient(config.server_url) as client:
            return await client.download_backup(couple_id)

    try:
        blob = asyncio.run(_pull())
        plaintext = decrypt_backup(passphrase, blob)
    except aiohttp.ClientConnectorError:
        click.echo("Error: Cannot connect to relay. Is it running?", err=True)
        raise SystemExit(1)
    except RelayError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    output.write_bytes(plaintext)
    click.echo(f"Backup restored to: {output}")


# =============================================================================
# Signals
# =============================================================================

@main.group()
def signals() -> None:
    """Signaling mailbox commands."""
    pass


@signals.command("drain")
@click.option("--couple-id", required=True, help="Couple id.")
@click.option("--device-id", required=True, help="Recipient device id.")
@click.pass_context
def signals_drain(ctx: click.Context, couple_id: str, device_id: str) -> None:
    """Fetch (and delete) pending signals for a device."""
    import asyncio

    import aiohttp

    from ourmem.client import RelayClient

    config = ctx.obj["config"]

    async def _drain():
        async with RelayClient(config.server_url) as client:
            return await client.drain_signals(couple_id, device_id)

    try:
        envelopes = asyncio.run(_drain())
    except aiohttp.ClientConnectorError:
        click.echo("Error: Cannot connect to relay. Is it running?", err=True)
        raise SystemExit(1)
    except RelayError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(json.dumps(envelopes, indent=2))
