"""CLI entry point for paird."""

import asyncio
from pathlib import Path

import click

from paird import __version__
from paird.config import load_config
from paird.credential_store import JsonCredentialStore
from paird.disconnect import describe_reason
from paird.errors import InvalidSessionIdError, StorageError
from paird.formatting import format_time_ago
from paird.logging import setup_logging
from paird.session import validate_session_id


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """paird - Keep paired messaging sessions connected."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
@click.option(
    "--session",
    "-s",
    "session_ids",
    multiple=True,
    help="Start this session (repeatable). New sessions print a pairing code.",
)
@click.pass_context
def serve(ctx: click.Context, session_ids: tuple[str, ...]) -> None:
    """Run the supervisor daemon in the foreground.

    Sessions with stored credentials are resumed; use --session to pair a
    new one.
    """
    from paird.daemon import Daemon, StartupError
    from paird.daemon_lock import DaemonAlreadyRunningError, DaemonLock

    config = ctx.obj["config"]
    lock = DaemonLock(Path(config.lock_file))

    try:
        lock.acquire()
    except DaemonAlreadyRunningError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    async def _serve():
        daemon = Daemon(config=config, pairing_output=click.echo, session_ids=session_ids)

        try:
            await daemon.start()
            click.echo(f"Supervising sessions in {config.sessions_dir}")
            click.echo("Press Ctrl+C to stop")
            await daemon.run_forever()
        except StartupError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)
        except KeyboardInterrupt:
            click.echo("\nShutting down...")
        finally:
            await daemon.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass
    finally:
        lock.release()


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show whether a daemon is running and the state of its sessions."""
    from paird.daemon import read_status
    from paird.daemon_lock import DaemonLock, pid_alive

    config = ctx.obj["config"]
    lock = DaemonLock(Path(config.lock_file))
    pid = lock.get_owner_pid()

    if pid is None:
        click.echo("Daemon status: not running")
        return
    if not pid_alive(pid):
        click.echo("Daemon status: not running (stale lock file)")
        return

    click.echo(f"Daemon status: running (PID {pid})")

    status_data = read_status(Path(config.status_file))
    if status_data is None or status_data.get("pid") != pid:
        return

    sessions = status_data.get("sessions") or []
    if not sessions:
        click.echo("No active sessions.")
        return

    click.echo()
    click.echo(f"{'SESSION':<32} {'STATE':<24} {'RECONNECTS':<10} {'LAST DISCONNECT'}")
    click.echo("-" * 84)
    for session in sessions:
        state = session.get("state", "?")
        if session.get("terminal_kind"):
            state = f"{state} ({session['terminal_kind']})"
        reason = session.get("last_disconnect_reason")
        last = describe_reason(reason) if reason is not None else "-"
        click.echo(
            f"{session.get('session_id', '?'):<32} {state:<24} "
            f"{session.get('reconnect_attempt', 0):<10} {last}"
        )


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"paird version {__version__}")


@main.group()
def sessions() -> None:
    """Stored session management commands."""
    pass


@sessions.command("list")
@click.pass_context
def sessions_list(ctx: click.Context) -> None:
    """List sessions with stored credentials."""
    store = JsonCredentialStore(Path(ctx.obj["config"].sessions_dir))
    session_ids = asyncio.run(store.list_ids())

    if not session_ids:
        click.echo("No stored sessions.")
        return

    click.echo(f"{'SESSION':<32} {'CREDENTIALS UPDATED'}")
    click.echo("-" * 56)
    for session_id in session_ids:
        updated = format_time_ago(store.updated_at(session_id))
        click.echo(f"{session_id:<32} {updated}")


@sessions.command("remove")
@click.argument("session_id")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
@click.pass_context
def sessions_remove(ctx: click.Context, session_id: str, force: bool) -> None:
    """Delete stored credentials for SESSION_ID.

    The session has to be paired again before it can be used. Stop the
    daemon first, or use its reset operation instead.
    """
    store = JsonCredentialStore(Path(ctx.obj["config"].sessions_dir))

    try:
        validate_session_id(session_id)
    except InvalidSessionIdError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if session_id not in asyncio.run(store.list_ids()):
        click.echo(f"Error: Session '{session_id}' not found.", err=True)
        raise SystemExit(1)

    if not force and not click.confirm(f"Delete credentials for '{session_id}'?"):
        click.echo("Aborted.")
        return

    try:
        asyncio.run(store.delete(session_id))
    except StorageError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo("Session removed.")


@main.command()
@click.argument("code")
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default=None,
    help="Save QR code as PNG instead of printing it.",
)
@click.option(
    "--data-url",
    is_flag=True,
    help="Print a data: URL of the PNG, for embedding in an <img> tag.",
)
def qr(code: str, output: str | None, data_url: bool) -> None:
    """Render a pairing CODE as a QR code."""
    from paird.qr import PairingCodeRenderer

    renderer = PairingCodeRenderer(code)
    if data_url:
        click.echo(renderer.to_data_url())
    elif output:
        renderer.to_png(output)
        click.echo(f"QR code saved to: {output}")
    else:
        click.echo(renderer.to_terminal())
