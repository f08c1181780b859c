# cli.py
import logging
from dataclasses import replace
from pathlib import Path

import click
import httpx

from config import Settings

DEFAULT_URL = "http://127.0.0.1:8000"


@click.group()
def cli():
    """taskrelay - single-worker task dispatch relay"""
    pass


# ---------------- Serve ----------------
@cli.command()
@click.option("--host", default=None, help="Bind address (TASKRELAY_HOST, default 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Port to listen on (PORT, default 8000)")
@click.option("--log-level", default=None, help="Logging level (TASKRELAY_LOG_LEVEL, default INFO)")
def serve(host, port, log_level):
    """Run the relay server"""
    import uvicorn
    from server import create_app

    overrides = {"host": host, "port": port, "log_level": log_level.upper() if log_level else None}
    try:
        settings = replace(Settings.from_env(), **{k: v for k, v in overrides.items() if v is not None})
    except ValueError as e:
        raise click.UsageError(str(e)) from None

    logging.basicConfig(level=settings.log_level, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    click.echo(f"☁️ Relay listening on port {settings.port}")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


# ---------------- Status ----------------
@cli.command()
@click.option("--url", default=DEFAULT_URL, show_default=True, help="Relay base URL")
def status(url):
    """Show the state of a running relay"""
    try:
        response = httpx.get(f"{url.rstrip('/')}/api/state", timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        click.echo(f"❌ Could not reach relay at {url}: {e}")
        raise SystemExit(1)

    state = response.json()
    click.echo(f"📊 Status: {state['status']}")
    click.echo(f"  Pending ({state['pending_count']}): {', '.join(state['pending_events']) or '-'}")
    if not state["history"]:
        click.echo("  History: -")
        return
    click.echo("  History:")
    for outcome in state["history"]:
        click.echo(f"    {outcome['display']}")


# ---------------- Submit ----------------
@cli.command()
@click.option("--url", default=DEFAULT_URL, show_default=True, help="Relay base URL")
@click.option("--event", required=True, help="Event label")
@click.option("--prices", default="[]", help="Price entries as a JSON list")
@click.option("--deadlines", default="[]", help="Deadline entries as a JSON list")
@click.option("--datasheet", "datasheets", multiple=True, type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Datasheet file to attach. Can be repeated.")
@click.option("--confirmation", "confirmations", multiple=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Confirmation document to attach. Can be repeated.")
def submit(url, event, prices, deadlines, datasheets, confirmations):
    """Queue a task on a running relay"""
    files = [("datasheet", (p.name, p.read_bytes())) for p in datasheets]
    files += [("confirmation", (p.name, p.read_bytes())) for p in confirmations]
    data = {"event": event, "prices": prices, "deadlines": deadlines}
    try:
        response = httpx.post(f"{url.rstrip('/')}/api/respond", data=data, files=files or None, timeout=30.0)
    except httpx.HTTPError as e:
        click.echo(f"❌ Could not reach relay at {url}: {e}")
        raise SystemExit(1)

    if response.status_code != 200:
        try:
            reason = response.json().get("message", response.text)
        except ValueError:
            reason = response.text
        click.echo(f"❌ Rejected ({response.status_code}): {reason}")
        raise SystemExit(1)
    body = response.json()
    click.echo(f"✅ Event {event} queued (task_id={body['task_id']}).")


# ---------------- Entrypoint ----------------
if __name__ == "__main__":
    cli()
