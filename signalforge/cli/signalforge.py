import asyncio
import json
import logging
import os

import click

from ..ai_news.backend import SignalForgeBackend
from ..ai_news.errors import AINewsError

DEFAULT_DATA_DIR = "./.signalforge"


def _echo(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _run(coro):
    try:
        return asyncio.run(coro)
    except AINewsError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option(
    "--data-dir",
    default=lambda: os.environ.get("SIGNALFORGE_DATA", DEFAULT_DATA_DIR),
    type=click.Path(file_okay=False),
    show_default="$SIGNALFORGE_DATA or ./.signalforge",
)
@click.option("-v", "--verbose", is_flag=True)
@click.pass_context
def main(ctx: click.Context, data_dir: str, verbose: bool) -> None:
    """Collect, score and publish AI news signals."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)
    ctx.obj = SignalForgeBackend(data_dir)


@main.command()
@click.option("--max-items", type=click.IntRange(1, 200), default=None)
@click.pass_obj
def prepare(backend: SignalForgeBackend, max_items) -> None:
    """Fetch, score and store candidates without publishing."""
    run = _run(backend.prepare(max_items=max_items))
    _echo(run.as_run_result())


@main.command()
@click.option("--mode", type=click.Choice(["digest", "per_item"]), default=None)
@click.option("--id", "signal_ids", multiple=True, help="Publish only these signal ids")
@click.pass_obj
def publish(backend: SignalForgeBackend, mode, signal_ids) -> None:
    """Publish pending signals and mark them published."""
    run = _run(backend.publish(mode, signal_ids=list(signal_ids) or None))
    _echo(run.as_run_result())


@main.command()
@click.option("--mode", type=click.Choice(["digest", "per_item"]), default=None)
@click.option("--max-items", type=click.IntRange(1, 200), default=None)
@click.pass_obj
def run(backend: SignalForgeBackend, mode, max_items) -> None:
    """Prepare and publish in one pass."""
    result = _run(backend.ingest(mode, max_items=max_items))
    _echo(result.as_run_result())


@main.command()
@click.option("--limit", type=click.IntRange(1, 500), default=50)
@click.pass_obj
def pending(backend: SignalForgeBackend, limit: int) -> None:
    """List stored signals that are not published yet."""
    for signal in backend.pending(limit):
        click.echo(f"{signal.score:6.3f}  {signal.source.value:<6} {signal.title}  <{signal.url}>")


@main.command()
@click.pass_obj
def generate(backend: SignalForgeBackend) -> None:
    """Generate and publish LLM discussion topics."""
    result = _run(backend.generate())
    _echo(result.to_dict())


@main.command("schedule-status")
@click.pass_obj
def schedule_status(backend: SignalForgeBackend) -> None:
    """Show the persisted scheduler status."""
    _echo(backend.scheduler.describe())


@main.command()
@click.option("--host", default=lambda: os.environ.get("SIGNALFORGE_HOST", "127.0.0.1"))
@click.option("--port", default=lambda: int(os.environ.get("PORT", "8777")), type=int)
@click.pass_obj
def serve(backend: SignalForgeBackend, host: str, port: int) -> None:
    """Start the API and the scheduler."""
    import uvicorn

    uvicorn.run(backend.create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
