"""Command line entry points: the interactive REPL and the HTTP server."""
from __future__ import annotations

import asyncio
from typing import Callable, Optional

import click

from conductor.config import Config
from conductor.logging_config import get_logger, setup_logging
from conductor.orchestration.orchestrator import Orchestrator
from conductor.runtime import build_orchestrator

logger = get_logger(__name__)

EXIT_WORDS = {"exit", "quit"}
PROMPT = "conductor> "


async def run_repl(
    orchestrator: Orchestrator,
    read_line: Callable[[str], str] = input,
    write: Callable[[str], None] = click.echo,
) -> int:
    """Feed lines to the orchestrator until exit, quit or end of input."""
    write("Conductor ready. Type /help for commands, exit to leave.")
    try:
        while True:
            try:
                line = await asyncio.to_thread(read_line, PROMPT)
            except EOFError:
                break
            if line.strip().lower() in EXIT_WORDS:
                break
            response = await orchestrator.handle_input(line)
            if response:
                write(response)
    finally:
        await orchestrator.shutdown()
    return 0


def _load_config(provider: Optional[str], session: Optional[str], log_level: Optional[str]) -> Config:
    config = Config.from_env().override(provider=provider, session_name=session, log_level=log_level)
    setup_logging(config.log_level, config.log_file, config.json_logs)
    return config


@click.group()
def main() -> None:
    """Coordinate worker agents running in isolated execution contexts."""


_provider_option = click.option(
    "--provider",
    type=click.Choice(["memory", "tmux", "subprocess"]),
    default=None,
    help="Execution context provider (default: CONDUCTOR_PROVIDER or memory)",
)
_session_option = click.option("--session", default=None, help="Session name for execution contexts")
_log_level_option = click.option("--log-level", default=None, help="Logging level")


@main.command()
@_provider_option
@_session_option
@_log_level_option
def repl(provider: Optional[str], session: Optional[str], log_level: Optional[str]) -> None:
    """Start the interactive prompt."""
    config = _load_config(provider, session, log_level)
    orchestrator = build_orchestrator(config)
    raise SystemExit(asyncio.run(run_repl(orchestrator)))


@main.command()
@_provider_option
@_session_option
@_log_level_option
@click.option("--host", default=None, help="Interface to bind")
@click.option("--port", type=int, default=None, help="Port to listen on")
def serve(
    provider: Optional[str],
    session: Optional[str],
    log_level: Optional[str],
    host: Optional[str],
    port: Optional[int],
) -> None:
    """Serve the HTTP control API."""
    import uvicorn

    from conductor.main import create_app

    config = _load_config(provider, session, log_level).override(host=host, port=port)
    logger.info("Serving on %s:%s with %s provider", config.host, config.port, config.provider)
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":
    main()
