"""Command-line interface for the real-time voice translator."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from .audio.devices import list_devices
from .channel.text_translator import LiveTextTranslator
from .config import Config, ConfigError, load_config
from .logging_setup import configure_logging
from .models.direction import SessionStatus, TranslationDirection
from .models.messages import MessageRecord, Sender
from .session.controller import SessionController, StateChange
from .utils.env_config import EnvConfigError

install_rich_traceback(suppress=[typer])

app = typer.Typer(
    help="Real-time English <-> Russian speech translation over a Live API channel.",
)
console = Console()


def _parse_direction(value: str) -> TranslationDirection:
    try:
        return TranslationDirection.parse(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _load(config_paths: Optional[List[Path]], dotenv_path: Optional[Path], log_level: Optional[str]) -> Config:
    try:
        config = load_config(config_paths, dotenv_path=str(dotenv_path) if dotenv_path else None)
    except (ConfigError, EnvConfigError) as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=2) from exc
    configure_logging(log_level or config.system.log_level)
    return config


def _print_record(record: MessageRecord) -> None:
    if record.sender is Sender.USER:
        console.print(f"[bold white]You:[/bold white] {record.text}")
    else:
        console.print(f"[bold green]Translation:[/bold green] {record.text}")


async def _run_live(controller: SessionController, direction: TranslationDirection, duration: Optional[float]) -> None:
    printed = 0

    with console.status("Connecting...") as status:

        def on_change(change: StateChange) -> None:
            nonlocal printed
            if change is StateChange.STATUS:
                status.update(f"{controller.status.value} ({controller.direction.source_language} -> "
                              f"{controller.direction.target_language})")
            elif change is StateChange.LIVE_TRANSCRIPT:
                live = controller.live_transcript
                if not live.is_empty:
                    status.update(f"[dim]{live.source}[/dim] -> {live.translated}")
            elif change is StateChange.MESSAGES:
                records = controller.messages
                for record in records[printed:]:
                    _print_record(record)
                printed = len(records)

        controller.add_listener(on_change)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration if duration else None
        try:
            await controller.start(direction)
            while controller.status is not SessionStatus.IDLE:
                if deadline is not None and loop.time() >= deadline:
                    break
                await asyncio.sleep(0.2)
        finally:
            await controller.close()


@app.command()
def live(
    direction: str = typer.Option(
        "en-ru",
        "--direction",
        "-d",
        help="Translation direction: en-ru or ru-en.",
    ),
    config_paths: Optional[List[Path]] = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        readable=True,
        help="YAML config file(s), merged left to right.",
    ),
    dotenv_path: Optional[Path] = typer.Option(
        None,
        "--dotenv-path",
        help="Optional path to a .env file containing GEMINI_API_KEY.",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override system.log_level."),
    duration: Optional[float] = typer.Option(
        None,
        "--duration",
        min=0.0,
        help="Stop after this many seconds (default: until Ctrl+C or the channel closes).",
    ),
) -> None:
    """Translate microphone speech live and play the translation back."""
    selected = _parse_direction(direction)
    config = _load(config_paths, dotenv_path, log_level)
    try:
        voice = config.provider.voice_for(selected)
    except ConfigError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=2) from exc

    console.print(
        Panel.fit(
            f"{selected.source_language} -> {selected.target_language}  voice={voice}\n"
            "Press Ctrl+C to stop.",
            title="Live translation",
            style="bold cyan",
        )
    )

    controller = SessionController(config)
    try:
        asyncio.run(_run_live(controller, selected, duration))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped by user[/yellow]")

    if controller.last_error:
        console.print(Panel.fit(controller.last_error, title="Session failed", style="bold red"))
        raise typer.Exit(code=1)


@app.command()
def translate(
    text: str = typer.Argument(..., help="Text to translate."),
    direction: str = typer.Option("en-ru", "--direction", "-d", help="Translation direction: en-ru or ru-en."),
    config_paths: Optional[List[Path]] = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        readable=True,
        help="YAML config file(s), merged left to right.",
    ),
    dotenv_path: Optional[Path] = typer.Option(
        None,
        "--dotenv-path",
        help="Optional path to a .env file containing GEMINI_API_KEY.",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override system.log_level."),
) -> None:
    """Translate typed text once, the way the manual entry path does."""
    selected = _parse_direction(direction)
    config = _load(config_paths, dotenv_path, log_level)

    controller = SessionController(config)
    controller.select_direction(selected)
    result = asyncio.run(controller.submit_text(text, LiveTextTranslator(config.provider)))

    for record in controller.messages:
        _print_record(record)
    if result is None:
        raise typer.Exit(code=1)


@app.command()
def devices() -> None:
    """List the audio devices visible to PortAudio."""
    try:
        table_data = list_devices()
    except OSError as exc:
        console.print(f"[bold red]Audio backend unavailable: {exc}[/bold red]")
        raise typer.Exit(code=2) from exc

    table = Table(title="Audio devices")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("In", justify="right")
    table.add_column("Out", justify="right")
    table.add_column("Default rate", justify="right")
    for index, device in enumerate(table_data):
        table.add_row(
            str(index),
            str(device["name"]),
            str(device["max_input_channels"]),
            str(device["max_output_channels"]),
            f"{device['default_samplerate']:.0f}",
        )
    console.print(table)


def main() -> None:  # pragma: no cover - entrypoint wrapper
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
