"""Drishti CLI - voice conversation from the terminal."""

import asyncio
import sys
from typing import Optional, Union

import click
import structlog
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import get_settings
from .conversation import SessionController, SessionEvent, SessionEventType, SessionState
from .core.errors import DrishtiError
from .core.logging import configure_logging
from .llm import ChatStreamClient
from .pipeline import SoundDeviceSink
from .voice import SpeechSynthesisClient, TranscriptionClient
from .voice_engine import MicrophoneCapture, VADConfig, VoiceActivityDetector
from .voice_engine.driver import VADTurnDriver

console = Console()
logger = structlog.get_logger(__name__)

STATE_STYLES = {
    SessionState.IDLE: "dim",
    SessionState.LISTENING: "bold green",
    SessionState.PROCESSING: "yellow",
    SessionState.STREAMING: "cyan",
    SessionState.SPEAKING: "magenta",
}


def parse_device(value: Optional[str]) -> Optional[Union[int, str]]:
    """Device index if numeric, otherwise a device name substring."""
    if value is None or value == "":
        return None
    return int(value) if value.isdigit() else value


class ConsoleRenderer:
    """Renders session events as transcript lines."""

    def __init__(self, console: Console):
        self.console = console
        self._streaming = False

    def __call__(self, event: SessionEvent) -> None:
        if event.type == SessionEventType.STATE_CHANGED:
            state = SessionState(event.data["to"])
            if self._streaming and state == SessionState.IDLE:
                self.console.print()
                self._streaming = False
            if state != SessionState.SPEAKING:
                self.console.print(f"[{STATE_STYLES[state]}]● {state.value}[/]")

        elif event.type == SessionEventType.TRANSCRIPT:
            self.console.print(f"[bold cyan]You:[/bold cyan] {event.data['text']}")

        elif event.type == SessionEventType.TOKEN:
            if not self._streaming:
                self.console.print("[bold magenta]Drishti:[/bold magenta] ", end="")
                self._streaming = True
            self.console.print(event.data["text"], end="", markup=False, highlight=False)

        elif event.type == SessionEventType.RESPONSE:
            self.console.print()
            self._streaming = False

        elif event.type == SessionEventType.ERROR:
            self.console.print(f"[red]✗ {event.data.get('message', 'Error')}[/red]")


@click.group()
@click.version_option(version=__version__, prog_name="drishti")
def cli():
    """Drishti - talk to an AI assistant with your voice.

    \b
    Examples:
      drishti run
      drishti run --mode ptt --no-speech
      drishti devices
    """


@cli.command("run")
@click.option("--mode", "-m", type=click.Choice(["vad", "ptt"]), default=None,
              help="Turn detection: automatic (vad) or push-to-talk (ptt)")
@click.option("--no-speech", is_flag=True, help="Show replies as text only")
@click.option("--voice", "-v", default=None, help="Synthesis voice")
@click.option("--barge-in/--no-barge-in", default=None,
              help="Let speech interrupt a reply (vad mode)")
@click.option("--log-level", "-l", default=None,
              type=click.Choice(["debug", "info", "warning", "error"]),
              help="Log level")
def run(
    mode: Optional[str],
    no_speech: bool,
    voice: Optional[str],
    barge_in: Optional[bool],
    log_level: Optional[str],
):
    """Start a voice conversation."""
    settings = get_settings()
    configure_logging(log_level or settings.log_level, settings.log_format)

    if not settings.venice_api_key:
        console.print("[red]✗[/red] VENICE_API_KEY is not set")
        sys.exit(1)

    use_vad = settings.vad.enabled if mode is None else mode == "vad"
    if barge_in is None:
        barge_in = settings.vad.barge_in

    try:
        asyncio.run(_run_session(
            use_vad=use_vad,
            speech_enabled=settings.playback.speech_enabled and not no_speech,
            voice=voice,
            barge_in=barge_in,
        ))
    except KeyboardInterrupt:
        pass
    except DrishtiError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        sys.exit(1)

    console.print("[dim]Goodbye.[/dim]")


async def _run_session(
    use_vad: bool,
    speech_enabled: bool,
    voice: Optional[str],
    barge_in: bool,
) -> None:
    settings = get_settings()

    capture = MicrophoneCapture(
        sample_rate=settings.capture_sample_rate,
        device=parse_device(settings.input_device),
        window_size=settings.vad.window_size,
        min_capture_ms=settings.vad.min_capture_ms,
    )
    sink = SoundDeviceSink(
        sample_rate=settings.playback.sample_rate,
        device=parse_device(settings.output_device),
    )
    transcriber = TranscriptionClient.from_settings(settings)
    chat = ChatStreamClient.from_settings(settings)
    synthesizer = SpeechSynthesisClient.from_settings(settings, **({"voice": voice} if voice else {}))

    controller = SessionController(
        capture=capture,
        transcriber=transcriber,
        chat_client=chat,
        synthesizer=synthesizer,
        sink=sink,
        settings=settings,
        speech_enabled=speech_enabled,
    )
    controller.add_listener(ConsoleRenderer(console))

    capture.open()
    if speech_enabled:
        await sink.start()

    driver: Optional[VADTurnDriver] = None
    if use_vad:
        vad = VoiceActivityDetector(VADConfig.from_settings(settings.vad))
        driver = VADTurnDriver(
            controller,
            capture,
            vad,
            cadence_ms=settings.vad.cadence_ms,
            barge_in=barge_in,
        )
        driver.start()
        console.print("[bold]Listening.[/bold] Just start talking. Type q + Enter to quit.")
    else:
        console.print("[bold]Push to talk.[/bold] Enter starts and stops a turn. Type q + Enter to quit.")

    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            command = line.strip().lower()
            if not line or command in ("q", "quit", "exit"):
                break
            if command in ("x", "stop"):
                controller.interrupt()
                continue
            if use_vad:
                continue

            if controller.state == SessionState.LISTENING:
                controller.finish_listening()
            else:
                controller.start_turn()
    finally:
        if driver is not None:
            await driver.stop()
        await controller.shutdown()
        capture.close()
        await sink.close()
        await asyncio.gather(transcriber.disconnect(), chat.disconnect(), synthesizer.disconnect())


@cli.command("devices")
def devices():
    """List audio input and output devices."""
    import sounddevice as sd

    table = Table(title="Audio Devices")
    table.add_column("Index", style="cyan")
    table.add_column("Name")
    table.add_column("In", justify="right")
    table.add_column("Out", justify="right")
    table.add_column("Default rate", justify="right")

    default_in, default_out = sd.default.device
    for index, device in enumerate(sd.query_devices()):
        name = device["name"]
        if index == default_in or index == default_out:
            name = f"[bold]{name}[/bold] (default)"
        table.add_row(
            str(index),
            name,
            str(device["max_input_channels"]),
            str(device["max_output_channels"]),
            str(int(device["default_samplerate"])),
        )

    console.print(table)


def main():
    cli()


if __name__ == "__main__":
    main()
