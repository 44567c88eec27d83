"""Main application entry point for Earpiece."""

import sys
import time
import uuid
import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from . import __version__
from .config import EarpieceConfig
from .errors import EarpieceError
from .models.audio import RecordingSource
from .models.events import ErrorEvent, FragmentEvent
from .models.transcription import DispatchResult
from .services.coaching import create_coach
from .services.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "earpiece.yaml"


class Server:
    """Runs one recording session from the command line and prints what happens."""

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        if config_path is None and Path(DEFAULT_CONFIG_FILE).exists():
            config_path = DEFAULT_CONFIG_FILE
        self.config = EarpieceConfig(config_path)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.console = Console()
        self.session_id = f"cli-{uuid.uuid4().hex[:8]}"
        self.orchestrator: Optional[PipelineOrchestrator] = None

    def init(self) -> None:
        logger.info("Initializing services...")
        self.orchestrator = PipelineOrchestrator(self.config, create_coach(self.config))
        publisher = self.orchestrator.publisher
        publisher.subscribe(publisher.fragment_topic, self._on_fragment)
        publisher.subscribe(publisher.dispatch_topic, self._on_dispatch)
        publisher.subscribe(publisher.error_topic, self._on_error)
        self.orchestrator.start()
        self.orchestrator.on_session_created(self.session_id)
        self.console.print(f"Transcription: {self.orchestrator.backend.get_display_info()}", style="blue")

    def _on_fragment(self, event: FragmentEvent) -> None:
        fragment = event.fragment
        self.console.print(f"[{fragment.source.value}] {fragment.text}", style="cyan", markup=False)

    def _on_dispatch(self, event: DispatchResult) -> None:
        self.console.print(Panel(Text(event.reply), title=f"Coach ({event.fragment_count} fragment(s))",
                                 border_style="green"))

    def _on_error(self, event: ErrorEvent) -> None:
        self.console.print(f"{event.code}: {event.message}", style="bold red", markup=False)

    def run(self, source: RecordingSource, duration: int, auto: bool, flush_every: Optional[int]) -> str:
        """Record for ``duration`` seconds and return the final transcript."""
        if auto:
            self.orchestrator.toggle_auto_recorder(self.session_id, True, source)
        else:
            self.orchestrator.start_recording(self.session_id, source)
        self.console.print(f"Recording {source.value} for {duration}s "
                           f"({'auto recorder' if auto else 'manual'})", style="bold red")

        started = time.time()
        last_flush = started
        while time.time() - started < duration:
            time.sleep(0.5)
            if auto and flush_every and time.time() - last_flush >= flush_every:
                last_flush = time.time()
                self.orchestrator.flush_auto_recorder(self.session_id)
            if not self.orchestrator.is_recording(self.session_id).active:
                self.console.print("Recording stopped early", style="yellow")
                return ""

        if auto:
            return self.orchestrator.toggle_auto_recorder(self.session_id, False) or ""
        return self.orchestrator.stop_recording(self.session_id)

    def cleanup(self) -> None:
        if self.orchestrator is None:
            return
        if self.session_id in self.orchestrator.registry:
            self.orchestrator.on_session_closed(self.session_id)
        self.orchestrator.shutdown()


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/earpiece.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info(f"Earpiece {__version__} starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for the Earpiece command line."""
    parser = argparse.ArgumentParser(
        description="Earpiece - live interview transcription and coaching",
    )

    parser.add_argument(
        "--config",
        type=str,
        help=f"Path to configuration YAML file (default: {DEFAULT_CONFIG_FILE} if present)"
    )

    parser.add_argument(
        "--source",
        type=str,
        default="interviewee",
        choices=[s.name.lower() for s in RecordingSource],
        help="Audio to capture (default: interviewee)"
    )

    parser.add_argument(
        "--duration",
        type=int,
        default=30,
        help="Recording duration in seconds (default: 30)"
    )

    parser.add_argument(
        "--auto",
        action="store_true",
        help="Use the auto recorder: accumulate silently and dispatch only on flush"
    )

    parser.add_argument(
        "--flush-every",
        type=int,
        help="With --auto, flush the accumulated transcript every N seconds"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Earpiece v{__version__}"
    )

    args = parser.parse_args()

    try:
        server = Server(args.config, args.log_level)
    except (EarpieceError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        server.init()
        transcript = server.run(RecordingSource.parse(args.source), args.duration, args.auto, args.flush_every)
        server.console.print(Panel(Text(transcript or "(nothing transcribed)"), title="Final transcript"))
    except KeyboardInterrupt:
        server.console.print("\nInterrupted", style="yellow")
    except EarpieceError as e:
        server.console.print(f"Error [{e.code}]: {e}", style="bold red", markup=False)
        logger.error(f"Application error: {e}")
        sys.exit(1)
    finally:
        server.cleanup()


if __name__ == "__main__":
    main()
