"""Typer CLI entrypoint for sotto."""

import asyncio
import json
import logging
from pathlib import Path

import typer

from sotto.config import Config, ConfigError, MAX_DURATION_LIMIT, load_config
from sotto.errors import SottoError
from sotto.orchestrator import ListenOrchestrator, describe_failure
from sotto.process import ProcessSupervisor
from sotto.stream_transcriber import StreamOptions

app = typer.Typer(help="Live microphone transcription via whisper-stream")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _apply_config_logging(cfg: Config, verbose: bool) -> None:
    """Raise log verbosity when the config file asks for it."""
    if cfg.general.verbose and not verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled by configuration")


def _merge_config_overrides(
    cfg: Config,
    *,
    model_path: Path | None = None,
    no_indicator: bool = False,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file and environment values.
    """
    if model_path is not None:
        logger.debug("Overriding model path to '%s'", model_path)
        cfg.whisper.model_path = str(model_path.expanduser())

    if no_indicator:
        logger.debug("Disabling status indicator")
        cfg.indicator.enabled = False

    return cfg


@app.command()
def listen(
    max_duration: float | None = typer.Option(
        None,
        "--max-duration",
        "-d",
        min=1,
        max=MAX_DURATION_LIMIT,
        help="Maximum recording duration in seconds (default from config: 30)",
    ),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Language code for transcription (default: en)"
    ),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    model_path: Path | None = typer.Option(
        None, "--model", "-m", help="Override whisper model path"
    ),
    no_indicator: bool = typer.Option(
        False, "--no-indicator", help="Do not show the status overlay"
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Output result as JSON"
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Do not print live progress to stderr"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
) -> None:
    """Record from the microphone and print the transcription."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        _apply_config_logging(cfg, verbose)
        cfg = _merge_config_overrides(cfg, model_path=model_path, no_indicator=no_indicator)
        cfg.validate()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1)

    def _progress(text: str) -> None:
        typer.echo(f"… {text}", err=True)

    orchestrator = ListenOrchestrator(cfg, on_progress=None if quiet else _progress)
    try:
        response = asyncio.run(orchestrator.listen(max_duration=max_duration, language=language))
    except KeyboardInterrupt:
        logger.info("Listen interrupted by user")
        raise typer.Exit(130)

    if json_output:
        typer.echo(json.dumps(response.to_dict()))
    elif response.is_error:
        typer.echo(response.text, err=True)
    else:
        typer.echo(response.text)

    if response.is_error:
        raise typer.Exit(1)


@app.command()
def check(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Verify that whisper-stream and the model are available without recording."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        _apply_config_logging(cfg, verbose)
        cfg.validate()
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1)

    options = StreamOptions.from_config(cfg.whisper)
    typer.echo(f"Binary:       {options.binary}")
    typer.echo(f"Model:        {options.model_path}")
    typer.echo(f"Language:     {options.language}")
    typer.echo(f"Max duration: {options.max_duration:g}s")
    indicator = " ".join(cfg.indicator.command) if cfg.indicator.enabled else "disabled"
    typer.echo(f"Indicator:    {indicator}")

    supervisor = ProcessSupervisor(cfg.whisper.kill_grace)
    failed = False
    try:
        path = supervisor.check_available(options.binary, options.install_hint)
        typer.echo(f"[ok] {options.binary} found at {path}")
    except SottoError as e:
        typer.echo(f"[missing] {describe_failure(e, options.install_hint)}")
        failed = True

    if Path(options.model_path).exists():
        typer.echo("[ok] model file present")
    else:
        typer.echo(f"[missing] model file not found at {options.model_path}")
        failed = True

    if failed:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
