"""
CLI interface for clipper.

Provides commands to dispatch a render job and watch it, manage the
clipper configuration, inspect key rotation pools, and verify secrets.
"""

import json
import os
import signal
from contextlib import nullcontext
from pathlib import Path

import click

from clipper import __version__


def _get_config(ctx):
    config = ctx.obj.get("config")
    if config is None:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'clipper init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return config


def _is_youtube_url(url: str) -> bool:
    return "youtube.com" in url or "youtu.be" in url


@click.group()
@click.version_option(version=__version__, prog_name="clipper")
@click.pass_context
def main(ctx):
    """
    clipper - YouTube to 9:16 viral shorts, rendered remotely.

    Dispatches the render workflow, watches it, and delivers the result.
    """
    from clipper.config import ClipperConfig, load_config
    from clipper.errors import ConfigError

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except FileNotFoundError:
        # No config file: run from the environment alone
        ctx.obj["config"] = ClipperConfig.from_env()
    except ConfigError as e:
        ctx.obj["config_error"] = str(e)


@main.command("run")
@click.argument("url")
@click.option("--watch/--no-watch", default=True, show_default=True, help="Watch the run until it finishes")
@click.option("--interval", type=float, default=None, help="Seconds between status checks")
@click.option("--timeout", type=float, default=None, help="Seconds to watch before giving up")
@click.option("--json", "as_json", is_flag=True, help="Print the outcome as JSON")
@click.pass_context
def run(ctx, url: str, watch: bool, interval: float, timeout: float, as_json: bool):
    """
    Dispatch a render job for URL.

    Examples:

        clipper run "https://www.youtube.com/watch?v=aSxLg7fRuFs"

        clipper run "https://youtu.be/aSxLg7fRuFs" --no-watch
    """
    from clipper.errors import ClipperError, ConfigError, DispatchError
    from clipper.orchestrator import JobInput, Orchestrator
    from clipper.schemas import Outcome, OutcomeKind
    from clipper.utils import console, setup_logging

    config = _get_config(ctx)

    if not _is_youtube_url(url):
        raise click.UsageError(f"Not a YouTube URL: {url}")

    if interval is not None:
        config.poll_interval = interval
    if timeout is not None:
        config.poll_timeout = timeout

    try:
        config.validate()
    except ConfigError as e:
        click.echo(f"✗ Invalid configuration:\n{e}", err=True)
        raise SystemExit(1)

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=Path(config.log_file).expanduser() if config.log_file else None,
    )

    orchestrator = Orchestrator.from_config(config)

    def _on_sigint(signum, frame):
        orchestrator.poller.cancel()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        # No spinner in JSON mode, stdout carries only the outcome
        spinner = nullcontext() if as_json else console.status("Dispatching workflow...")
        with spinner as status:
            def on_progress(remote_run):
                if status is not None:
                    status.update(f"Workflow {remote_run.status.value}... (run {remote_run.run_id})")

            outcome = orchestrator.run(JobInput(url=url), watch=watch, on_progress=on_progress)
    except DispatchError as e:
        outcome = Outcome.dispatch_error(e.token or "", str(e))
    except ClipperError as e:
        click.echo(f"✗ Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(outcome.to_dict(), indent=2))
    elif outcome.kind == OutcomeKind.DISPATCHED:
        click.echo(f"✓ Workflow triggered. Worker ID: {outcome.token}")
        click.echo("Run with --watch to track progress")
    elif outcome.kind == OutcomeKind.SUCCEEDED:
        click.echo("✓ Video rendered successfully!")
        click.echo(f"Download: {outcome.artifact}")
    elif outcome.kind == OutcomeKind.FAILED:
        click.echo(f"✗ Workflow failed: {outcome.reason}", err=True)
    elif outcome.kind == OutcomeKind.DISPATCH_ERROR:
        click.echo(f"✗ {outcome.reason}", err=True)
    else:
        click.echo("⏸ Workflow is still running...")
        click.echo(f"Check status at: {outcome.follow_up}")

    raise SystemExit(outcome.exit_code)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize clipper configuration."""
    from clipper.config import get_clipper_home
    import yaml

    home = get_clipper_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "github_owner": "your-username",
        "github_repo": "clipper-actions",
        "workflow_id": "render.yml",
        "ref": "main",
        "token_key": "worker_id",
        "poll_interval": 5,
        "poll_timeout": 600,
        "correlation_tolerance": 10,
        "runs_per_page": 10,
        "keys_dir": str(home / "keys"),
        "env_file": str(home / ".env"),
        "log_level": "INFO",
        "log_format": "pretty",
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    keys_dir = home / "keys"
    keys_dir.mkdir(exist_ok=True)
    for name in ("deepgram-keys.txt", "gemini-keys.txt"):
        key_file = keys_dir / name
        if not key_file.exists():
            key_file.write_text("# One API key per line\n")

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# GH_PAT=...\n# TELEGRAM_TOKEN=...\n# CHAT_ID=...\n")

    click.echo(f"Initialized clipper config at {cfg_path}")


@main.group("keys")
def keys_group():
    """Inspect API key rotation pools."""
    pass


def _rotation(ctx):
    from clipper.key_rotation import key_rotation

    config = ctx.obj.get("config")
    if config is not None:
        key_rotation.keys_dir = config.get_keys_dir()
    return key_rotation


@keys_group.command("list")
@click.argument("service")
@click.pass_context
def list_keys(ctx, service: str):
    """List the keys for SERVICE (masked)."""
    from clipper.utils import mask_secret

    keys = _rotation(ctx).get_all(service)
    if not keys:
        click.echo(f"No keys for {service}.")
        return
    for index, key in enumerate(keys, start=1):
        click.echo(f"  {index}. {mask_secret(key)}")


@keys_group.command("count")
@click.argument("service")
@click.pass_context
def count_keys(ctx, service: str):
    """Print how many keys SERVICE has."""
    click.echo(str(_rotation(ctx).get_count(service)))


@main.command("check-secrets")
@click.option("--live", is_flag=True, help="Call each service to confirm the keys work")
@click.pass_context
def check_secrets_cmd(ctx, live: bool):
    """Verify required secrets and every rotated key."""
    from clipper.secrets_check import all_required_valid, check_secrets, secret_values

    config = ctx.obj.get("config")
    values = secret_values(config) if config is not None else os.environ
    results = check_secrets(values, _rotation(ctx), live=live)
    for result in results:
        mark = "✓" if result.valid else ("✗" if result.required else "⚠")
        click.echo(f"{mark} {result.name}: {result.message}")

    if not all_required_valid(results):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
