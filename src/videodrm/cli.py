from __future__ import annotations

import json
import uuid
from dataclasses import fields
from datetime import datetime, timedelta, UTC
from pathlib import Path

import typer

from .access.catalog import load_fixtures
from .config import DRMConfig, load_config
from .detection.base import ClientEnvironment
from .detection.engine import AntiPiracyEngine
from .encryption import cipher
from .errors import ConfigError, DecryptionError
from .server.auth import TokenIssuer
from .utils.logs import configure_logging
from .watermarking.overlay import build_overlay, derive_payload, forensic_watermark

app = typer.Typer(help="Video DRM core: access decisions, sessions, watermarks and anti-piracy scans.")

SECRET_FIELDS = {"jwt_secret", "token_secret", "storage_secret"}


def _config(path: str) -> DRMConfig:
    try:
        config = load_config(path or None)
    except ConfigError as e:
        typer.echo(f"ERROR: {e.message}", err=True)
        raise typer.Exit(code=1)
    configure_logging(config.log_level, config.log_json)
    return config


def _key(hex_key: str) -> bytes:
    try:
        key = bytes.fromhex(hex_key)
    except ValueError:
        raise typer.BadParameter("Key must be hex encoded")
    if len(key) != cipher.KEY_SIZE:
        raise typer.BadParameter(f"Key must be {cipher.KEY_SIZE} bytes ({cipher.KEY_SIZE * 2} hex chars)")
    return key


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", help="Port to listen on"),
    config: str = typer.Option("", "-c", "--config", help="YAML config file"),
    fixtures: str = typer.Option("", "-f", "--fixtures", help="YAML file with videos and purchases"),
):
    """Run the DRM HTTP API."""
    import uvicorn

    from .server.app import create_app

    cfg = _config(config)
    options = {"config": cfg}
    if fixtures:
        fixtures_path = Path(fixtures)
        if not fixtures_path.exists():
            raise typer.BadParameter(f"Fixture file not found: {fixtures}")
        options["catalog"], options["purchases"] = load_fixtures(fixtures_path)
    if cfg.relaxed_mode:
        typer.echo("WARNING: relaxed mode, rate limiting is disabled", err=True)
    uvicorn.run(create_app(**options), host=host, port=port, log_config=None)


@app.command("issue-token")
def issue_token(
    user_id: str = typer.Argument(..., help="User id to embed"),
    role: str = typer.Option("student", "--role", help="student or admin"),
    ttl_hours: int = typer.Option(24 * 7, "--ttl-hours", help="Token lifetime in hours"),
    config: str = typer.Option("", "-c", "--config", help="YAML config file"),
):
    """Issue a bearer token signed with the configured JWT secret."""
    cfg = _config(config)
    typer.echo(TokenIssuer(cfg.jwt_secret).issue(user_id, role, ttl=timedelta(hours=ttl_hours)))


@app.command("encrypt-url")
def encrypt_url(
    url: str = typer.Argument(..., help="Storage URL to protect"),
    session_id: str = typer.Option("", "-s", "--session-id", help="Session to bind to (generated if empty)"),
    key: str = typer.Option("", "-k", "--key", help="Hex session key (generated if empty)"),
):
    """Encrypt a URL under a session key."""
    raw_key = _key(key) if key else cipher.generate_key()
    sid = session_id or str(uuid.uuid4())
    typer.echo(f"session: {sid}")
    typer.echo(f"key:     {raw_key.hex()}")
    typer.echo(f"token:   {cipher.encrypt_url(url, raw_key, sid)}")


@app.command("decrypt-url")
def decrypt_url(
    token: str = typer.Argument(..., help="Token produced by encrypt-url"),
    session_id: str = typer.Option(..., "-s", "--session-id", help="Session the token is bound to"),
    key: str = typer.Option(..., "-k", "--key", help="Hex session key"),
):
    """Decrypt a URL token."""
    try:
        typer.echo(cipher.decrypt_url(token, _key(key), session_id))
    except DecryptionError as e:
        typer.echo(f"[FAIL] {e.message}", err=True)
        raise typer.Exit(code=1)


@app.command("watermark")
def watermark(
    user_id: str = typer.Argument(..., help="Viewer id"),
    video_id: str = typer.Argument(..., help="Video id"),
    timestamp: int = typer.Option(0, "--timestamp", help="Epoch milliseconds (now if 0)"),
    width: int = typer.Option(0, "--width", help="Render width; prints the overlay when set"),
    height: int = typer.Option(0, "--height", help="Render height"),
    session_id: str = typer.Option("", "--session-id", help="Also print the forensic mark for this session"),
    config: str = typer.Option("", "-c", "--config", help="YAML config file"),
):
    """Derive the watermark payload (and optionally the overlay) for a viewer."""
    cfg = _config(config)
    ts = timestamp or int(datetime.now(UTC).timestamp() * 1000)
    payload = derive_payload(user_id, video_id, ts, cfg.watermark_length)
    out = {"payload": payload, "timestamp": ts}
    if width or height:
        try:
            overlay = build_overlay(payload, width, height, spacing=cfg.watermark_spacing,
                                    rotation=cfg.watermark_rotation, opacity=cfg.watermark_opacity,
                                    font_size=cfg.watermark_font_size)
        except ValueError as e:
            raise typer.BadParameter(str(e))
        out["overlay"] = overlay.to_dict()
    if session_id:
        out["forensic"] = forensic_watermark(user_id, video_id, session_id, ts).to_dict()
    typer.echo(json.dumps(out, indent=2))


@app.command("scan")
def scan(
    environment: str = typer.Argument(..., help="JSON file describing the client environment"),
    config: str = typer.Option("", "-c", "--config", help="YAML config file"),
):
    """Run the anti-piracy heuristics against an environment snapshot.

    Exits with code 2 when the environment is not secure.
    """
    cfg = _config(config)
    env_path = Path(environment)
    if not env_path.exists():
        raise typer.BadParameter(f"Environment file not found: {environment}")
    try:
        env = ClientEnvironment.from_dict(json.loads(env_path.read_text(encoding="utf-8")))
    except (TypeError, ValueError) as e:
        raise typer.BadParameter(f"Invalid environment file: {e}")
    report = AntiPiracyEngine.from_config(cfg).scan(env)
    typer.echo(json.dumps(report.to_dict(), indent=2))
    if not report.is_secure:
        raise typer.Exit(code=2)


@app.command("show-status")
def show_status(
    config: str = typer.Option("", "-c", "--config", help="YAML config file"),
):
    """Show the effective configuration and the registered heuristics."""
    cfg = _config(config)
    typer.echo("\n" + "=" * 60)
    typer.echo("videodrm status")
    typer.echo("=" * 60)

    typer.echo("\n[CONFIG] Effective:")
    for f in fields(DRMConfig):
        value = "<set>" if f.name in SECRET_FIELDS else getattr(cfg, f.name)
        typer.echo(f"  * {f.name:<24} {value}")

    typer.echo("\n[DETECTION] Heuristics:")
    for heuristic in AntiPiracyEngine.from_config(cfg).heuristics:
        flag = " (advisory)" if heuristic.advisory else ""
        typer.echo(f"  * {heuristic.name:<22} {heuristic.description}{flag}")

    typer.echo("\n[COMMANDS] Available:")
    typer.echo("  * API:        serve")
    typer.echo("  * Tokens:     issue-token")
    typer.echo("  * URL codec:  encrypt-url, decrypt-url")
    typer.echo("  * Watermark:  watermark")
    typer.echo("  * Detection:  scan")
    typer.echo("\n" + "=" * 60 + "\n")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
