"""Click CLI for sending LINE notifications and running the webhook server."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
import uvicorn

from src.audit.logger import AuditLogger
from src.config import LineSettings, setup_logging
from src.messaging.service import LineMessagingService
from src.webhook.signature import compute_signature


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _run(ctx: click.Context, call: Callable[[LineMessagingService], Awaitable[Any]]) -> Any:
    service: LineMessagingService = ctx.obj["service"]

    async def _main() -> Any:
        try:
            return await call(service)
        finally:
            await service.aclose()

    return asyncio.run(_main())


def _parse_json_option(value: str | None, what: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"{what} is not valid JSON: {exc}") from exc


@click.group()
@click.option("--audit-log", default=None, help="Audit log file path (defaults to AUDIT_LOG_PATH).")
@click.option("--log-level", default="WARNING", show_default=True, help="Python logging level.")
@click.pass_context
def cli(ctx: click.Context, audit_log: str | None, log_level: str) -> None:
    """NexusTrade LINE messaging CLI."""
    ctx.ensure_object(dict)
    setup_logging(log_level)
    settings = LineSettings.from_env()
    audit_logger = AuditLogger.from_env(audit_log or settings.audit_log_path)
    ctx.obj["settings"] = settings
    ctx.obj["service"] = LineMessagingService.from_settings(
        settings, ctx.obj.get("transport"), audit_logger,
    )


@cli.command()
@click.argument("user_id")
@click.argument("text")
@click.pass_context
def send(ctx: click.Context, user_id: str, text: str) -> None:
    """Push a text message to one user."""
    result = _run(ctx, lambda service: service.send_message(user_id, text))
    _echo_json(result.model_dump(mode="json"))
    if not result.success:
        ctx.exit(1)


@cli.command()
@click.argument("user_id")
@click.argument("template_name")
@click.option("--data", "data_json", default=None, help="Template data as a JSON object.")
@click.option("--family", type=click.Choice(["text", "flex"]), default=None, help="Template family.")
@click.pass_context
def template(
    ctx: click.Context, user_id: str, template_name: str, data_json: str | None, family: str | None,
) -> None:
    """Render a template and push it to one user."""
    data = _parse_json_option(data_json, "--data") or {}
    options = {"family": family} if family else {}
    result = _run(ctx, lambda service: service.send_template_message(user_id, template_name, data, options))
    _echo_json(result.model_dump(mode="json"))
    if not result.success:
        ctx.exit(1)


@cli.command()
@click.argument("users_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("text")
@click.option("--batch-size", type=int, default=None, help="Recipients per concurrent chunk.")
@click.option("--batch-delay", type=int, default=None, help="Pause between chunks in milliseconds.")
@click.pass_context
def batch(
    ctx: click.Context, users_file: Path, text: str, batch_size: int | None, batch_delay: int | None,
) -> None:
    """Push a text message to every user id listed (one per line) in USERS_FILE."""
    user_ids = [line.strip() for line in users_file.read_text().splitlines() if line.strip()]
    options: dict[str, Any] = {}
    if batch_size is not None:
        options["batch_size"] = batch_size
    if batch_delay is not None:
        options["batch_delay"] = batch_delay
    result = _run(ctx, lambda service: service.send_batch_message(user_ids, text, options))
    _echo_json(result.model_dump(mode="json"))
    if not result.success:
        ctx.exit(1)


@cli.command()
@click.option("--check", is_flag=True, help="Also check the LINE API (quota endpoint).")
@click.pass_context
def status(ctx: click.Context, check: bool) -> None:
    """Show configuration status."""
    service: LineMessagingService = ctx.obj["service"]
    output = service.get_status()
    if check:
        output["connection"] = _run(ctx, lambda svc: svc.test_connection())
    _echo_json(output)


@cli.command()
@click.pass_context
def templates(ctx: click.Context) -> None:
    """List available template names by family."""
    _echo_json(ctx.obj["service"].get_available_templates())


@cli.command()
@click.argument("body_file", type=click.File("rb"))
@click.pass_context
def sign(ctx: click.Context, body_file: Any) -> None:
    """Print the X-Line-Signature for a request body (use - for stdin)."""
    settings: LineSettings = ctx.obj["settings"]
    if not settings.channel_secret:
        raise click.ClickException("LINE_CHANNEL_SECRET is not set")
    click.echo(compute_signature(settings.channel_secret, body_file.read()))


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Run the webhook and internal API server."""
    uvicorn.run("src.api.app:create_app_from_env", host=host, port=port, factory=True)
