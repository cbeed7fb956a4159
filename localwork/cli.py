"""CLI for LocalWork - model management, chat and folder permissions."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import click

from localwork import __version__
from localwork.config import DEFAULT_HOST, DEFAULT_PORT, Settings
from localwork.core import LocalWorkCore
from localwork.errors import DownloadFailedError, LocalWorkError
from localwork.schemas import ConversationMessage, DownloadOutcome, DownloadProgress, DownloadStatus

T = TypeVar("T")


def _build_core(settings: Settings) -> LocalWorkCore:
    return LocalWorkCore.from_settings(settings)


def _run(ctx: click.Context, action: Callable[[LocalWorkCore], Awaitable[T]]) -> T:
    """Run an async action against a fresh core, turning core errors into CLI errors."""
    settings: Settings = ctx.obj

    async def runner() -> T:
        core = _build_core(settings)
        try:
            return await action(core)
        finally:
            await core.aclose()

    try:
        return asyncio.run(runner())
    except LocalWorkError as e:
        raise click.ClickException(str(e)) from e


def _format_progress(progress: DownloadProgress) -> str:
    if progress.percent is None:
        return f"  {progress.downloaded_bytes} bytes"
    return f"  {progress.percent:5.1f}% ({progress.downloaded_bytes}/{progress.total_bytes} bytes)"


def _echo_message(message: ConversationMessage) -> None:
    for call in message.tool_calls or []:
        args = ", ".join(f"{k}={v!r}" for k, v in call.arguments.items())
        first_line = (call.result or "").splitlines()[0] if call.result else ""
        click.secho(f"  [{call.name}({args})] {first_line}", fg="red" if call.is_error else "cyan")
    click.echo(message.content)


@click.group()
@click.version_option(version=__version__, prog_name="localwork")
@click.option("--backend-url", envvar="LOCALWORK_BACKEND_URL", default=None, help="Backend engine URL")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, backend_url: str | None, verbose: bool) -> None:
    """LocalWork - local AI assistant core.

    Download and load local models, chat with tool-augmented assistance, and
    manage the folders the assistant may touch.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = Settings.from_env()
    if backend_url:
        settings.backend_url = backend_url
    ctx.obj = settings


@main.command()
@click.option("--port", default=DEFAULT_PORT, help="Port to run the API on")
@click.option("--host", default=DEFAULT_HOST, help="Host to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(port: int, host: str, reload: bool) -> None:
    """Start the LocalWork HTTP API for the desktop UI."""
    import uvicorn

    click.echo(f"Starting LocalWork API on {host}:{port}")
    uvicorn.run(
        "localwork.server:create_default_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@main.command()
@click.pass_context
def info(ctx: click.Context) -> None:
    """Show the backend's name and version."""
    app_info = _run(ctx, lambda core: core.backend.get_app_info())
    click.echo(f"{app_info.name} v{app_info.version}")


@main.command()
@click.pass_context
def models(ctx: click.Context) -> None:
    """List available models and their download state."""
    listed = _run(ctx, lambda core: core.registry.list_models())

    if not listed:
        click.echo("No models configured.")
        return

    for model in listed:
        state = f"downloaded ({model.local_path})" if model.downloaded else "not downloaded"
        size_mb = model.size_bytes / (1024 * 1024)
        click.echo(f"  {model.id:<24} {model.display_name} [{size_mb:.0f} MB] - {state}")


@main.command()
@click.argument("model_id")
@click.pass_context
def download(ctx: click.Context, model_id: str) -> None:
    """Download a model, showing progress.

    \b
    Example:
        localwork download qwen2.5-3b
    """

    async def action(core: LocalWorkCore) -> DownloadOutcome:
        await core.registry.list_models()
        stream = await core.downloads.start_download(model_id)
        click.echo(f"Downloading {model_id}...")
        outcome: DownloadOutcome | None = None
        async for event in stream:
            if isinstance(event, DownloadProgress):
                click.echo(_format_progress(event))
            else:
                outcome = event
        if outcome is None:
            raise DownloadFailedError(f"Download of {model_id} ended without a result")
        return outcome

    outcome = _run(ctx, action)
    if outcome.status == DownloadStatus.COMPLETED:
        click.echo(f"Downloaded to {outcome.local_path}")
    elif outcome.status == DownloadStatus.CANCELLED:
        raise click.ClickException("Download cancelled")
    else:
        raise click.ClickException(f"Download failed: {outcome.error}")


@main.command()
@click.option("--model", "-m", "model_id", required=True, help="Downloaded model to chat with")
@click.pass_context
def chat(ctx: click.Context, model_id: str) -> None:
    """Chat with a downloaded model. Type 'exit' to quit."""

    async def action(core: LocalWorkCore) -> None:
        await core.registry.list_models()
        active = await core.models.load_model(model_id)
        click.echo(f"Model {active.model_id} is ready. Type 'exit' to quit.")

        while True:
            try:
                # Read input off the event loop
                text = await asyncio.to_thread(click.prompt, "you", prompt_suffix="> ")
            except click.Abort:
                break
            if text.strip().lower() in ("exit", "quit"):
                break
            if not text.strip():
                continue
            _echo_message(await core.session.send(text))

    _run(ctx, action)


@main.group()
def folders() -> None:
    """Manage the folders the assistant may access."""


@folders.command("list")
@click.pass_context
def folders_list(ctx: click.Context) -> None:
    """List granted folders."""
    granted = _run(ctx, lambda core: core.permissions.list())
    if not granted:
        click.echo("No folders granted.")
        return
    for permission in granted:
        click.echo(f"  {permission.id}  {permission.path}")


@folders.command("grant")
@click.argument("path", type=click.Path(exists=True, file_okay=False, resolve_path=True))
@click.pass_context
def folders_grant(ctx: click.Context, path: str) -> None:
    """Grant access to a folder and everything below it."""
    permission = _run(ctx, lambda core: core.permissions.grant(path))
    click.echo(f"Granted {permission.path} ({permission.id})")


@folders.command("revoke")
@click.argument("permission_id")
@click.pass_context
def folders_revoke(ctx: click.Context, permission_id: str) -> None:
    """Revoke a folder grant by id."""
    _run(ctx, lambda core: core.permissions.revoke(permission_id))
    click.echo(f"Revoked {permission_id}")


@main.command()
@click.option(
    "--folder", "-f",
    "folder_paths",
    multiple=True,
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Folder the tools may access (repeatable)",
)
def mcp(folder_paths: tuple[str, ...]) -> None:
    """Run the MCP server exposing the folder-scoped file tools.

    \b
    Configure in .mcp.json:
        {
            "mcpServers": {
                "localwork": {
                    "command": "localwork",
                    "args": ["mcp", "--folder", "/path/to/docs"]
                }
            }
        }
    """
    from mcp_localwork.server import serve as serve_mcp

    serve_mcp(folder_paths)


if __name__ == "__main__":
    main()
