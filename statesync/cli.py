"""
CLI interface for the synchronized state store.

Usage:
    statesync show
    statesync set feedHideRead true
    statesync seen at://did:plc:abc/app.bsky.feed.post/123
    statesync push
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from typing_extensions import Annotated

from .backend import create_store
from .config import StoreConfig, get_store_path, load_or_create_config, save_config, with_sync
from .errors import RemoteSyncError
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .manager import StateManager
from .types import LAST_UPDATED, SEEN, default_state

T = TypeVar("T")

# Configure quiet mode by default (suppress verbose library output)
# Set STATESYNC_VERBOSE=1 to enable debug mode via environment
if os.environ.get("STATESYNC_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"statesync {version('statesync')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="statesync",
    help="Local state store with debounced remote sync.",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode=None,
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="STATESYNC_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Local state store with debounced remote sync."""
    # With no subcommand, show the state summary
    if ctx.invoked_subcommand is None:
        show()


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _load_store_config() -> StoreConfig:
    store_path = get_store_path(_get_store_override())
    try:
        return load_or_create_config(store_path)
    except (OSError, ValueError, RuntimeError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _with_manager(fn: Callable[[StateManager], Awaitable[T]]) -> T:
    """Open the store, initialize a manager, run fn, then persist and close."""
    config = _load_store_config()
    ops_handler = configure_ops_log(config.path)

    async def run() -> T:
        store = create_store(config)
        manager = await StateManager.create(config.sync, store, default_state())
        try:
            return await fn(manager)
        finally:
            if manager.dirty:
                manager.save_immediately(True, False)
            await manager.close()
            store.close()

    try:
        return asyncio.run(run())
    finally:
        logging.getLogger("statesync").removeHandler(ops_handler)
        ops_handler.close()


async def _persist(manager: StateManager) -> None:
    """Save locally now and, with sync enabled, push and wait for the result."""
    task = manager.save_immediately(True, manager.sync_enabled)
    if task is not None:
        result = await task
        if result is None:
            typer.echo(f"Warning: remote sync failed: {manager.status.detail}", err=True)
        elif not result.written:
            typer.echo("Remote state is newer; local change kept locally only", err=True)


def _parse_value(raw: str) -> Any:
    """Interpret a command-line value as JSON, falling back to a plain string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _summary_lines(state: dict) -> list[str]:
    lines = [f"lastUpdated: {state.get(LAST_UPDATED) or '-'}"]
    seen = state.get(SEEN) or {}
    read = sum(1 for v in seen.values() if v)
    lines.append(f"seen: {len(seen)} entries ({read} read, {len(seen) - read} unread)")
    for key in sorted(state):
        if key in (LAST_UPDATED, SEEN):
            continue
        value = json.dumps(state[key], ensure_ascii=False)
        if len(value) > 70:
            value = value[:67] + "..."
        lines.append(f"{key}: {value}")
    return lines


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def show():
    """Show the current state document."""
    async def op(manager: StateManager) -> dict:
        return dict(manager.state)

    state = _with_manager(op)
    if _get_json_output():
        typer.echo(json.dumps(state, indent=2, ensure_ascii=False))
    else:
        typer.echo("\n".join(_summary_lines(state)))


@app.command()
def get(
    key: Annotated[str, typer.Argument(help="Top-level state key")],
):
    """Print one value from the state document as JSON."""
    async def op(manager: StateManager) -> tuple[bool, Any]:
        return key in manager, manager.get(key)

    found, value = _with_manager(op)
    if not found:
        typer.echo(f"Not found: {key}", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(value, indent=2, ensure_ascii=False))


@app.command("set")
def set_value(
    key: Annotated[str, typer.Argument(help="Top-level state key")],
    value: Annotated[str, typer.Argument(help="Value (JSON, or a plain string)")],
):
    """Set a top-level value and save it."""
    if key == LAST_UPDATED:
        typer.echo("Error: lastUpdated is maintained automatically", err=True)
        raise typer.Exit(1)

    async def op(manager: StateManager) -> None:
        manager.update_state({key: _parse_value(value)})
        await _persist(manager)

    _with_manager(op)
    typer.echo(f"Set {key}")


@app.command()
def seen(
    post_id: Annotated[str, typer.Argument(help="Post identifier")],
    read: Annotated[Optional[bool], typer.Option(
        "--read/--unread",
        help="Mark read or unread (default: toggle)",
    )] = None,
):
    """Mark a post read or unread."""
    from .tracking import mark_seen

    async def op(manager: StateManager) -> bool:
        result = mark_seen(manager, post_id, read)
        await _persist(manager)
        return result

    is_read = _with_manager(op)
    typer.echo(f"{post_id}: {'read' if is_read else 'unread'}")


@app.command()
def prune():
    """Apply the history retention limit now."""
    async def op(manager: StateManager) -> tuple[int, int]:
        before = len(manager.get(SEEN) or {})
        manager.save_immediately(True, False)
        return before, len(manager.get(SEEN) or {})

    before, after = _with_manager(op)
    typer.echo(f"Pruned seen map: {before} -> {after} entries")


@app.command()
def push(
    force: Annotated[bool, typer.Option(
        "--force", "-f",
        help="Write even if the remote copy is newer or empty",
    )] = False,
):
    """Push local state to the remote store."""
    async def op(manager: StateManager):
        return await manager.push_now(force=force)

    try:
        result = _with_manager(op)
    except RemoteSyncError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if result.written:
        typer.echo(f"Pushed (lastUpdated={result.since})")
    else:
        typer.echo(
            f"Skipped: remote is newer or empty "
            f"(local={result.since or '-'}, remote={result.remote_updated or '-'})"
        )


@app.command()
def pull():
    """Replace local state with the remote copy if it is newer."""
    async def op(manager: StateManager) -> bool:
        return await manager.pull_now()

    try:
        applied = _with_manager(op)
    except RemoteSyncError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo("Pulled remote state" if applied else "Local state is up to date")


@app.command()
def status():
    """Compare local and remote lastUpdated."""
    async def op(manager: StateManager) -> dict:
        info = {
            "sync_enabled": manager.sync_enabled,
            "local_updated": manager.get(LAST_UPDATED),
            "remote_updated": None,
            "seen": len(manager.get(SEEN) or {}),
            "max_entries": manager.config.max_entries,
        }
        if manager.sync_enabled:
            try:
                info["remote_updated"] = await manager.remote.get_remote_updated()
            except RemoteSyncError as e:
                info["error"] = str(e)
        return info

    info = _with_manager(op)
    if _get_json_output():
        typer.echo(json.dumps(info, indent=2))
        return
    typer.echo(f"sync: {'enabled' if info['sync_enabled'] else 'disabled'}")
    typer.echo(f"local lastUpdated:  {info['local_updated'] or '-'}")
    if info["sync_enabled"]:
        typer.echo(f"remote lastUpdated: {info['remote_updated'] or '-'}")
    if "error" in info:
        typer.echo(f"remote error: {info['error']}")
    typer.echo(f"seen: {info['seen']} / {info['max_entries']}")


@app.command()
def reset(
    yes: Annotated[bool, typer.Option(
        "--yes", "-y",
        help="Don't ask for confirmation",
    )] = False,
):
    """Reset local state to the defaults."""
    if not yes:
        typer.confirm("Discard the local state document?", abort=True)

    async def op(manager: StateManager) -> None:
        manager.reset_state(default_state())
        manager.save_immediately(True, False)

    _with_manager(op)
    typer.echo("State reset")


@app.command()
def blocks(
    force: Annotated[bool, typer.Option(
        "--force", "-f",
        help="Refetch even if the lists are fresh",
    )] = False,
):
    """Refresh the cached block lists."""
    from .blocklists import BlockListRefresher

    async def op(manager: StateManager) -> list[str]:
        updated = await BlockListRefresher(manager).refresh(force=force)
        if updated:
            await _persist(manager)
        return updated

    updated = _with_manager(op)
    typer.echo(f"Updated: {', '.join(updated)}" if updated else "Block lists are fresh")


@app.command()
def config(
    enable_sync: Annotated[Optional[bool], typer.Option(
        "--sync/--no-sync",
        help="Enable or disable remote sync",
    )] = None,
    max_entries: Annotated[Optional[int], typer.Option(
        "--max-entries",
        help="History retention limit",
    )] = None,
):
    """Show or change the store configuration."""
    cfg = _load_store_config()
    changes: dict[str, Any] = {}
    if enable_sync is not None:
        changes["enabled"] = enable_sync
    if max_entries is not None:
        changes["max_entries"] = max_entries
    if changes:
        try:
            cfg = with_sync(cfg, **changes)
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
        save_config(cfg)

    sync = cfg.sync
    info = {
        "path": str(cfg.path),
        "config": str(cfg.config_path),
        "backend": cfg.backend,
        "key": sync.state_key,
        "sync_enabled": sync.enabled,
        "save_delay": sync.save_delay,
        "sync_delay": sync.sync_delay,
        "max_entries": sync.max_entries,
        "remote": sync.remote.url if sync.remote else None,
    }
    if _get_json_output():
        typer.echo(json.dumps(info, indent=2))
    else:
        for k, v in info.items():
            typer.echo(f"{k}: {v if v is not None else '-'}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="statesync CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
