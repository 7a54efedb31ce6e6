"""CLI interface for changes-uploader."""

import logging
import os
import shlex
import signal
import stat
import sys
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

import click

from . import __version__
from .cli_progress import UploadProgressDisplay
from .config import load_config, save_config
from .context import AppContext
from .exceptions import ConfigError, UploaderError, VcsCommandFailedError
from .models import canonical_path
from .output import OutputFormatter
from .transfer import CancellationToken, find_workspace_root

logger = logging.getLogger(__name__)

HOOK_MARKER = "# installed by changes-uploader"


def _get_app(ctx: Any) -> AppContext:
    """Return the shared application context, creating it on first use."""
    root = ctx.find_root()
    app: Optional[AppContext] = root.obj.get("app")
    if app is not None:
        return app

    out: OutputFormatter = root.obj["out"]
    try:
        config = load_config(
            root.obj.get("config_file"),
            workspaces=root.obj.get("workspaces"),
            state_file=root.obj.get("state_file"),
        )
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)

    app = AppContext.create(config, output=out)
    root.obj["app"] = app
    root.call_on_close(app.close)
    return app


def _require_upload_settings(ctx: Any, app: AppContext) -> None:
    missing = app.config.missing_upload_settings()
    if missing:
        app.output.error(
            f"Missing configuration: {', '.join(missing)}. "
            "Run 'changes-uploader init' or set the CHANGES_UPLOADER_* variables."
        )
        ctx.exit(1)


@contextmanager
def _cancel_on_interrupt(token: CancellationToken, out: OutputFormatter) -> Iterator[None]:
    """Turn the first Ctrl+C into a cancellation request.

    The file being uploaded finishes first. A second Ctrl+C interrupts
    immediately.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.getsignal(signal.SIGINT)

    def handler(signum, frame):
        if token.is_cancelled:
            raise KeyboardInterrupt
        token.cancel()
        out.warning("Cancelling after the current file (Ctrl+C again to abort)")

    signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


@click.group()
@click.option(
    "--config",
    "config_file",
    envvar="CHANGES_UPLOADER_CONFIG",
    type=click.Path(dir_okay=False),
    help="Config file (default: ~/.config/changes-uploader/config.json)",
)
@click.option(
    "--workspace",
    "-w",
    "workspaces",
    multiple=True,
    type=click.Path(exists=True, file_okay=False),
    help="Workspace directory to track (repeatable, default: current directory)",
)
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False),
    help="Where the tracked file list is stored",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: Any,
    config_file: Optional[str],
    workspaces: tuple[str, ...],
    state_file: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """Changes Uploader - track modified files in git and upload them over SFTP."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("out", OutputFormatter(json_output=json, quiet=quiet))
    ctx.obj["config_file"] = config_file
    ctx.obj["workspaces"] = list(workspaces)
    ctx.obj["state_file"] = state_file

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("changes_uploader").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option("--remote-host", prompt="Remote host (SSH alias or host name)")
@click.option("--remote-root", prompt="Remote root directory")
@click.option(
    "--ssh-config",
    "ssh_config_path",
    prompt="SSH config file",
    default=str(Path.home() / ".ssh" / "config"),
    show_default=True,
)
@click.pass_context
def init(
    ctx: Any, remote_host: str, remote_root: str, ssh_config_path: str
) -> None:
    """Write the upload configuration file.

    Settings already in the file (such as workspaces) are kept.
    """
    out: OutputFormatter = ctx.obj["out"]
    try:
        config = load_config(
            ctx.obj.get("config_file"),
            remote_host=remote_host,
            remote_root=remote_root,
            ssh_config_path=ssh_config_path,
        )
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)

    try:
        config_path = save_config(config, ctx.obj.get("config_file"))
    except OSError as e:
        out.error(f"Failed to write config: {e}")
        ctx.exit(1)

    out.print_summary(
        "Initialization Complete",
        [
            ("Remote host", remote_host),
            ("Remote root", remote_root),
            ("SSH config", ssh_config_path),
            ("Config file", str(config_path)),
        ],
    )


@main.command()
@click.pass_context
def refresh(ctx: Any) -> None:
    """Scan the workspaces for modified files."""
    app = _get_app(ctx)
    out = app.output

    files = app.tracker.refresh()

    if out.json_output:
        out.output_json(
            {
                "repositories": app.tracker.repositories,
                "files": [f.to_dict() for f in files],
            }
        )
        return

    if not app.tracker.repositories:
        out.warning("No git repository found in the workspaces")
    if files:
        out.success(f"Tracking {len(files)} modified file(s)")
    else:
        out.info("No modified files")


@main.command("list")
@click.pass_context
def list_files(ctx: Any) -> None:
    """Show the tracked files."""
    app = _get_app(ctx)
    out = app.output
    files = app.tracker.list()

    if out.json_output:
        out.output_json([f.to_dict() for f in files])
        return

    if not files:
        out.info("No tracked files. Run 'changes-uploader refresh' to scan.")
        return

    rows = [
        (
            f.file_name,
            f.status.value,
            f.file_path,
            datetime.fromtimestamp(f.last_modified).strftime("%Y-%m-%d %H:%M:%S"),
        )
        for f in files
    ]
    out.print_table(["Name", "Status", "Path", "Modified"], rows)


main.add_command(list_files, name="status")


@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path())
@click.pass_context
def remove(ctx: Any, paths: tuple[str, ...]) -> None:
    """Stop tracking PATHS."""
    app = _get_app(ctx)
    out = app.output

    failed = 0
    for path in paths:
        name = os.path.basename(path)
        if app.tracker.remove(path):
            out.success(f"Removed {name}")
        else:
            out.error(f"Not tracked: {path}")
            failed += 1

    if failed:
        ctx.exit(1)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def upload(ctx: Any, path: str) -> None:
    """Upload a single file.

    PATH: Local file inside one of the workspaces
    """
    app = _get_app(ctx)
    out = app.output
    _require_upload_settings(ctx, app)

    local_path = Path(canonical_path(path))
    workspace_root = find_workspace_root(local_path, app.config.workspaces)
    if workspace_root is None:
        out.error(f"{local_path} is not inside any workspace")
        ctx.exit(1)

    try:
        profile = app.connection_profile()
        remote_path = app.engine.upload_one(
            profile, local_path, app.config.remote_root, workspace_root
        )
    except KeyboardInterrupt:
        out.warning("\nUpload cancelled by user")
        ctx.exit(130)
    except UploaderError as e:
        out.error(f"Upload failed: {e}")
        ctx.exit(1)

    if out.json_output:
        out.output_json({"path": str(local_path), "remote_path": remote_path})
    else:
        out.success(f"Uploaded {local_path.name} -> {remote_path}")


@main.command("upload-all")
@click.option("--no-progress", is_flag=True, help="Disable progress bar")
@click.pass_context
def upload_all(ctx: Any, no_progress: bool) -> None:
    """Upload every tracked file over one connection."""
    app = _get_app(ctx)
    out = app.output
    _require_upload_settings(ctx, app)

    files = app.tracker.list()
    if not files:
        out.info("No files to upload.")
        return

    items = [
        (f.file_path, find_workspace_root(f.file_path, app.config.workspaces))
        for f in files
    ]
    token = CancellationToken()

    try:
        profile = app.connection_profile()
        with _cancel_on_interrupt(token, out):
            if no_progress or out.quiet or out.json_output:
                summary = app.engine.upload_all(
                    items, profile, app.config.remote_root, cancellation=token
                )
            else:
                with UploadProgressDisplay(len(items)) as display:
                    summary = app.engine.upload_all(
                        items,
                        profile,
                        app.config.remote_root,
                        on_progress=display.on_progress,
                        cancellation=token,
                    )
    except KeyboardInterrupt:
        out.warning("\nUpload aborted by user")
        ctx.exit(130)
    except UploaderError as e:
        out.error(f"Upload failed: {e}")
        ctx.exit(1)

    if out.json_output:
        out.output_json(summary.to_dict())
    else:
        items_summary = [
            ("Successfully uploaded", f"{summary.succeeded_count}/{len(items)} files"),
        ]
        if summary.failed_count:
            items_summary.append(("Failed", f"{summary.failed_count} files"))
        if summary.cancelled:
            items_summary.append(
                ("Cancelled", f"{len(items) - summary.processed_count} files not sent")
            )
        out.print_summary("Upload Complete", items_summary)

    if summary.cancelled:
        ctx.exit(130)
    if summary.failed_count:
        ctx.exit(1)


@main.command("on-commit")
@click.option(
    "--repo",
    type=click.Path(exists=True, file_okay=False),
    help="Repository that was committed to (default: all workspace repositories)",
)
@click.pass_context
def on_commit(ctx: Any, repo: Optional[str]) -> None:
    """Drop files included in the latest commit from the list.

    Intended to be called from a git post-commit hook.
    """
    app = _get_app(ctx)
    removed = app.tracker.on_commit(repo)

    if app.output.json_output:
        app.output.output_json({"removed": removed})
    else:
        app.output.info(f"Removed {removed} committed file(s)")


def hook_command(ctx: Any, app: AppContext, repo_root: str) -> str:
    """Shell command a post-commit hook runs for ``repo_root``.

    The hook runs outside this process, so the interpreter, config file,
    state file and workspaces of the current invocation are written into
    it explicitly. Every argument is shell-quoted.
    """
    args = [sys.executable, "-m", "changes_uploader.cli"]
    config_file = ctx.find_root().obj.get("config_file")
    if config_file:
        args += ["--config", str(Path(config_file).expanduser().resolve())]
    if app.config.state_file:
        args += ["--state-file", str(Path(app.config.state_file).resolve())]
    for workspace in app.config.workspaces:
        args += ["-w", str(workspace)]
    args += ["on-commit", "--repo", repo_root]
    return " ".join(shlex.quote(arg) for arg in args)


@main.command("install-hook")
@click.option("--force", is_flag=True, help="Overwrite an existing post-commit hook")
@click.pass_context
def install_hook(ctx: Any, force: bool) -> None:
    """Install a git post-commit hook that runs 'on-commit'."""
    app = _get_app(ctx)
    out = app.output
    adapter = app.tracker.adapter

    repo_roots = []
    for workspace in app.config.workspaces:
        repo_root = adapter.find_repository_root(str(workspace))
        if repo_root and repo_root not in repo_roots:
            repo_roots.append(repo_root)

    if not repo_roots:
        out.error("No git repository found in the workspaces")
        ctx.exit(1)

    failed = 0
    for repo_root in repo_roots:
        try:
            hook = adapter.hooks_dir(repo_root) / "post-commit"
        except VcsCommandFailedError as e:
            out.error(f"{repo_root}: {e}")
            failed += 1
            continue

        if hook.exists() and HOOK_MARKER not in hook.read_text(errors="replace"):
            if not force:
                out.warning(f"{hook} already exists, use --force to replace it")
                failed += 1
                continue

        hook.parent.mkdir(parents=True, exist_ok=True)
        hook.write_text(
            f"#!/bin/sh\n{HOOK_MARKER}\n"
            f"{hook_command(ctx, app, repo_root)} >/dev/null 2>&1 || true\n",
            encoding="utf-8",
        )
        hook.chmod(hook.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        out.success(f"Installed {hook}")

    if failed:
        ctx.exit(1)


if __name__ == "__main__":
    main()
