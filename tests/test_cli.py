"""Unit tests for the changes-uploader CLI commands."""

import io
import json
import os
import shlex
import shutil
import stat
import subprocess
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest
from click.testing import CliRunner
from rich.console import Console

from changes_uploader.cli import HOOK_MARKER, main
from changes_uploader.config import UploaderConfig
from changes_uploader.context import AppContext
from changes_uploader.output import OutputFormatter
from changes_uploader.ssh_config import HostConfigResolver
from changes_uploader.storage import MemoryStore
from changes_uploader.tracker import canonical_path
from changes_uploader.vcs import GitStatusAdapter, StatusEntry


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def workspace(tmp_path):
    """Workspace with three modified files."""
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    for name in ("a.py", "b.py", "c.py"):
        (root / "src" / name).write_text(name)
    return Path(canonical_path(root))


@pytest.fixture
def ssh_config(tmp_path):
    key = tmp_path / "id_deploy"
    key.write_text("key")
    path = tmp_path / "ssh_config"
    path.write_text(
        f"Host prod\n  HostName example.com\n  User deploy\n  IdentityFile {key}\n"
    )
    return path


@pytest.fixture
def adapter(workspace):
    mock = Mock(spec=GitStatusAdapter)
    mock.find_repository_root.return_value = str(workspace)
    mock.scan_status.return_value = [
        StatusEntry("src/a.py", " M"),
        StatusEntry("src/b.py", "A "),
        StatusEntry("src/c.py", "??"),
    ]
    mock.list_last_commit_files.return_value = ["src/a.py"]
    mock.hooks_dir.return_value = workspace / ".git" / "hooks"
    return mock


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def transport(session):
    mock = Mock()
    mock.connect.return_value = session
    return mock


class Streams:
    """Captured console output."""

    def __init__(self):
        self.out = io.StringIO()
        self.err = io.StringIO()

    def formatter(self, **kwargs):
        return OutputFormatter(
            console=Console(file=self.out, width=200),
            err_console=Console(file=self.err, width=200),
            **kwargs,
        )


@pytest.fixture
def streams():
    return Streams()


@pytest.fixture
def make_app(tmp_path, workspace, ssh_config, adapter, transport, streams):
    """Build an application context wired to mocks."""

    def _make(json_output=False, quiet=False, **config_overrides):
        settings = {
            "remote_host": "prod",
            "remote_root": "/srv/app",
            "ssh_config_path": str(ssh_config),
            "workspaces": [workspace],
        }
        settings.update(config_overrides)
        return AppContext.create(
            UploaderConfig(**settings),
            output=streams.formatter(json_output=json_output, quiet=quiet),
            store=MemoryStore(),
            adapter=adapter,
            transport=transport,
            resolver=HostConfigResolver(home=tmp_path / "home", system_config=None),
        )

    return _make


def invoke(runner, app, args):
    return runner.invoke(main, args, obj={"app": app, "out": app.output})


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ("init", "refresh", "list", "upload", "upload-all", "on-commit"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_invalid_config_file(self, runner, tmp_path):
        config = tmp_path / "config.json"
        config.write_text("{broken")

        result = runner.invoke(
            main, ["--config", str(config), "-w", str(tmp_path), "list"]
        )

        assert result.exit_code == 1

    def test_builds_context_from_config_file(self, runner, tmp_path):
        """Test a real context is built from --config and --state-file."""
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"remote_host": "prod"}))
        state = tmp_path / "state.json"
        state.write_text(
            json.dumps(
                {"trackedFiles": [{"filePath": "/w/x.py", "status": "untracked"}]}
            )
        )

        result = runner.invoke(
            main,
            [
                "--config", str(config),
                "--state-file", str(state),
                "-w", str(tmp_path),
                "--json",
                "list",
            ],
        )

        assert result.exit_code == 0
        assert json.loads(result.stdout)[0]["filePath"] == "/w/x.py"


class TestInitCommand:
    """Tests for the init command."""

    def test_init_writes_config(self, runner, tmp_path):
        config = tmp_path / "conf" / "config.json"

        result = runner.invoke(
            main,
            ["--config", str(config), "init"],
            input="prod\n/srv/app\n/etc/ssh_cfg\n",
        )

        assert result.exit_code == 0
        data = json.loads(config.read_text())
        assert data["remote_host"] == "prod"
        assert data["remote_root"] == "/srv/app"
        assert data["ssh_config_path"] == "/etc/ssh_cfg"

    def test_init_with_options(self, runner, tmp_path):
        config = tmp_path / "config.json"

        result = runner.invoke(
            main,
            [
                "--config", str(config),
                "init",
                "--remote-host", "h",
                "--remote-root", "/r",
                "--ssh-config", "/c",
            ],
        )

        assert result.exit_code == 0
        assert json.loads(config.read_text())["remote_host"] == "h"


class TestRefreshAndList:
    """Tests for refresh, list and status."""

    def test_refresh(self, runner, make_app, streams):
        app = make_app()

        result = invoke(runner, app, ["refresh"])

        assert result.exit_code == 0
        assert "Tracking 3 modified file(s)" in streams.out.getvalue()
        assert len(app.tracker.list()) == 3

    def test_refresh_json(self, runner, make_app, workspace):
        app = make_app(json_output=True)

        result = invoke(runner, app, ["refresh"])

        data = json.loads(result.stdout)
        assert data["repositories"] == {str(workspace): str(workspace)}
        statuses = {Path(f["filePath"]).name: f["status"] for f in data["files"]}
        assert statuses == {"a.py": "unstaged", "b.py": "staged", "c.py": "untracked"}

    def test_refresh_without_repository(self, runner, make_app, adapter, streams):
        adapter.find_repository_root.return_value = None

        result = invoke(runner, make_app(), ["refresh"])

        assert result.exit_code == 0
        assert "No git repository" in streams.err.getvalue()
        assert "No modified files" in streams.out.getvalue()

    def test_list_empty(self, runner, make_app, streams):
        result = invoke(runner, make_app(), ["list"])

        assert result.exit_code == 0
        assert "No tracked files" in streams.out.getvalue()

    def test_list_table(self, runner, make_app, streams):
        app = make_app()
        app.tracker.refresh()

        result = invoke(runner, app, ["list"])

        assert result.exit_code == 0
        output = streams.out.getvalue()
        assert "a.py" in output
        assert "untracked" in output

    def test_status_alias(self, runner, make_app):
        app = make_app(json_output=True)
        app.tracker.refresh()

        result = invoke(runner, app, ["status"])

        assert result.exit_code == 0
        assert len(json.loads(result.stdout)) == 3


class TestRemoveCommand:
    """Tests for the remove command."""

    def test_remove_tracked(self, runner, make_app, workspace, streams):
        app = make_app()
        app.tracker.refresh()

        result = invoke(runner, app, ["remove", str(workspace / "src" / "a.py")])

        assert result.exit_code == 0
        assert "Removed a.py" in streams.out.getvalue()
        assert not app.tracker.is_tracked(workspace / "src" / "a.py")

    def test_remove_untracked_path_fails(self, runner, make_app, streams):
        result = invoke(runner, make_app(), ["remove", "/nowhere/x.py"])

        assert result.exit_code == 1
        assert "Not tracked" in streams.err.getvalue()


class TestUploadCommand:
    """Tests for the single-file upload command."""

    def test_upload(self, runner, make_app, workspace, transport, session, streams):
        local = workspace / "src" / "a.py"

        result = invoke(runner, make_app(), ["upload", str(local)])

        assert result.exit_code == 0
        profile = transport.connect.call_args[0][0]
        assert profile.host_name == "example.com"
        assert profile.user == "deploy"
        session.put_file.assert_called_once_with(str(local), "/srv/app/src/a.py")
        session.close.assert_called_once()
        assert "Uploaded a.py -> /srv/app/src/a.py" in streams.out.getvalue()

    def test_upload_json(self, runner, make_app, workspace):
        local = workspace / "src" / "a.py"

        result = invoke(runner, make_app(json_output=True), ["upload", str(local)])

        assert json.loads(result.stdout)["remote_path"] == "/srv/app/src/a.py"

    def test_upload_outside_workspace(self, runner, make_app, tmp_path, transport):
        outside = tmp_path / "outside.txt"
        outside.write_text("x")

        result = invoke(runner, make_app(), ["upload", str(outside)])

        assert result.exit_code == 1
        transport.connect.assert_not_called()

    def test_upload_missing_settings(self, runner, make_app, workspace, streams):
        app = make_app(remote_root=None)

        result = invoke(runner, app, ["upload", str(workspace / "src" / "a.py")])

        assert result.exit_code == 1
        assert "remote_root" in streams.err.getvalue()

    def test_upload_missing_key(self, runner, make_app, workspace, tmp_path, transport, streams):
        """Test a profile without a readable key fails before connecting."""
        config = tmp_path / "bad_ssh_config"
        config.write_text("Host prod\n  User deploy\n  IdentityFile /no/such/key\n")
        app = make_app(ssh_config_path=str(config))

        result = invoke(runner, app, ["upload", str(workspace / "src" / "a.py")])

        assert result.exit_code == 1
        assert "Upload failed" in streams.err.getvalue()
        transport.connect.assert_not_called()

    def test_upload_transfer_error(self, runner, make_app, workspace, session, streams):
        session.put_file.side_effect = OSError("permission denied")

        result = invoke(runner, make_app(), ["upload", str(workspace / "src" / "a.py")])

        assert result.exit_code == 1
        assert "permission denied" in streams.err.getvalue()


class TestUploadAllCommand:
    """Tests for the batch upload command."""

    def test_nothing_to_upload(self, runner, make_app, transport, streams):
        result = invoke(runner, make_app(), ["upload-all"])

        assert result.exit_code == 0
        assert "No files to upload" in streams.out.getvalue()
        transport.connect.assert_not_called()

    def test_upload_all(self, runner, make_app, transport, session, streams):
        app = make_app()
        app.tracker.refresh()

        result = invoke(runner, app, ["upload-all", "--no-progress"])

        assert result.exit_code == 0
        transport.connect.assert_called_once()
        assert session.put_file.call_count == 3
        session.close.assert_called_once()
        assert "3/3 files" in streams.out.getvalue()

    def test_upload_all_with_progress_bar(self, runner, make_app, session):
        app = make_app()
        app.tracker.refresh()

        result = invoke(runner, app, ["upload-all"])

        assert result.exit_code == 0
        assert session.put_file.call_count == 3

    def test_partial_failure_exit_code(self, runner, make_app, session, streams):
        def put(local, remote):
            if local.endswith("b.py"):
                raise OSError("disk full")

        session.put_file.side_effect = put
        app = make_app()
        app.tracker.refresh()

        result = invoke(runner, app, ["upload-all", "--no-progress"])

        assert result.exit_code == 1
        assert session.put_file.call_count == 3
        assert "2/3 files" in streams.out.getvalue()
        assert "disk full" in streams.err.getvalue()

    def test_upload_all_json(self, runner, make_app):
        app = make_app(json_output=True)
        app.tracker.refresh()

        result = invoke(runner, app, ["upload-all"])

        data = json.loads(result.stdout)
        assert data["succeeded"] == 3
        assert data["failed"] == 0
        assert data["cancelled"] is False

    def test_connection_failure(self, runner, make_app, transport, streams):
        transport.connect.side_effect = OSError("unreachable")
        app = make_app()
        app.tracker.refresh()

        result = invoke(runner, app, ["upload-all", "--no-progress"])

        assert result.exit_code == 1
        assert "unreachable" in streams.err.getvalue()


class TestOnCommitCommand:
    """Tests for the on-commit command."""

    def test_on_commit(self, runner, make_app, workspace, streams):
        app = make_app()
        app.tracker.refresh()

        result = invoke(runner, app, ["on-commit", "--repo", str(workspace)])

        assert result.exit_code == 0
        assert "Removed 1 committed file(s)" in streams.out.getvalue()
        assert {f.file_name for f in app.tracker.list()} == {"b.py", "c.py"}

    def test_on_commit_json(self, runner, make_app):
        app = make_app(json_output=True)
        app.tracker.refresh()

        result = invoke(runner, app, ["on-commit"])

        assert json.loads(result.stdout) == {"removed": 1}


class TestInstallHookCommand:
    """Tests for the install-hook command."""

    def test_installs_hook(self, runner, make_app, workspace):
        result = invoke(runner, make_app(), ["install-hook"])

        assert result.exit_code == 0
        hook = workspace / ".git" / "hooks" / "post-commit"
        content = hook.read_text()
        assert HOOK_MARKER in content
        assert f"on-commit --repo {shlex.quote(str(workspace))}" in content
        assert os.stat(hook).st_mode & stat.S_IXUSR

    def test_hook_carries_options_shell_quoted(
        self, runner, make_app, workspace, tmp_path
    ):
        """Test the hook reuses this invocation's state file, quoted for sh."""
        state_file = tmp_path / "my $HOME `id` \"state\".json"
        app = make_app(state_file=state_file)

        result = runner.invoke(
            main,
            ["--config", str(tmp_path / "cfg.json"), "install-hook"],
            obj={"app": app, "out": app.output},
        )

        assert result.exit_code == 0
        line = (workspace / ".git" / "hooks" / "post-commit").read_text().splitlines()[2]
        args = shlex.split(line.split(" >/dev/null")[0])
        assert args[:3] == [sys.executable, "-m", "changes_uploader.cli"]
        assert args[args.index("--state-file") + 1] == str(state_file.resolve())
        assert args[args.index("--config") + 1] == str((tmp_path / "cfg.json").resolve())
        assert args[args.index("-w") + 1] == str(workspace)
        assert args[-3:] == ["on-commit", "--repo", str(workspace)]

    def test_existing_hook_kept_without_force(self, runner, make_app, workspace, streams):
        hooks = workspace / ".git" / "hooks"
        hooks.mkdir(parents=True)
        (hooks / "post-commit").write_text("#!/bin/sh\necho custom\n")

        result = invoke(runner, make_app(), ["install-hook"])

        assert result.exit_code == 1
        assert "--force" in streams.err.getvalue()
        assert "custom" in (hooks / "post-commit").read_text()

    def test_existing_hook_replaced_with_force(self, runner, make_app, workspace):
        hooks = workspace / ".git" / "hooks"
        hooks.mkdir(parents=True)
        (hooks / "post-commit").write_text("#!/bin/sh\necho custom\n")

        result = invoke(runner, make_app(), ["install-hook", "--force"])

        assert result.exit_code == 0
        assert HOOK_MARKER in (hooks / "post-commit").read_text()

    def test_no_repository(self, runner, make_app, adapter):
        adapter.find_repository_root.return_value = None

        result = invoke(runner, make_app(), ["install-hook"])

        assert result.exit_code == 1


def _git(cwd, *args, env=None):
    subprocess.run(
        [
            "git",
            "-c",
            "user.name=Test",
            "-c",
            "user.email=test@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        env=env,
        check=True,
        capture_output=True,
    )


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestCommitHookWithRealGit:
    """End-to-end install-hook tests against a real repository."""

    @pytest.fixture
    def repo(self, tmp_path):
        root = tmp_path / "my repo"
        root.mkdir()
        _git(root, "init", "-q")
        (root / "base.txt").write_text("base")
        _git(root, "add", "base.txt")
        _git(root, "commit", "-q", "-m", "initial")
        (root / "a.txt").write_text("a")
        (root / "b.txt").write_text("b")
        return Path(canonical_path(root))

    def test_hook_updates_custom_state_file(self, runner, repo, tmp_path):
        """Test a commit removes files from the state file the hook was set up with."""
        state = tmp_path / "custom state.json"
        options = [
            "--config", str(tmp_path / "config.json"),
            "--state-file", str(state),
            "-w", str(repo),
        ]

        assert runner.invoke(main, [*options, "refresh"]).exit_code == 0
        assert runner.invoke(main, [*options, "install-hook"]).exit_code == 0

        package_root = Path(__file__).resolve().parent.parent
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(
            p for p in (str(package_root), env.get("PYTHONPATH")) if p
        )
        _git(repo, "add", "a.txt", env=env)
        _git(repo, "commit", "-q", "-m", "add a", env=env)

        result = runner.invoke(main, [*options, "--json", "list"])

        assert result.exit_code == 0
        names = {f["fileName"] for f in json.loads(result.stdout)}
        assert names == {"b.txt"}
