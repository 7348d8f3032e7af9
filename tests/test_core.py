"""Tests for core supervisor components."""

import asyncio
import json
import os
import sys
import time

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.cancellation import CancellationToken
from core.config import ConfigLoader, DevConfig
from core.context import DevContext
from core.errors import (
    AlreadyExistsError,
    ConfigError,
    ErrorSeverity,
    FsOtherError,
    NotFoundError,
    TaskError,
    translate_os_errors,
)
from core.fsutil import copy_if_different, mkdir_if_missing, remove_if_exists, stat_or_none
from core.globspec import GlobSpec, glob_match
from core.project import locate_functions_dir, verify_functions_dir


class TestCancellationToken:
    """Test one-shot broadcast cancellation."""

    def test_initial_state(self):
        token = CancellationToken()
        assert not token.aborted
        assert token.reason is None

    def test_second_trigger_keeps_first_reason(self):
        """Triggering twice keeps the first reason and notifies once."""
        token = CancellationToken()
        calls = []
        token.on_trigger(calls.append)

        assert token.trigger("SIGINT") is True
        assert token.trigger("startup_timeout") is False

        assert token.aborted
        assert token.reason == "SIGINT"
        assert calls == ["SIGINT"]

    def test_listener_registered_after_trigger_runs_immediately(self):
        token = CancellationToken()
        token.trigger("done")

        calls = []
        token.on_trigger(calls.append)
        assert calls == ["done"]

    def test_unsubscribe(self):
        token = CancellationToken()
        calls = []
        remove = token.on_trigger(calls.append)
        remove()

        token.trigger("x")
        assert calls == []

    def test_failing_listener_does_not_block_others(self):
        token = CancellationToken()
        calls = []

        def broken(reason):
            raise ValueError("boom")

        token.on_trigger(broken)
        token.on_trigger(calls.append)
        token.trigger("stop")

        assert calls == ["stop"]

    @pytest.mark.asyncio
    async def test_wait_returns_reason(self):
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        token.trigger("SIGTERM")
        assert await asyncio.wait_for(waiter, 1) == "SIGTERM"

    @pytest.mark.asyncio
    async def test_wait_after_trigger(self):
        token = CancellationToken()
        token.trigger()
        assert await asyncio.wait_for(token.wait(), 1) is None


class TestGlobSpec:
    """Test include/exclude glob matching."""

    @pytest.fixture
    def globs(self):
        return GlobSpec.from_patterns(
            ["views/**/*.ejs", "public/**/*"],
            ["**/*.ts", "**/*.mts"],
        )

    def test_includes(self, globs):
        assert globs.matches("views/index.ejs")
        assert globs.matches("views/partials/head.ejs")
        assert globs.matches("public/css/site.css")
        assert globs.matches("public/favicon.ico")

    def test_not_included(self, globs):
        assert not globs.matches("views/index.html")
        assert not globs.matches("routes/api.js")
        assert not globs.matches("public")

    def test_exclude_wins_over_include(self, globs):
        """A path matching both an include and an exclude is excluded."""
        assert not globs.matches("public/app.mts")
        assert not globs.matches("public/js/deep/app.ts")

    def test_dotfiles_skipped_by_default(self, globs):
        assert not globs.matches("public/.DS_Store")
        assert not globs.matches("public/.cache/file.css")

        dotted = GlobSpec.from_patterns(["public/**/*"], dot=True)
        assert dotted.matches("public/.DS_Store")

    def test_windows_separators(self, globs):
        assert globs.matches("views\\partials\\head.ejs")

    def test_glob_match_globstar(self):
        assert glob_match("a/b/c.txt", "**")
        assert glob_match("c.txt", "**/*.txt")
        assert glob_match("a/b/c.txt", "a/**/c.txt")
        assert glob_match("a/c.txt", "a/**/c.txt")
        assert not glob_match("a/b/c.txt", "a/*.txt")
        assert glob_match("a/b.txt", "a/?.txt")

    def test_iter_matching(self, globs, tmp_path):
        (tmp_path / "views" / "partials").mkdir(parents=True)
        (tmp_path / "views" / "index.ejs").write_text("<h1>")
        (tmp_path / "views" / "partials" / "head.ejs").write_text("<head>")
        (tmp_path / "public").mkdir()
        (tmp_path / "public" / "app.mts").write_text("export {}")
        (tmp_path / "public" / "app.css").write_text("body{}")
        (tmp_path / "index.ts").write_text("")

        assert sorted(globs.iter_matching(tmp_path)) == [
            "public/app.css",
            "views/index.ejs",
            "views/partials/head.ejs",
        ]


class TestFsUtil:
    """Test copy-if-different and friends."""

    def test_copy_preserves_mtime(self, tmp_path):
        src = tmp_path / "src.txt"
        src.write_text("hello")
        old = time.time() - 3600
        os.utime(src, (old, old))
        dst = tmp_path / "out" / "nested" / "dst.txt"

        assert copy_if_different(src, dst) is True
        assert dst.read_text() == "hello"
        assert dst.stat().st_mtime_ns == src.stat().st_mtime_ns

    def test_unchanged_file_not_copied(self, tmp_path):
        src = tmp_path / "src.txt"
        src.write_text("hello")
        dst = tmp_path / "dst.txt"

        assert copy_if_different(src, dst) is True
        assert copy_if_different(src, dst) is False

    def test_size_change_copies(self, tmp_path):
        src = tmp_path / "src.txt"
        src.write_text("hello")
        dst = tmp_path / "dst.txt"
        copy_if_different(src, dst)

        src.write_text("hello world")
        assert copy_if_different(src, dst) is True
        assert dst.read_text() == "hello world"

    def test_missing_source(self, tmp_path):
        with pytest.raises(NotFoundError):
            copy_if_different(tmp_path / "missing", tmp_path / "dst")

    def test_mkdir_over_file(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        with pytest.raises(AlreadyExistsError):
            mkdir_if_missing(blocker)
        assert mkdir_if_missing(tmp_path / "new" / "dir") is True
        assert mkdir_if_missing(tmp_path / "new" / "dir") is False

    def test_remove_if_exists(self, tmp_path):
        target = tmp_path / "file"
        target.write_text("")

        assert remove_if_exists(target) is True
        assert remove_if_exists(target) is False
        assert stat_or_none(target) is None

    def test_remove_leaves_directories(self, tmp_path):
        (tmp_path / "dir").mkdir()
        assert remove_if_exists(tmp_path / "dir") is False
        assert (tmp_path / "dir").is_dir()

    def test_translate_other_errors(self):
        with pytest.raises(FsOtherError) as exc_info:
            with translate_os_errors("/locked"):
                raise PermissionError(13, "Permission denied")

        assert isinstance(exc_info.value.cause, PermissionError)
        assert exc_info.value.to_dict()["context"]["path"] == "/locked"


class TestErrors:
    """Test error serialization."""

    def test_task_error_to_dict(self):
        error = TaskError("emulator died", task="emulator")

        data = error.to_dict()
        assert data["type"] == "TaskError"
        assert data["severity"] == ErrorSeverity.HIGH.value
        assert data["context"]["task"] == "emulator"


class TestConfigLoader:
    """Test YAML/JSON config loading."""

    def test_defaults(self, tmp_path):
        config = ConfigLoader(str(tmp_path)).load()

        assert config.env_name == "dev"
        assert config.sync.debounce_ms == 25
        assert config.sync.include == ["views/**/*.ejs", "public/**/*"]
        assert config.sync.exclude == ["**/*.ts", "**/*.mts"]
        assert config.supervisor.startup_timeout_seconds == 20.0
        assert config.emulator.ready_marker == "All emulators ready!"

    def test_load_yaml(self, tmp_path):
        (tmp_path / "devsup.yaml").write_text(
            "env_name: staging\n"
            "sync:\n"
            "  debounce_ms: 100\n"
            "  drain_on_stop: true\n"
        )
        config = ConfigLoader(str(tmp_path)).load()

        assert config.env_name == "staging"
        assert config.sync.debounce_ms == 100
        assert config.sync.drain_on_stop is True

    def test_load_json(self, tmp_path):
        path = tmp_path / "dev.json"
        path.write_text(json.dumps({"emulator": {"enabled": False}}))

        config = ConfigLoader(str(tmp_path)).load(str(path))
        assert config.emulator.enabled is False

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("sync: [unclosed")

        with pytest.raises(ConfigError):
            ConfigLoader(str(tmp_path)).load(str(path))

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("sync:\n  debounce_ms: -1\n")

        with pytest.raises(ConfigError):
            ConfigLoader(str(tmp_path)).load(str(path))

    def test_unknown_stop_signal(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("build:\n  stop_signal: SIGNOPE\n")

        with pytest.raises(ConfigError, match="stop_signal"):
            ConfigLoader(str(tmp_path)).load(str(path))

    def test_stop_signal_normalized(self, tmp_path):
        path = tmp_path / "signals.yaml"
        path.write_text("build:\n  stop_signal: int\nemulator:\n  stop_signal: sigterm\n")

        config = ConfigLoader(str(tmp_path)).load(str(path))
        assert config.build.stop_signal == "SIGINT"
        assert config.emulator.stop_signal == "SIGTERM"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            ConfigLoader(str(tmp_path)).load(str(tmp_path / "nope.yaml"))

    def test_config_hash(self):
        assert DevConfig().config_hash() == DevConfig().config_hash()
        assert DevConfig().config_hash() != DevConfig(env_name="prod").config_hash()


@pytest.fixture
def project(tmp_path):
    """A minimal project root with a functions package."""
    (tmp_path / "package.json").write_text(json.dumps({"name": "chatonfire"}))
    functions = tmp_path / "functions"
    functions.mkdir()
    (functions / "package.json").write_text(json.dumps({"name": "functions"}))
    return tmp_path


class TestProjectVerification:
    """Test functions directory verification."""

    def test_valid_functions_dir(self, project):
        verify_functions_dir(project / "functions", DevConfig().project)

    def test_locate_from_root(self, project):
        located = locate_functions_dir(project, DevConfig().project)
        assert located == (project / "functions").resolve()

    def test_wrong_root_package(self, project):
        (project / "package.json").write_text(json.dumps({"name": "other"}))

        with pytest.raises(ConfigError, match="root"):
            verify_functions_dir(project / "functions", DevConfig().project)

    def test_wrong_directory_name(self, tmp_path):
        with pytest.raises(ConfigError):
            verify_functions_dir(tmp_path, DevConfig().project)

    def test_missing_package_json(self, project):
        (project / "functions" / "package.json").unlink()

        with pytest.raises(ConfigError):
            verify_functions_dir(project / "functions", DevConfig().project)


class TestDevContext:
    """Test the explicit run context."""

    def test_paths(self, project):
        ctx = DevContext(DevConfig(), project / "functions")

        assert ctx.source_dir == (project / "functions" / "src").resolve()
        assert ctx.output_dir == (project / "functions" / "lib").resolve()
        assert ctx.project_root == project.resolve()
        assert str(ctx.bin_dir) in ctx.search_path()
        assert ctx.globs().matches("views/index.ejs")
        assert not ctx.cancellation_token.aborted


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
