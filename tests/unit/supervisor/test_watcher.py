"""Unit tests for the debounced file watcher."""

from pathlib import Path

import anyio
import pytest

from hotloop.config import ReloadConfig
from hotloop.exceptions import WatchPathError
from hotloop.supervisor import FileWatcher, WatchEvent

pytestmark = pytest.mark.anyio


def scenario_config(root: Path, *, debounce: float = 0.2) -> ReloadConfig:
    return ReloadConfig(
        watch_paths=(str(root),),
        watch_extensions=(".src",),
        ignore_patterns=(".git/",),
        debounce=debounce,
    )


class ChangeRecorder:
    def __init__(self) -> None:
        self.paths: list[str] = []
        self.fired = anyio.Event()

    async def __call__(self, path: str) -> None:
        self.paths.append(path)
        self.fired.set()


class TestExistingRoots:
    def test_missing_roots_are_skipped(self, tmp_path: Path) -> None:
        config = ReloadConfig(watch_paths=(str(tmp_path), str(tmp_path / "missing")))

        watcher = FileWatcher(config)

        assert watcher.existing_roots() == [str(tmp_path)]

    def test_no_existing_root_raises(self, tmp_path: Path) -> None:
        config = ReloadConfig(watch_paths=(str(tmp_path / "missing"),))

        watcher = FileWatcher(config)

        with pytest.raises(WatchPathError) as exc_info:
            _ = watcher.existing_roots()

        assert exc_info.value.paths == (str(tmp_path / "missing"),)


class TestDebounce:
    async def test_burst_fires_once_with_last_path(self, project: Path) -> None:
        watcher = FileWatcher(scenario_config(project))
        recorder = ChangeRecorder()

        async with anyio.create_task_group() as tg:
            await watcher.start(tg, recorder)
            assert watcher.handle_event(WatchEvent(str(project / "app.src")))
            assert watcher.handle_event(WatchEvent(str(project / "other.src")))

            with anyio.fail_after(5):
                await recorder.fired.wait()
            await anyio.sleep(0.4)
            watcher.stop()

        assert recorder.paths == [str(project / "other.src")]

    async def test_ignored_path_never_fires(self, project: Path) -> None:
        watcher = FileWatcher(scenario_config(project, debounce=0.05))
        recorder = ChangeRecorder()

        async with anyio.create_task_group() as tg:
            await watcher.start(tg, recorder)
            assert not watcher.handle_event(WatchEvent(str(project / ".git" / "x.src")))
            assert not watcher.handle_event(WatchEvent(str(project / "notes.txt")))
            await anyio.sleep(0.3)
            watcher.stop()

        assert recorder.paths == []

    async def test_separate_bursts_fire_separately(self, project: Path) -> None:
        watcher = FileWatcher(scenario_config(project, debounce=0.05))
        recorder = ChangeRecorder()

        async with anyio.create_task_group() as tg:
            await watcher.start(tg, recorder)
            _ = watcher.handle_event(WatchEvent(str(project / "a.src")))
            with anyio.fail_after(5):
                await recorder.fired.wait()
            recorder.fired = anyio.Event()
            _ = watcher.handle_event(WatchEvent(str(project / "b.src")))
            with anyio.fail_after(5):
                await recorder.fired.wait()
            watcher.stop()

        assert recorder.paths == [str(project / "a.src"), str(project / "b.src")]

    async def test_stop_cancels_pending_change(self, project: Path) -> None:
        watcher = FileWatcher(scenario_config(project, debounce=0.2))
        recorder = ChangeRecorder()

        async with anyio.create_task_group() as tg:
            await watcher.start(tg, recorder)
            _ = watcher.handle_event(WatchEvent(str(project / "app.src")))
            watcher.stop()

        assert recorder.paths == []
        assert not watcher.is_running


class TestLifecycle:
    async def test_start_without_roots_raises(self, tmp_path: Path) -> None:
        watcher = FileWatcher(ReloadConfig(watch_paths=(str(tmp_path / "nope"),)))

        with pytest.raises(ExceptionGroup) as exc_info:
            async with anyio.create_task_group() as tg:
                await watcher.start(tg, ChangeRecorder())

        assert exc_info.group_contains(WatchPathError)

    def test_stop_before_start_is_safe(self, project: Path) -> None:
        watcher = FileWatcher(scenario_config(project))

        watcher.stop()
        watcher.stop()

        assert not watcher.is_running

    async def test_stop_is_idempotent(self, project: Path) -> None:
        watcher = FileWatcher(scenario_config(project))

        async with anyio.create_task_group() as tg:
            await watcher.start(tg, ChangeRecorder())
            assert watcher.is_running
            watcher.stop()
            watcher.stop()

        assert not watcher.is_running
        assert not watcher.handle_event(WatchEvent(str(project / "app.src")))


class TestFilesystemEvents:
    async def test_scenario_edits(self, project: Path) -> None:
        watcher = FileWatcher(scenario_config(project, debounce=0.3))
        recorder = ChangeRecorder()

        async with anyio.create_task_group() as tg:
            await watcher.start(tg, recorder)
            await anyio.sleep(0.3)

            _ = (project / ".git" / "x.src").write_text("ignored\n")
            await anyio.sleep(0.8)
            assert recorder.paths == []

            _ = (project / "app.src").write_text("two\n")
            await anyio.sleep(0.05)
            _ = (project / "app.src").write_text("three\n")
            with anyio.fail_after(10):
                await recorder.fired.wait()
            await anyio.sleep(0.6)
            watcher.stop()

        assert len(recorder.paths) == 1
        assert recorder.paths[0].endswith("app.src")
