"""Shared test fixtures for hotloop tests."""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import pytest
from rich.console import Console

from hotloop.config import ReloadConfig

TESTS_ROOT = Path(__file__).parent


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        path = Path(item.path)
        if path.is_relative_to(TESTS_ROOT / "properties"):
            item.add_marker(pytest.mark.property)
        elif path.is_relative_to(TESTS_ROOT / "integration"):
            item.add_marker(pytest.mark.integration)
            if sys.platform == "win32":
                item.add_marker(pytest.mark.skip(reason="POSIX process groups"))


@dataclass(slots=True)
class RecordingOutputSink:
    """Output sink that keeps every line and status message in memory."""

    lines: list[tuple[str, str]] = field(default_factory=list)
    statuses: list[tuple[str, str]] = field(default_factory=list)

    async def write_line(self, stream: Literal["stdout", "stderr"], line: str) -> None:
        self.lines.append((stream, line))

    async def write_status(self, message: str, level: str = "info") -> None:
        self.statuses.append((message, level))

    def stdout(self) -> list[str]:
        return [line for stream, line in self.lines if stream == "stdout"]

    def stderr(self) -> list[str]:
        return [line for stream, line in self.lines if stream == "stderr"]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def console() -> Console:
    return Console(
        width=100,
        force_terminal=True,
        highlight=False,
        color_system=None,
        legacy_windows=False,
    )


@pytest.fixture
def output() -> RecordingOutputSink:
    return RecordingOutputSink()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Create a watch root with a source file.

    Structure:
        tmp_path/
            project/
                app.src
                .git/
    """
    root = tmp_path / "project"
    root.mkdir()
    (root / "app.src").write_text("one\n")
    (root / ".git").mkdir()
    return root


@pytest.fixture
def fast_config(tmp_path: Path) -> ReloadConfig:
    """Configuration with short timeouts for process tests."""
    return ReloadConfig(
        watch_paths=(str(tmp_path),),
        debounce=0.05,
        startup_timeout=5.0,
        shutdown_timeout=1.0,
        reload_timeout=5.0,
        connect_timeout=2.0,
    )
