import pytest

from hotloop import is_supervised
from hotloop._env import CHILD_ENV_VAR, RUNTIME_PORT_ENV_VAR, runtime_port_from_env


class TestIsSupervised:
    def test_marker_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(CHILD_ENV_VAR, "1")
        assert is_supervised() is True

    @pytest.mark.parametrize("value", ["", "0", "true"])
    def test_other_values(self, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
        monkeypatch.setenv(CHILD_ENV_VAR, value)
        assert is_supervised() is False

    def test_marker_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(CHILD_ENV_VAR, raising=False)
        assert is_supervised() is False


class TestRuntimePortFromEnv:
    def test_reads_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(RUNTIME_PORT_ENV_VAR, "45123")
        assert runtime_port_from_env() == 45123

    def test_missing_or_invalid_uses_default(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv(RUNTIME_PORT_ENV_VAR, raising=False)
        assert runtime_port_from_env(7) == 7
        monkeypatch.setenv(RUNTIME_PORT_ENV_VAR, "port")
        assert runtime_port_from_env() == 0
