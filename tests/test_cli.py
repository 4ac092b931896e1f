"""
Tests for the raspi-io command line.

The CLI connects through ``raspi_io.cli._connect``, which is patched to return
a client attached to the fake agent.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from raspi_io import cli
from raspi_io.client import RaspiClient
from raspi_io.config import AgentConfig
from raspi_io.errors import AgentConnectionError
from raspi_io.protocol.frames import RequestCode


@pytest.fixture(autouse=True)
def _patch_connect(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    connect: Callable[..., RaspiClient],
) -> list[AgentConfig]:
    """Route CLI connections to the fake agent and isolate configuration."""
    monkeypatch.setenv("HOME", str(tmp_path))
    configs: list[AgentConfig] = []

    def _connect(config: AgentConfig) -> RaspiClient:
        configs.append(config)
        return connect(config.host or "raspberrypi.local")

    monkeypatch.setattr(cli, "_connect", _connect)
    return configs


class TestCommands:
    """Tests for CLI commands."""

    def test_read_pin(self, agent: Any, capsys: pytest.CaptureFixture[str]) -> None:
        """Test reading a pin."""
        agent.pin_levels[4] = True

        assert cli.main(["--host", "pi", "read-pin", "4"]) == 0
        assert capsys.readouterr().out == "1\n"

    def test_write_pin(self, agent: Any) -> None:
        """Test writing a pin."""
        assert cli.main(["--host", "pi", "write-pin", "17", "1"]) == 0
        assert agent.pin_levels[17] is True
        assert agent.requests_of(RequestCode.GPIO_TERMINATE)

    def test_configure_pin(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test configuring a pin."""
        assert cli.main(["--host", "pi", "configure-pin", "22", "output"]) == 0
        assert capsys.readouterr().out == "output\n"

    def test_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test the board summary."""
        assert cli.main(["--host", "pi", "info"]) == 0

        info = json.loads(capsys.readouterr().out)
        assert info["board_name"] == "Raspberry Pi 2 Model B"
        assert info["agent_version"] == "15.1.0"
        assert info["leds"] == {"led0": "mmc0"}
        assert info["i2c_buses"] == ["i2c-1"]

    def test_led(self, agent: Any) -> None:
        """Test switching an LED on."""
        assert cli.main(["--host", "pi", "led", "led0", "1"]) == 0
        assert agent.led_levels[0] is True

    def test_led_trigger_show(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test listing LED triggers."""
        assert cli.main(["--host", "pi", "led-trigger", "led0"]) == 0
        assert capsys.readouterr().out == "none [mmc0] timer oneshot heartbeat\n"

    def test_led_trigger_set(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test selecting an LED trigger."""
        assert cli.main(["--host", "pi", "led-trigger", "led0", "heartbeat"]) == 0
        assert capsys.readouterr().out == "heartbeat\n"

    def test_scan_i2c(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test scanning the I2C bus."""
        assert cli.main(["--host", "pi", "scan-i2c"]) == 0
        assert capsys.readouterr().out.split() == ["0x48", "0x68", "0x7A"]

    def test_popen(self, agent: Any, capsys: pytest.CaptureFixture[str]) -> None:
        """Test running a remote command with its own flags."""
        agent.commands["uname -a"] = (0, b"Linux raspberrypi 4.1.13-v7+\n")

        assert cli.main(["--host", "pi", "popen", "uname", "-a"]) == 0
        assert capsys.readouterr().out == "Linux raspberrypi 4.1.13-v7+\n"

    def test_global_flags_reach_config(self, _patch_connect: list[AgentConfig]) -> None:
        """Test that global flags become agent configuration."""
        assert cli.main(["--host", "pi", "--port", "9000", "--timeout", "3", "info"]) == 0

        (config,) = _patch_connect
        assert config.host == "pi"
        assert config.port == 9000
        assert config.timeout_seconds == 3.0


    def test_flag_value_matching_command(self, _patch_connect: list[AgentConfig]) -> None:
        """Test a global flag whose value equals the command name."""
        assert cli.main(["--host", "info", "info"]) == 0

        (config,) = _patch_connect
        assert config.host == "info"

    def test_command_operands_are_not_config(
        self, agent: Any, _patch_connect: list[AgentConfig]
    ) -> None:
        """Test that flags after the command stay with the command."""
        agent.commands["ssh --port 22"] = (0, b"")

        assert cli.main(["--host", "pi", "popen", "ssh", "--port", "22"]) == 0

        (config,) = _patch_connect
        assert config.port == 18726


class TestErrors:
    """Tests for CLI error reporting."""

    def test_invalid_pin(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test that operation errors print code and message."""
        assert cli.main(["--host", "pi", "read-pin", "2"]) == 1
        assert capsys.readouterr().err.startswith("invalid_parameter: Pin 2")

    def test_connection_error(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test that connection failures exit with status 1."""

        def refuse(config: AgentConfig) -> RaspiClient:
            raise AgentConnectionError("Cannot connect to agent at pi:18726")

        monkeypatch.setattr(cli, "_connect", refuse)

        assert cli.main(["--host", "pi", "info"]) == 1
        assert "connection: Cannot connect" in capsys.readouterr().err

    def test_missing_config_file(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test that a missing config file is reported."""
        assert cli.main(["--config", str(tmp_path / "none.yml"), "info"]) == 1
        assert capsys.readouterr().err.startswith("config_error:")

    def test_invalid_config_value(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test that invalid configuration is reported."""
        monkeypatch.setenv("RASPI_IO_AGENT__PORT", "0")
        assert cli.main(["info"]) == 1
        assert capsys.readouterr().err.startswith("config_error:")

    def test_missing_command(self) -> None:
        """Test that a command is required."""
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--host", "pi"])
        assert exc_info.value.code == 2
