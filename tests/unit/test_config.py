"""Unit tests for configuration module."""

import pytest
from pydantic import ValidationError

from termlink.config import (
    CREDENTIAL_ERROR_CODES,
    TRUST_ERROR_CODES,
    Config,
    DrainConfig,
    InputConfig,
    PollIntervals,
    TimingConfig,
    TransferConfig,
    config,
)


class TestTimingGroups:
    """Tests for the nested timing models."""

    def test_default_values(self):
        timings = TimingConfig()

        assert timings.input.batch_window_ms == 4.0
        assert timings.drain.max_bytes == 393216
        assert timings.drain.max_ms == 8.0
        assert timings.poll.reconnecting == 0.4
        assert timings.poll.connected == 1.2
        assert timings.poll.idle == 3.0
        assert timings.transfer.chunk_size == 262144

    def test_poll_intervals_are_ordered_by_urgency(self):
        poll = PollIntervals()

        assert poll.reconnecting < poll.connected < poll.idle

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: InputConfig(batch_window_ms=0),
            lambda: DrainConfig(max_bytes=0),
            lambda: DrainConfig(max_ms=-1),
            lambda: PollIntervals(connected=0),
            lambda: TransferConfig(chunk_size=-5),
        ],
    )
    def test_non_positive_values_rejected(self, factory):
        with pytest.raises(ValidationError, match="positive"):
            factory()


class TestConfig:
    """Tests for the Config settings class."""

    def test_module_config_exists(self):
        assert isinstance(config, Config)

    def test_timings_from_environment(self, monkeypatch):
        monkeypatch.setenv("INPUT_BATCH_WINDOW_MS", "10")
        monkeypatch.setenv("DRAIN_MAX_BYTES", "1024")
        monkeypatch.setenv("POLL_IDLE_SECONDS", "5.5")
        monkeypatch.setenv("SFTP_CHUNK_SIZE", "4096")

        timings = Config().timings

        assert timings.input.batch_window_ms == 10.0
        assert timings.drain.max_bytes == 1024
        assert timings.poll.idle == 5.5
        assert timings.transfer.chunk_size == 4096

    def test_invalid_timing_from_environment(self, monkeypatch):
        monkeypatch.setenv("SFTP_CHUNK_SIZE", "0")

        with pytest.raises(ValidationError):
            Config().timings

    def test_validate_required_flags_empty_bridge_command(self):
        errors = Config(BRIDGE_COMMAND="  ").validate_required()

        assert "BRIDGE_COMMAND is required" in errors

    def test_validate_required_passes_with_defaults(self):
        assert Config(BRIDGE_COMMAND="bridge --stdio").validate_required() == []

    def test_hosts_path_missing(self, tmp_path):
        cfg = Config(HOSTS_FILE=str(tmp_path / "missing.json"))

        assert cfg.hosts_path() is None

    def test_hosts_path_present(self, tmp_path):
        path = tmp_path / "hosts.json"
        path.write_text("[]")

        assert Config(HOSTS_FILE=str(path)).hosts_path() == path


def test_error_code_groups():
    assert TRUST_ERROR_CODES == {"unknown_host_key", "host_key_mismatch"}
    assert TRUST_ERROR_CODES < CREDENTIAL_ERROR_CODES
    assert "password_required" in CREDENTIAL_ERROR_CODES
    assert "connect_failed" not in CREDENTIAL_ERROR_CODES
