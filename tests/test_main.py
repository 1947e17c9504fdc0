"""
CLI tests: argument parsing, exit codes and the offline subcommands.
"""

import logging
from decimal import Decimal

import pytest

from conftest import WALL_START_MS
from spreadbot.config import load_settings
from spreadbot.main import build_parser, main
from spreadbot.storage_writer import FlushRecordWriter
from spreadbot.types import FlushRecord


@pytest.fixture(autouse=True)
def _restore_logging():
    """main() reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.config == "spreadbot.toml"
    assert args.command is None
    assert args.log_level is None


def test_parser_subcommand_and_level():
    args = build_parser().parse_args(["-c", "x.toml", "--log-level", "debug", "summary"])
    assert args.config == "x.toml"
    assert args.log_level == "DEBUG"
    assert args.command == "summary"


def test_missing_config_exits_2(tmp_path):
    assert main(["-c", str(tmp_path / "absent.toml"), "dump-config"]) == 2


def test_invalid_config_exits_2(tmp_path):
    path = tmp_path / "spreadbot.toml"
    path.write_text("poll_interval_seconds = 5\n")
    assert main(["-c", str(path)]) == 2


def test_dump_config_masks_secret(config_file, capsys):
    assert main(["-c", str(config_file), "dump-config"]) == 0

    out = capsys.readouterr().out
    assert '"currency_pair": "XBT/AUD"' in out
    assert "**********" in out
    assert "11111193333335555558888888111111" not in out


def test_summary(config_file, capsys):
    settings = load_settings(config_file)
    writer = FlushRecordWriter(settings.output_path)
    writer.ensure_writable()
    writer.append(FlushRecord(WALL_START_MS, WALL_START_MS + 5000, Decimal("1"), Decimal("2"), 4))
    writer.append(FlushRecord(WALL_START_MS + 5000, WALL_START_MS + 10000, None, None, 0))

    assert main(["-c", str(config_file), "summary"]) == 0

    out = capsys.readouterr().out
    assert '"records": 2' in out
    assert '"total_samples": 4' in out
    assert '"empty_windows": 1' in out


def test_summary_without_log_fails(config_file):
    assert main(["-c", str(config_file), "summary"]) == 1


def test_unwritable_output_exits_5(tmp_path):
    path = tmp_path / "spreadbot.toml"
    path.write_text(
        'currency_pair = "XBT/AUD"\n'
        "poll_interval_seconds = 5\n"
        "flush_interval_seconds = 60\n"
        f'output_path = "{tmp_path.as_posix()}"\n'
        "[read_only]\n"
        'api_key = "k"\n'
        'api_secret = "s"\n'
    )
    assert main(["-c", str(path), "run"]) == 5
