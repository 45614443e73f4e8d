"""Tests for the command line parser and output formatting."""

import pytest

from polytracking.main import build_parser, format_subscription, run
from polytracking.models import Subscription


def test_toggle_arguments():
    args = build_parser().parse_args(["toggle", "s1", "whale50k", "on"])
    assert (args.command, args.subscription_id, args.flag, args.state) == (
        "toggle", "s1", "whale50k", "on"
    )


def test_add_collects_flags():
    args = build_parser().parse_args(
        ["-c", "x.yaml", "add", "0xabc", "Will it rain?", "--outcome", "Yes",
         "--flag", "2pct", "--flag", "liquidity"]
    )
    assert args.config == "x.yaml"
    assert args.flag == ["2pct", "liquidity"]
    assert args.outcome == "Yes"


def test_unknown_flag_rejected_by_parser():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["toggle", "s1", "10pct", "on"])


def test_no_command_defaults_to_none():
    assert build_parser().parse_args([]).command is None


def test_format_subscription():
    sub = Subscription(
        id="s1", asset_id="0xa", title="Rain", target_outcome="Yes",
        flags={"0.5pct": True, "liquidity": True},
    )
    assert format_subscription(sub) == "s1\tRain [Yes]\t0.5pct,liquidity"
    bare = Subscription(id="s2", asset_id="0xb", title="Snow")
    assert format_subscription(bare) == "s2\tSnow\t-"


def test_add_with_conflicting_flags_reports_error(monkeypatch, tmp_path, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("POLYTRACKING_USER_KEY", "user-test-001")
    monkeypatch.setenv("POLYTRACKING_API_URL", "http://127.0.0.1:9")

    with pytest.raises(SystemExit) as info:
        run(["add", "0xabc", "Will it rain?", "--flag", "2pct", "--flag", "5pct"])

    assert info.value.code == 1
    assert "Error: more than one flag enabled in group" in capsys.readouterr().err
