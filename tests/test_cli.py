# tests/test_cli.py
"""Tests for the command line entry point."""

import json
import sys
from datetime import datetime, timedelta, timezone

import pytest

import main
from config.settings import Config
from core.services import DashboardServices


def _write_observations(tmp_path):
    now = datetime.now(timezone.utc)
    path = tmp_path / "observations.json"
    path.write_text(json.dumps({
        "metrics": [
            {
                "metric": "mvrv",
                "source": "Glassnode",
                "category": "on-chain",
                "last_updated": (now - timedelta(minutes=5)).isoformat(),
                "has_data": True,
                "value": 2.1,
                "expected_value": 2.12,
            },
            {"source": "nameless metric is skipped"},
        ],
        "sources": [
            {"source": "Glassnode", "api_status": "UP", "response_time_ms": 300, "success_rate": 99},
        ],
    }))
    return path


def test_run_report(tmp_path):
    services = DashboardServices(Config())
    report = main.run_report(services, _write_observations(tmp_path))

    assert report["total_metrics"] == 1
    assert report["metrics"][0]["metric"] == "mvrv"
    assert report["data_sources"][0]["reliability"] == 99
    json.dumps(report)


def test_load_observations_accepts_bare_list(tmp_path):
    path = tmp_path / "list.json"
    path.write_text(json.dumps([{"metric": "rsi"}]))
    metrics, sources = main.load_observations(path)
    assert metrics == [{"metric": "rsi"}]
    assert sources == []


def test_main_prints_report(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("CRYPTODASH_REDIS_URL", raising=False)
    path = _write_observations(tmp_path)
    monkeypatch.setattr(sys, "argv", ["main.py", "--report", str(path), "--log-level", "WARNING"])

    main.main()

    out = json.loads(capsys.readouterr().out)
    assert out["system_status"] in {"HEALTHY", "DEGRADED", "CRITICAL"}
    assert out["total_metrics"] == 1


def test_main_missing_report_file_exits(tmp_path, monkeypatch):
    monkeypatch.delenv("CRYPTODASH_REDIS_URL", raising=False)
    monkeypatch.setattr(sys, "argv", ["main.py", "--report", str(tmp_path / "nope.json")])
    with pytest.raises(SystemExit) as exc_info:
        main.main()
    assert exc_info.value.code == 1


def test_main_cache_stats(monkeypatch, capsys):
    monkeypatch.delenv("CRYPTODASH_REDIS_URL", raising=False)
    monkeypatch.setattr(sys, "argv", ["main.py", "--cache-stats"])

    main.main()

    out = json.loads(capsys.readouterr().out)
    assert out["trend_cache"]["memory"]["size"] == 0
    assert out["page_cache"]["total_requests"] == 0
