import json
import random

import pytest

from geoloc import main as geoloc_main
from geoloc.seed import demo_visitor, random_public_ip


def _settings_file(tmp_path, *, instance: str = "dev") -> str:
    path = tmp_path / "settings.toml"
    path.write_text(
        f'[app]\ninstance = "{instance}"\naudit_log = "{tmp_path / "geo_ip_call.log"}"\n\n'
        f'[visitors]\nbackend = "file"\nfile_dir = "{tmp_path / "state"}"\nmax_visitor_count = 5\n',
        encoding="utf-8",
    )
    return str(path)


def test_seed_then_list_visitors(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("GEOIP_LICENSE_KEY", raising=False)
    settings = _settings_file(tmp_path)
    geoloc_main.main(["--settings", settings, "seed-visitors", "--count", "8"])
    assert json.loads(capsys.readouterr().out) == {"added": 8}

    geoloc_main.main(["--settings", settings, "visitors", "--limit", "3"])
    listed = json.loads(capsys.readouterr().out)
    assert len(listed) == 3

    geoloc_main.main(["--settings", settings, "visitors"])
    everyone = json.loads(capsys.readouterr().out)
    assert len(everyone) == 5

    geoloc_main.main(["--settings", settings, "forget", everyone[0]["ip"]])
    assert json.loads(capsys.readouterr().out)["ok"] is True
    geoloc_main.main(["--settings", settings, "visitors"])
    assert len(json.loads(capsys.readouterr().out)) == 4


def test_seed_refused_outside_development(tmp_path, capsys):
    settings = _settings_file(tmp_path, instance="prod")
    with pytest.raises(SystemExit):
        geoloc_main.main(["--settings", settings, "seed-visitors"])
    assert "development" in capsys.readouterr().out


def test_resolve_without_credentials_reports_not_found(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("GEOIP_LICENSE_KEY", raising=False)
    settings = _settings_file(tmp_path)
    with pytest.raises(SystemExit):
        geoloc_main.main(["--settings", settings, "resolve", "--ip", "198.51.100.4"])
    assert json.loads(capsys.readouterr().out) == {"kind": "not_found"}


def test_demo_visitors_are_public_and_deterministic():
    first = demo_visitor(random.Random(7))
    second = demo_visitor(random.Random(7))
    assert first == second
    assert not random_public_ip(random.Random(1)).startswith(("10.", "127.", "192.168."))


def test_metrics_written_after_command(tmp_path, capsys):
    settings = _settings_file(tmp_path)
    report = tmp_path / "out" / "metrics.json"
    geoloc_main.main(["--settings", settings, "--metrics-out", str(report), "seed-visitors", "--count", "2"])
    capsys.readouterr()
    payload = json.loads(report.read_text(encoding="utf-8"))
    assert payload["command"] == "seed-visitors"
    assert payload["metrics"]["geocode_calls"] == 0
    assert payload["metrics"]["latency"] == {}
