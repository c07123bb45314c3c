import json

import pytest
import soundfile as sf

import config
import tapbeat

from conftest import PULSE_SAMPLE_RATE, pulse_samples


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    for name in (
        "TAPBEAT_CONFIG_PATH",
        "TAPBEAT_AV_OFFSET_SECONDS",
        "TAPBEAT_LOOKAHEAD_SECONDS",
        "TAPBEAT_MAX_ACTIVE_NOTES",
        "TAPBEAT_LANE_STRATEGY",
        "TAPBEAT_CHART_SEED",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "_default_config_candidates", lambda: [tmp_path / "tapbeat_config.json"])


def _run(capsys, argv):
    exit_code = tapbeat.main(argv)
    return exit_code, json.loads(capsys.readouterr().out)


def test_simulate_fallback_chart_scores_every_note(capsys):
    exit_code, output = _run(capsys, ["simulate", "--fallback"])

    assert exit_code == 0
    assert output["ok"] is True
    assert output["chart"]["source_kind"] == "fallback"
    assert output["chart"]["note_count"] == 240
    assert output["result"]["judgements"] == {"cool": 240, "fine": 0, "miss": 0}
    assert output["result"]["max_combo"] == 240
    assert output["result"]["final_combo"] == 240


def test_simulate_with_skipped_notes_breaks_combo(capsys):
    exit_code, output = _run(capsys, ["simulate", "--fallback", "--skip-every", "2"])

    assert exit_code == 0
    assert output["result"]["judgements"] == {"cool": 120, "fine": 0, "miss": 120}
    assert output["result"]["max_combo"] == 1


def test_simulate_late_offset_scores_fine(capsys):
    exit_code, output = _run(capsys, ["simulate", "--fallback", "--offset", "0.12"])

    assert exit_code == 0
    assert output["result"]["judgements"]["fine"] == 240
    assert output["result"]["score"] == sum(100 + 5 * combo for combo in range(240))


def test_analyze_audio_file(capsys, tmp_path):
    path = tmp_path / "pulses.wav"
    sf.write(str(path), pulse_samples(10.0, 0.5), PULSE_SAMPLE_RATE, subtype="FLOAT")

    exit_code, output = _run(capsys, ["analyze", str(path), "--preview", "3"])

    assert exit_code == 0
    chart = output["chart"]
    assert chart["source_kind"] == "detected"
    assert chart["tempo"] == 120
    assert chart["note_count"] == 19
    assert len(chart["first_notes"]) == 3
    assert chart["first_notes"][0]["time_seconds"] == pytest.approx(0.5, abs=0.04)


def test_analyze_missing_file_reports_fallback(capsys, tmp_path):
    exit_code, output = _run(capsys, ["analyze", str(tmp_path / "missing.ogg")])

    assert exit_code == 0
    assert output["chart"]["fallback_reason"] == "decode_failure"


def test_config_command_prints_effective_values(capsys, tmp_path):
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"scheduler": {"max_active_notes": 6}}), encoding="utf-8")

    exit_code, output = _run(capsys, ["--config", str(settings), "config"])

    assert exit_code == 0
    assert output["scheduler"]["max_active_notes"] == 6


def test_invalid_config_returns_error_code(capsys, tmp_path):
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"chart": {"lane_strategy": "spiral"}}), encoding="utf-8")

    exit_code, output = _run(capsys, ["--config", str(settings), "config"])

    assert exit_code == 2
    assert output["ok"] is False
    assert "lane_strategy" in output["error"]
