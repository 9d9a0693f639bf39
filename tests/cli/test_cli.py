import json
from unittest.mock import patch

import pytest

from scenechain.cli import build_parser, main


@pytest.fixture
def script_file(tmp_path, monkeypatch):
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.setenv("SCENECHAIN_LOG_FILE", str(tmp_path / "cli.log"))
    path = tmp_path / "script.txt"
    path.write_text(
        " ".join(f"The camera drifts over scene {i} as the light changes." for i in range(10)),
        encoding="utf-8",
    )
    return path


def test_segment_json_output(script_file, capsys):
    code = main(["segment", str(script_file), "--mode", "duration", "--json"])

    assert code == 0
    body = json.loads(capsys.readouterr().out)
    assert body["metadata"]["mode_used"] == "duration"
    assert len(body["segments"]) == body["metadata"]["segment_count"]


def test_segment_table_output(script_file, capsys):
    code = main(["segment", str(script_file), "--mode", "even_split", "--balance", "1000"])

    assert code == 0
    out = capsys.readouterr().out
    assert "Cost estimate" in out
    assert "affordable" in out


def test_missing_script_returns_error(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("SCENECHAIN_LOG_FILE", str(tmp_path / "cli.log"))
    assert main(["segment", str(tmp_path / "missing.txt")]) == 1
    assert "Error" in capsys.readouterr().err


def test_invalid_constraints_return_error(script_file):
    assert main(["segment", str(script_file), "--mode", "duration", "--target-duration", "50"]) == 1


def test_parser_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["segment", "x.txt", "--mode", "magic"])


def test_serve_uses_the_loaded_config(tmp_path, monkeypatch):
    monkeypatch.setenv("SCENECHAIN_LOG_FILE", str(tmp_path / "cli.log"))
    config_file = tmp_path / "scenechain.toml"
    config_file.write_text('max_segments = 7\noutput_dir = "clips"\n', encoding="utf-8")

    with patch("scenechain.server.main") as serve:
        assert main(["--config", str(config_file), "serve"]) == 0

    config = serve.call_args[0][0]
    assert config["max_segments"] == 7
    assert config["output_dir"] == "clips"


def test_bad_log_level_is_reported(script_file, monkeypatch, capsys):
    monkeypatch.setenv("SCENECHAIN_LOG_LEVEL", "chatty")
    assert main(["segment", str(script_file), "--mode", "duration"]) == 1
    assert "Unknown log level" in capsys.readouterr().err
