"""Tests for the photoindex command line."""
import json

import pytest
import yaml

from photoindex.cli import EXIT_INVALID, EXIT_OK, EXIT_UNAVAILABLE, main


@pytest.fixture
def cli(tmp_path, image_tree, monkeypatch):
    """Run main() against a temp config; returns (exit code, stdout)."""
    monkeypatch.delenv("PHOTOINDEX_DB_PATH", raising=False)
    monkeypatch.delenv("PHOTOINDEX_LANGUAGE", raising=False)
    monkeypatch.setenv("PHOTOINDEX_USER_SETTINGS_PATH", str(tmp_path / "user-settings.yaml"))
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump({
        "index": {
            "database_path": str(tmp_path / "cli" / "index.sqlite3"),
            "image_directories": [str(image_tree)],
            "read_embedded_exif": False,
            "max_workers": 2,
        }
    }), encoding="utf-8")

    def _run(capsys, *argv):
        code = main(["--config", str(config_path), *argv])
        return code, capsys.readouterr().out
    return _run


def test_index_prints_summary(cli, capsys):
    code, out = cli(capsys, "index")

    assert code == EXIT_OK
    summary = json.loads(out)
    assert summary["record_count"] == 6
    assert summary["failure_count"] == 0


def test_search_prints_json(cli, capsys):
    code, out = cli(capsys, "search", "--keywords", "sun*", "--no-nudity", "--order-by", "file_name")

    assert code == EXIT_OK
    results = json.loads(out)
    assert [r["file_name"] for r in results] == ["beach.jpg", "mountain.jpg"]
    assert "image_data" not in results[0]


def test_search_ranges_and_geo(cli, capsys):
    code, out = cli(capsys, "search", "--iso", "50", "200", "--geo", "52.3676", "4.9041")
    assert code == EXIT_OK
    (beach,) = json.loads(out)
    assert beach["file_name"] == "beach.jpg"
    assert beach["distance_meters"] < 1


def test_contradictory_flags_exit_invalid(cli, capsys, tmp_path):
    code, out = cli(capsys, "search", "--has-nudity", "--no-nudity")
    assert code == EXIT_INVALID
    assert out == ""
    assert not (tmp_path / "cli" / "index.sqlite3").exists()


def test_bad_range_exit_invalid(cli, capsys):
    code, _ = cli(capsys, "search", "--iso", "1", "2", "3")
    assert code == EXIT_INVALID


def test_never_rebuild_without_database(cli, capsys):
    code, _ = cli(capsys, "search", "--never-rebuild")
    assert code == EXIT_UNAVAILABLE


def test_status(cli, capsys):
    cli(capsys, "index")
    code, out = cli(capsys, "status")

    assert code == EXIT_OK
    report = json.loads(out)
    assert report["decision"] == "reuse"
    assert report["stats"]["images"] == 6


def test_config_set_language(cli, capsys, tmp_path):
    code, out = cli(capsys, "config", "set-language", "dutch")
    assert code == EXIT_OK
    assert json.loads(out) == "Dutch"
    saved = yaml.safe_load((tmp_path / "user-settings.yaml").read_text(encoding="utf-8"))
    assert saved["index"]["language"] == "Dutch"

    code, _ = cli(capsys, "config", "set-language", "Klingon")
    assert code == EXIT_INVALID


def test_config_add_dirs_and_show(cli, capsys, tmp_path):
    extra = tmp_path / "more"
    code, out = cli(capsys, "config", "add-dirs", str(extra))
    assert code == EXIT_OK
    assert str(extra) in json.loads(out)

    code, out = cli(capsys, "config", "show")
    shown = yaml.safe_load(out)
    assert str(extra) in shown["index"]["image_directories"]
