import sys

from aico import main as main_mod


def test_main_entrypoint_returns_exit_code(monkeypatch, tmp_path, capsys):
    # Run in an isolated temp directory so any persisted config is ephemeral
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, "argv", ["aico", "config", "--show"])

    rc = main_mod.main()

    assert rc == 0
    assert "Config file:" in capsys.readouterr().out


def test_main_entrypoint_outside_repo_fails_cleanly(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))
    monkeypatch.setattr(sys, "argv", ["aico", "commit", "--dry-run"])

    rc = main_mod.main()

    assert isinstance(rc, int)
    assert rc != 0
