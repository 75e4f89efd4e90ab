import json
from pathlib import Path

import pytest

from keyplane.cli import main
from keyplane.impl.files import FileConfigStore
from keyplane.impl.sql import SqlConfigStore
from keyplane.reconciler import StateReconciler
from keyplane.settings import DEFAULT_SEED_ROOT, Settings, create_config_store


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(home=tmp_path / "home")


def test_settings_defaults(settings: Settings, tmp_path: Path):
    assert settings.seed_root == DEFAULT_SEED_ROOT.resolve()
    assert settings.state_root() == (tmp_path / "home" / "data").resolve()
    assert settings.sql_url().endswith("keyplane.db")
    assert isinstance(create_config_store(settings), FileConfigStore)


def test_settings_from_environment(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("KEYPLANE_HOME", str(tmp_path / "env-home"))
    monkeypatch.setenv("KEYPLANE_BACKEND", "sql")

    settings = Settings()
    assert settings.home == (tmp_path / "env-home").resolve()
    assert isinstance(create_config_store(settings), SqlConfigStore)


def test_devices(settings: Settings, capsys):
    assert main(["devices"], settings=settings) == 0
    devices = json.loads(capsys.readouterr().out)
    assert [d["id"] for d in devices] == ["kb1", "pad1"]


@pytest.mark.parametrize("backend", ["file", "sql"])
def test_edit_and_commit(settings: Settings, backend: str, capsys):
    binding = '{"type": "simpleAction", "action": "TAP", "arg": "KC_ENTER"}'
    args = ["--backend", backend]

    assert main([*args, "set-binding", "kb1", "key:1,1", binding, "--layer", "1"], settings=settings) == 0
    assert main([*args, "apply", "kb1"], settings=settings) == 0
    assert main([*args, "commit", "kb1"], settings=settings) == 0
    assert json.loads(capsys.readouterr().out)["revision"] == 1

    assert main([*args, "show", "kb1"], settings=settings) == 0
    state = json.loads(capsys.readouterr().out)
    layer = next(l for l in state["committed"]["layers"] if l["id"] == 1)
    assert "key:1,1" in [b["targetId"] for b in layer["bindings"]]

    assert main([*args, "revert", "kb1"], settings=settings) == 0


def test_open_prints_bundle(settings: Settings, capsys):
    assert main(["open", "pad1"], settings=settings) == 0
    bundle = json.loads(capsys.readouterr().out)
    assert bundle["device"]["id"] == "pad1"
    assert bundle["targets"] == ["enc:0", "key:0,0", "key:0,1"]
    assert bundle["stagedState"]["revision"] == 0


def test_invalid_binding(settings: Settings, capsys):
    assert main(["set-binding", "kb1", "key:1,1", '{"type": "teleport"}'], settings=settings) == 1
    assert capsys.readouterr().err.startswith("ParseError:")


def test_unknown_layer(settings: Settings, capsys):
    binding = '{"type": "none"}'
    assert main(["set-binding", "kb1", "key:1,1", binding, "--layer", "7"], settings=settings) == 1
    assert "NotFound: Layer 7 not found" in capsys.readouterr().err


def test_run(settings: Settings):
    assert main(["run", "kb1", "hello"], settings=settings) == 0


def test_commit_uses_one_session(settings: Settings, monkeypatch, capsys):
    opened = []
    open_session = StateReconciler.open_session

    def recording_open(self, device_id):
        bundle = open_session(self, device_id)
        opened.append(bundle.session_id)
        return bundle

    monkeypatch.setattr(StateReconciler, "open_session", recording_open)
    assert main(["commit", "kb1"], settings=settings) == 0
    assert len(opened) == 1
    assert json.loads(capsys.readouterr().out)["revision"] == 1
