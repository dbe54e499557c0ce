"""Settings from the environment and the label store."""

import json
from pathlib import Path

import pytest

from hingectl.config import Settings, default_label_file
from hingectl.core import DEFAULT_CONNECT_TIMEOUT, KIND_OTHER
from hingectl.errors import ConfigError, LabelStoreError
from hingectl.labels import LabelStore


def test_defaults_without_environment():
    settings = Settings.from_env({})
    assert not settings.simulate
    assert settings.preferred_characteristics == ()
    assert settings.service_filter == ()
    assert settings.connect_timeout == DEFAULT_CONNECT_TIMEOUT


def test_environment_overrides():
    settings = Settings.from_env(
        {
            "HINGECTL_SIMULATE": "yes",
            "HINGECTL_CHAR_UUIDS": "0000FFE1-0000-1000-8000-00805F9B34FB, 0000ffe2-0000-1000-8000-00805f9b34fb",
            "HINGECTL_SERVICE_UUIDS": "0000ffe0-0000-1000-8000-00805f9b34fb",
            "HINGECTL_CONNECT_TIMEOUT": "2.5",
            "HINGECTL_LABEL_FILE": "/tmp/hinge-labels.json",
        }
    )
    assert settings.simulate
    assert settings.preferred_characteristics == (
        "0000ffe1-0000-1000-8000-00805f9b34fb",
        "0000ffe2-0000-1000-8000-00805f9b34fb",
    )
    assert settings.service_filter == ("0000ffe0-0000-1000-8000-00805f9b34fb",)
    assert settings.connect_timeout == 2.5
    assert settings.label_file == Path("/tmp/hinge-labels.json")


@pytest.mark.parametrize(
    "env",
    [
        {"HINGECTL_SIMULATE": "maybe"},
        {"HINGECTL_CONNECT_TIMEOUT": "soon"},
        {"HINGECTL_CONNECT_TIMEOUT": "0"},
    ],
)
def test_invalid_environment_raises(env):
    with pytest.raises(ConfigError):
        Settings.from_env(env)


def test_label_file_honours_xdg(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert default_label_file() == tmp_path / "hingectl" / "labels.json"


# ========== Labels ==========


def test_missing_label_file_is_empty(tmp_path):
    store = LabelStore(tmp_path / "labels.json")
    store.load()
    assert len(store) == 0
    assert store.get("AA") is None


def test_labels_persist(tmp_path):
    path = tmp_path / "nested" / "labels.json"
    store = LabelStore(path)
    store.set("AA:BB", "Front Door Actuator", "Front Door")
    store.set("CC:DD", "Hallway Sensor", "Hallway", kind=KIND_OTHER)

    reloaded = LabelStore(path)
    reloaded.load()
    assert len(reloaded) == 2
    front = reloaded.get("AA:BB")
    assert front.label == "Front Door Actuator"
    assert front.door == "Front Door"
    assert front.is_actuator_hinge
    assert not reloaded.get("CC:DD").is_actuator_hinge


@pytest.mark.parametrize(
    "label, door, kind",
    [
        ("", "Front Door", "actuator-door-hinge"),
        ("Actuator", "  ", "actuator-door-hinge"),
        ("Actuator", "Front Door", "toaster"),
    ],
)
def test_invalid_labels_rejected(tmp_path, label, door, kind):
    store = LabelStore(tmp_path / "labels.json")
    with pytest.raises(ValueError):
        store.set("AA:BB", label, door, kind)
    assert not (tmp_path / "labels.json").exists()


def test_corrupt_label_file_raises(tmp_path):
    path = tmp_path / "labels.json"
    path.write_text("{not json")
    with pytest.raises(LabelStoreError):
        LabelStore(path).load()


def test_malformed_entries_are_skipped(tmp_path):
    path = tmp_path / "labels.json"
    path.write_text(
        json.dumps(
            {
                "AA:BB": {"label": "Back Door Actuator", "door": "Back Door"},
                "CC:DD": {"label": "No door"},
                "EE:FF": "garbage",
            }
        )
    )
    store = LabelStore(path)
    store.load()
    assert len(store) == 1
    assert store.get("AA:BB").is_actuator_hinge
