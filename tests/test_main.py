from livestate.config import EnvironConfig
from livestate.main import build_granian_kwargs


def test_granian_defaults(tmp_path, monkeypatch):
    for key in ("API_HOST", "API_PORT", "DEBUG"):
        monkeypatch.delenv(key, raising=False)

    kwargs = build_granian_kwargs(EnvironConfig(tmp_path))

    assert kwargs["address"] == "0.0.0.0"
    assert kwargs["port"] == 3001
    assert kwargs["workers"] == 1
    assert kwargs["reload"] is False


def test_granian_single_worker_always(tmp_path, monkeypatch):
    monkeypatch.setenv("API_PORT", "8080")
    monkeypatch.setenv("WORKERS", "4")

    kwargs = build_granian_kwargs(EnvironConfig(tmp_path))

    assert kwargs["port"] == 8080
    assert kwargs["workers"] == 1
