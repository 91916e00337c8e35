from __future__ import annotations

from tradesim import __main__ as launcher


def test_main_runs_app_factory_with_settings(monkeypatch) -> None:
    calls = []
    monkeypatch.setenv("SIMULATOR_HOST", "0.0.0.0")
    monkeypatch.setenv("SIMULATOR_PORT", "9123")
    monkeypatch.setenv("LOG_LEVEL", "warning")
    monkeypatch.setattr(launcher.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    launcher.main()

    assert calls == [
        (
            "tradesim.main:create_app",
            {"factory": True, "host": "0.0.0.0", "port": 9123, "log_level": "warning"},
        )
    ]
