"""Tests for environment-driven settings."""

from pathlib import Path

from exporter.config import READY_SELECTOR, Settings

ENV_VARS = (
    "EXPORT_URLS", "EXPORT_READY_SELECTOR", "EXPORT_ANCHOR_SELECTOR", "EXPORT_OUTDIR",
    "EXPORT_FILENAME", "EXPORT_SCREENSHOT", "EXPORT_TRACE", "HEADLESS", "RUN_TIMEOUT_S",
    "NAV_TIMEOUT_S", "DOWNLOAD_TIMEOUT_S", "POPUP_TIMEOUT_S", "RESPONSE_TIMEOUT_S",
    "INPAGE_TIMEOUT_S", "LOYVERSE_STORAGE_B64", "LOYVERSE_EMAIL", "LOYVERSE_PASSWORD",
)


def _clean(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    _clean(monkeypatch)
    s = Settings.from_env(dotenv=False)
    assert s.headless is True
    assert s.output_path == Path("out") / "inventory.csv"
    assert s.screenshot_path == Path("out") / "error.png"
    assert s.download_timeout_s == 120.0
    assert s.popup_timeout_s < s.download_timeout_s
    assert s.ready_selector == READY_SELECTOR
    assert s.storage_b64 is None


def test_env_overrides(monkeypatch):
    _clean(monkeypatch)
    monkeypatch.setenv("HEADLESS", "false")
    monkeypatch.setenv("EXPORT_TRACE", "yes")
    monkeypatch.setenv("EXPORT_OUTDIR", "artifacts")
    monkeypatch.setenv("EXPORT_FILENAME", "items.csv")
    monkeypatch.setenv("DOWNLOAD_TIMEOUT_S", "30")
    monkeypatch.setenv("EXPORT_URLS", "https://a.test/x")
    monkeypatch.setenv("LOYVERSE_EMAIL", "ops@example.com")
    s = Settings.from_env(dotenv=False)
    assert s.headless is False
    assert s.trace is True
    assert s.output_path == Path("artifacts") / "items.csv"
    assert s.storage_path == Path("artifacts") / "storage.json"
    assert s.download_timeout_s == 30.0
    assert s.export_urls == "https://a.test/x"
    assert s.email == "ops@example.com"


def test_bad_numbers_fall_back(monkeypatch):
    _clean(monkeypatch)
    monkeypatch.setenv("RUN_TIMEOUT_S", "ten minutes")
    monkeypatch.setenv("POPUP_TIMEOUT_S", "-3")
    s = Settings.from_env(dotenv=False)
    assert s.run_timeout_s == 600.0
    assert s.popup_timeout_s == 10.0
