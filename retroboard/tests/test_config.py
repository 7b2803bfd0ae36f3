from __future__ import annotations

import pytest
from pydantic import ValidationError

from retroboard.config import Settings


def test_timeout_from_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("RETROBOARD_DB", str(tmp_path / "retro.db"))
    monkeypatch.setenv("RETROBOARD_TIMEOUT", "2.5")
    assert Settings().request_timeout_seconds == 2.5


def test_timeout_defaults_when_unset(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("RETROBOARD_DB", str(tmp_path / "retro.db"))
    monkeypatch.delenv("RETROBOARD_TIMEOUT", raising=False)
    assert Settings().request_timeout_seconds == 15.0


@pytest.mark.parametrize("value", ["abc", "0", "-3"])
def test_invalid_timeout_is_reported(tmp_path, monkeypatch, value) -> None:
    monkeypatch.setenv("RETROBOARD_DB", str(tmp_path / "retro.db"))
    monkeypatch.setenv("RETROBOARD_TIMEOUT", value)
    with pytest.raises(ValidationError, match="RETROBOARD_TIMEOUT"):
        Settings()
