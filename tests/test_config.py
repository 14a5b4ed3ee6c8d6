"""
Tests for settings and age bands.
"""

import pytest

from buddysafe.config import AgeBand, Settings, get_age_group, get_settings


@pytest.mark.parametrize(
    "age,band",
    [(7, AgeBand.YOUNG), (8, AgeBand.YOUNG), (9, AgeBand.MIDDLE), (12, AgeBand.OLDER)],
)
def test_age_bands(age, band):
    assert AgeBand.for_age(age) == band


def test_ages_outside_bands():
    assert AgeBand.for_age(6) is None
    assert AgeBand.for_age(13) is None
    assert get_age_group(5) == "young"
    assert get_age_group(10) == "middle"
    assert get_age_group(15) == "older"


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("SAFETY_CACHE_MAX_SIZE", "42")
    monkeypatch.setenv("SAFETY_CLASSIFIER_TIMEOUT", "2.5")
    get_settings.cache_clear()  # type: ignore[attr-defined]

    settings = get_settings()

    assert settings.cache_max_size == 42
    assert settings.classifier_timeout_seconds == 2.5
    get_settings.cache_clear()  # type: ignore[attr-defined]


def test_placeholder_api_key_is_invalid():
    assert Settings(google_api_key="your_api_key_here").validate_api_key() is False
    assert Settings(google_api_key="real").validate_api_key() is True
