from pathlib import Path

import pytest

from rn_job_pipeline.config_loader import (
    ConfigValidationError,
    load_config,
    merge_selectors,
)

SHIPPED_SETTINGS = Path(__file__).resolve().parent.parent / "config" / "settings.yaml"


def test_shipped_config_loads():
    config = load_config(str(SHIPPED_SETTINGS))

    employers = config.get_employers()
    assert "strong-memorial-hospital" in employers
    assert config.get_daily_quota() == 195
    assert config.get_navigation_timeout() == 30000
    assert config.get_max_pages() is None


def test_dot_notation_get(config):
    assert config.get("indexing.batch_size") == 50
    assert config.get("indexing.missing", "fallback") == "fallback"
    assert config.get("site.url.deeper", "x") == "x"


def test_site_url_env_override(config, monkeypatch):
    monkeypatch.delenv("NEXT_PUBLIC_SITE_URL", raising=False)
    assert config.get_site_url() == "https://jobs.example.org"

    monkeypatch.setenv("NEXT_PUBLIC_SITE_URL", "https://staging.example.org/")
    assert config.get_site_url() == "https://staging.example.org"


def test_quota_above_hard_limit_is_rejected(write_config, settings_data):
    settings_data["indexing"]["daily_quota"] = 250

    with pytest.raises(ConfigValidationError):
        load_config(str(write_config(settings_data)))


def test_indexnow_throttle_floor(write_config, settings_data):
    settings_data["indexnow"]["throttle_seconds"] = 2

    with pytest.raises(ConfigValidationError):
        load_config(str(write_config(settings_data)))


def test_negative_delay_is_rejected(write_config, settings_data):
    settings_data["scraper"]["job_delay_seconds"] = -1

    with pytest.raises(ConfigValidationError):
        load_config(str(write_config(settings_data)))


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_selector_overrides_merge_onto_defaults(config):
    strong = config.get_employer("strong-memorial-hospital")
    example = config.get_employer("example")

    assert strong.selectors.load_more_button == 'button[data-automation-id="showMore"]'
    assert strong.selectors.job_card == example.selectors.job_card


def test_unknown_selector_key_is_rejected():
    with pytest.raises(ConfigValidationError):
        merge_selectors({"job_cards": ".card"})


def test_employer_requires_search_url(write_config, employers_data):
    employers_data["employers"]["example"]["search_url"] = "  "
    config = load_config(str(write_config(employers=employers_data)))

    with pytest.raises(ConfigValidationError):
        config.get_employers()


def test_unknown_employer_lists_available(config):
    with pytest.raises(KeyError) as exc_info:
        config.get_employer("nowhere")
    assert "strong-memorial-hospital" in str(exc_info.value)


def test_facility_lookup(config):
    strong = config.get_employer("strong-memorial-hospital")

    assert strong.facility_location_for("Strong Memorial Hospital").city == "Rochester"
    assert strong.facility_location_for("Clinic at Strong Memorial Hospital - 2nd floor").state == "NY"
    assert strong.facility_location_for("Unknown Annex").city == "Rochester"
    assert config.get_employer("example").facility_location_for("Anywhere") is None


def test_employer_slug_and_career_page(config):
    strong = config.get_employer("strong-memorial-hospital")

    assert strong.employer_slug == "strong-memorial-hospital"
    assert strong.resolved_career_page_url == strong.base_url


def test_log_file_timestamp(write_config, settings_data, tmp_path):
    settings_data["logging"]["log_file"] = str(tmp_path / "run_{timestamp}.log")
    config = load_config(str(write_config(settings_data)))

    assert "{timestamp}" not in config.get_log_file().name
    assert config.get_log_file().name.startswith("run_")
