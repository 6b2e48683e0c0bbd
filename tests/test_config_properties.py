"""
Property-based tests for configuration loading.

**Property: configuration round trip** - any valid configuration saved by the
manager loads back to the same values.
"""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from hypothesis import given, strategies as st, settings

from config import (
    ConfigManager,
    CrawlInput,
    CrawlerConfig,
    ProxySettings,
    SystemConfig,
)
from directory_crawler.utils.errors import ConfigurationError


word = st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=15)


@st.composite
def crawl_section_strategy(draw):
    """Generate valid crawl input sections."""
    return {
        "speciality": draw(word),
        "city": draw(word),
        "start_urls": draw(st.lists(
            st.one_of(
                word.map(lambda w: f"https://www.practo.com/{w}"),
                word.map(lambda w: {"url": f"https://www.practo.com/search/doctors?q={w}"})
            ),
            max_size=3
        )),
        "results_wanted": draw(st.integers(min_value=1, max_value=1000)),
        "max_pages": draw(st.integers(min_value=1, max_value=50)),
        "max_concurrency": draw(st.integers(min_value=1, max_value=20)),
        "fetch_details": draw(st.booleans()),
        "min_experience": draw(st.integers(min_value=0, max_value=40)),
        "min_rating": draw(st.integers(min_value=0, max_value=5)),
    }


@st.composite
def system_config_strategy(draw):
    """Generate valid system configuration."""
    return {
        "crawl": draw(crawl_section_strategy()),
        "crawler": {
            "merge_precedence": draw(st.sampled_from(["structured_first", "rendered_first"])),
            "retry_detail_on_failure": draw(st.booleans()),
            "abort_on_budget": draw(st.booleans()),
            "same_domain_delay": draw(st.floats(min_value=0, max_value=5)),
        },
        "log_level": draw(st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])),
    }


@pytest.fixture
def clean_env():
    """Environment without crawler overrides."""
    keys = {k: v for k, v in os.environ.items() if k.startswith("DIRECTORY_CRAWLER_") and k != "DIRECTORY_CRAWLER_LOG_DIR"}
    for key in keys:
        del os.environ[key]
    yield
    os.environ.update(keys)


class TestConfigurationRoundTrip:
    """Save and reload."""

    @settings(max_examples=30, deadline=None)
    @given(config_data=system_config_strategy())
    def test_save_and_reload(self, tmp_path_factory, config_data):
        directory = tmp_path_factory.mktemp("config")
        source = directory / "config.json"
        source.write_text(json.dumps(config_data), encoding="utf-8")

        manager = ConfigManager(str(source), env_file=str(directory / ".env"))
        with patch.dict(os.environ, {}, clear=False):
            for key in [k for k in os.environ if k.startswith("DIRECTORY_CRAWLER_") and k != "DIRECTORY_CRAWLER_LOG_DIR"]:
                del os.environ[key]
            loaded = manager.load_config()
            manager.save_config(str(directory / "saved.json"))
            reloaded = ConfigManager(str(directory / "saved.json"), env_file=str(directory / ".env")).load_config()

        assert loaded.crawl == CrawlInput(**config_data["crawl"])
        assert loaded.crawler.merge_precedence == config_data["crawler"]["merge_precedence"]
        assert loaded.log_level == config_data["log_level"]
        assert reloaded == loaded


class TestConfigManager:
    """Loading, validation and environment overrides."""

    def test_defaults_without_file(self, tmp_path, clean_env):
        manager = ConfigManager(str(tmp_path / "missing.json"), env_file=str(tmp_path / ".env"))

        config = manager.load_config()

        assert config.crawl == CrawlInput()
        assert config.crawler == CrawlerConfig()
        assert config.proxy == ProxySettings()

    def test_invalid_precedence_rejected(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"crawler": {"merge_precedence": "whatever"}}))

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager(str(path)).load_config()

        assert exc_info.value.details["path"] == "crawler.merge_precedence"

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"database": {}}))

        with pytest.raises(ConfigurationError):
            ConfigManager(str(path)).load_config()

    def test_malformed_json_rejected(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            ConfigManager(str(path)).load_config()

    def test_env_overrides(self, tmp_path, clean_env):
        env = {
            "DIRECTORY_CRAWLER_CITY": "mumbai",
            "DIRECTORY_CRAWLER_SPECIALITY": "dentist",
            "DIRECTORY_CRAWLER_RESULTS_WANTED": "120",
            "DIRECTORY_CRAWLER_FETCH_DETAILS": "false",
            "DIRECTORY_CRAWLER_MERGE_PRECEDENCE": "rendered_first",
            "DIRECTORY_CRAWLER_PROXY_URLS": "10.0.0.1:3128, 10.0.0.2:3128",
        }
        with patch.dict(os.environ, env):
            config = ConfigManager(str(tmp_path / "none.json"), env_file=str(tmp_path / ".env")).load_config()

        assert config.crawl.city == "mumbai"
        assert config.crawl.speciality == "dentist"
        assert config.crawl.results_wanted == 120
        assert config.crawl.fetch_details is False
        assert config.crawler.merge_precedence == "rendered_first"
        assert config.proxy.enabled
        assert [p["host"] for p in config.proxy.proxies] == ["10.0.0.1", "10.0.0.2"]

    def test_env_locality(self, tmp_path, clean_env):
        with patch.dict(os.environ, {"DIRECTORY_CRAWLER_LOCALITY": "Jayanagar"}):
            config = ConfigManager(str(tmp_path / "none.json"), env_file=str(tmp_path / ".env")).load_config()

        assert config.crawl.locality == "Jayanagar"

    def test_percentage_min_rating_accepted(self, tmp_path, clean_env):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"crawl": {"min_rating": 95}}))

        config = ConfigManager(str(path), env_file=str(tmp_path / ".env")).load_config()

        assert config.crawl.min_rating == 95

    def test_negative_min_rating_rejected(self, tmp_path, clean_env):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"crawl": {"min_rating": -1}}))

        with pytest.raises(ConfigurationError):
            ConfigManager(str(path), env_file=str(tmp_path / ".env")).load_config()

    def test_proxy_health_check_on_start_loaded(self, tmp_path, clean_env):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"proxy": {
            "enabled": True,
            "health_check_on_start": True,
            "proxies": [{"host": "10.0.0.1", "port": 3128}],
        }}))

        config = ConfigManager(str(path), env_file=str(tmp_path / ".env")).load_config()

        assert config.proxy.health_check_on_start is True

    def test_bad_env_integer(self, tmp_path, clean_env):
        with patch.dict(os.environ, {"DIRECTORY_CRAWLER_MAX_PAGES": "ten"}):
            with pytest.raises(ConfigurationError):
                ConfigManager(str(tmp_path / "none.json"), env_file=str(tmp_path / ".env")).load_config()

    def test_env_file_loaded(self, tmp_path, clean_env):
        env_file = tmp_path / ".env"
        env_file.write_text("# comment\nDIRECTORY_CRAWLER_CITY=delhi\n")

        try:
            config = ConfigManager(str(tmp_path / "none.json"), env_file=str(env_file)).load_config()
        finally:
            os.environ.pop("DIRECTORY_CRAWLER_CITY", None)

        assert config.crawl.city == "delhi"

    def test_reset_rereads_environment(self, tmp_path, clean_env):
        manager = ConfigManager(str(tmp_path / "none.json"), env_file=str(tmp_path / ".env"))
        assert manager.load_config().crawl.city == "bangalore"

        with patch.dict(os.environ, {"DIRECTORY_CRAWLER_CITY": "chennai"}):
            assert manager.load_config().crawl.city == "bangalore"
            manager.reset()
            assert manager.load_config().crawl.city == "chennai"

    def test_save_without_config_fails(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager(str(tmp_path / "x.json")).save_config()


class TestCrawlInput:
    """Crawl input normalization."""

    @pytest.mark.parametrize("field,value,expected", [
        ("results_wanted", 0, 50),
        ("results_wanted", "abc", 50),
        ("results_wanted", "25", 25),
        ("max_pages", -2, 10),
        ("max_concurrency", 0, 10),
        ("max_concurrency", 99, 20),
    ])
    def test_unusable_limits_fall_back(self, field, value, expected):
        normalized = CrawlInput(**{field: value}).normalized()

        assert getattr(normalized, field) == expected

    def test_start_url_shapes(self):
        crawl = CrawlInput(start_urls=[
            "https://www.practo.com/a",
            {"url": "https://www.practo.com/b"},
            {"label": "no url"},
            "  ",
        ])

        assert crawl.start_url_strings() == ["https://www.practo.com/a", "https://www.practo.com/b"]

    def test_proxy_settings_pool_config(self):
        assert ProxySettings().to_pool_config() is None

        settings_ = ProxySettings(enabled=True, proxies=[{"host": "h", "port": 1}], max_failure_count=2)
        pool_config = settings_.to_pool_config()

        assert pool_config["proxies"] == [{"host": "h", "port": 1}]
        assert pool_config["settings"]["max_failure_count"] == 2

    def test_system_config_defaults(self):
        config = SystemConfig()

        assert config.crawl.speciality == "dermatologist"
        assert config.crawl.city == "bangalore"
        assert config.crawler.request_timeout == 25.0
        assert config.crawler.abort_on_budget is True
