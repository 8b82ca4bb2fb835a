"""Tests for the configuration module."""

import dataclasses
import os
import tempfile
import unittest
from unittest.mock import patch

import yaml

from community_scraper.config import Config, ExtractionConfig, RateLimitConfig
from community_scraper.exceptions import ConfigError


class TestConfig(unittest.TestCase):
    """Test cases for the Config class."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.temp_dir.name, "config.yaml")
        self.env_path = os.path.join(self.temp_dir.name, ".env")

        self.sample_config = {
            "sources": ["ChatGPT", "LocalLLaMA"],
            "rate_limit": {"min_delay_sec": 1, "max_delay_sec": 4, "max_attempts": 5},
            "proxy": {"enabled": False, "endpoints": ["10.0.0.1:8080"]},
            "navigator": {"backend": "browser", "user_agents": ["ua-1", "ua-2"]},
            "schedule": {"hot_interval_min": 15},
            "database": {"url": "sqlite+aiosqlite:///tmp/test.db"},
        }
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(self.sample_config, f)
        with open(self.env_path, "w", encoding="utf-8") as f:
            f.write("")

    def tearDown(self):
        self.temp_dir.cleanup()

    def load(self, **env):
        with patch.dict(os.environ, env):
            return Config.from_files(self.config_path, self.env_path)

    def test_load_from_files(self):
        config = self.load()

        self.assertEqual(config.sources, ("ChatGPT", "LocalLLaMA"))
        self.assertEqual(config.rate_limit.max_attempts, 5)
        self.assertEqual(config.rate_limit.backoff_factor, 2.0)
        self.assertFalse(config.proxy.enabled)
        self.assertEqual(config.proxy.endpoints, ("10.0.0.1:8080",))
        self.assertEqual(config.navigator.user_agents, ("ua-1", "ua-2"))
        self.assertEqual(config.schedule.hot_interval_min, 15)
        self.assertEqual(config.schedule.broad_interval_min, 360.0)
        self.assertEqual(config.database.url, "sqlite+aiosqlite:///tmp/test.db")
        self.assertEqual(config.validate(), [])

    def test_defaults(self):
        config = Config()
        self.assertIn("ChatGPT", config.sources)
        self.assertTrue(config.proxy.enabled)
        self.assertEqual(config.navigator.backend, "http")
        self.assertEqual(config.trends.score_threshold, 50)
        self.assertEqual(config.validate(), [])

    def test_missing_file_uses_defaults(self):
        with patch.dict(os.environ, {}):
            config = Config.from_files(os.path.join(self.temp_dir.name, "absent.yaml"), self.env_path)
        self.assertEqual(config, Config())

    def test_env_overrides(self):
        config = self.load(
            SCRAPER_SOURCES="OpenAI, compsci,",
            SCRAPER_DATABASE_URL="postgresql+asyncpg://u:p@db/scraper",
            SCRAPER_LOG_LEVEL="debug",
            SCRAPER_PROXY_URLS="https://a.example/list.txt,https://b.example/list.txt",
        )

        self.assertEqual(config.sources, ("OpenAI", "compsci"))
        self.assertEqual(config.database.url, "postgresql+asyncpg://u:p@db/scraper")
        self.assertEqual(config.logging.level, "DEBUG")
        self.assertEqual(config.proxy.source_urls, ("https://a.example/list.txt", "https://b.example/list.txt"))
        # Untouched fields of an overridden section survive
        self.assertEqual(config.proxy.endpoints, ("10.0.0.1:8080",))

    def test_dotenv_file_is_loaded(self):
        with open(self.env_path, "w", encoding="utf-8") as f:
            f.write("SCRAPER_LOG_LEVEL=warning\n")
        with patch.dict(os.environ, {}):
            os.environ.pop("SCRAPER_LOG_LEVEL", None)
            config = Config.from_files(self.config_path, self.env_path)
        self.assertEqual(config.logging.level, "WARNING")

    def test_unknown_keys_are_ignored(self):
        config = Config.from_dict({"rate_limit": {"max_attempts": 2, "turbo": True}, "colour": "blue"})
        self.assertEqual(config.rate_limit, RateLimitConfig(max_attempts=2))

    def test_invalid_yaml(self):
        with open(self.config_path, "w", encoding="utf-8") as f:
            f.write("sources: [unterminated\n")
        with self.assertRaises(ConfigError):
            self.load()

    def test_non_mapping_yaml(self):
        with open(self.config_path, "w", encoding="utf-8") as f:
            f.write("- just\n- a list\n")
        with self.assertRaises(ConfigError):
            self.load()

    def test_non_mapping_section(self):
        with self.assertRaises(ConfigError):
            Config.from_dict({"proxy": ["10.0.0.1:80"]})

    def test_validate_reports_every_problem(self):
        config = Config(
            sources=(),
            rate_limit=RateLimitConfig(min_delay_sec=5, max_delay_sec=1, max_attempts=0),
            extraction=ExtractionConfig(max_posts_per_source=0),
        )
        config = dataclasses.replace(config, navigator=dataclasses.replace(config.navigator, backend="telnet"))

        errors = config.validate()

        self.assertIn("No sources configured", errors)
        self.assertIn("rate_limit.max_delay_sec must be >= min_delay_sec", errors)
        self.assertIn("rate_limit.max_attempts must be at least 1", errors)
        self.assertIn("navigator.backend must be 'http' or 'browser'", errors)
        self.assertIn("extraction.max_posts_per_source must be at least 1", errors)

    def test_config_is_immutable(self):
        config = Config()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            config.sources = ("other",)


if __name__ == "__main__":
    unittest.main()
