"""
Tests for the command-line entry point.
"""

import json
from unittest.mock import patch

import pytest

from config import SystemConfig
from directory_crawler.concurrent.models import CrawlResult
from directory_crawler.main import apply_cli_overrides, create_cli_parser, format_output, main


class TestArguments:
    """Parser and overrides."""

    def test_overrides_applied_on_top_of_config(self):
        args = create_cli_parser().parse_args([
            "--city", "pune", "--start-url", "https://www.practo.com/a",
            "--start-url", "https://www.practo.com/b", "--results", "5",
            "--concurrency", "40", "--no-details", "--locality", "Baner",
        ])

        crawl = apply_cli_overrides(SystemConfig(), args)

        assert crawl.city == "pune"
        assert crawl.locality == "Baner"
        assert crawl.speciality == "dermatologist"
        assert crawl.start_urls == ["https://www.practo.com/a", "https://www.practo.com/b"]
        assert crawl.results_wanted == 5
        assert crawl.max_concurrency == 20
        assert crawl.fetch_details is False

    def test_format_output(self):
        assert json.loads(format_output({"saved": 3}, "json")) == {"saved": 3}
        assert format_output({"saved": 3, "errors": 0}, "text") == "saved: 3\nerrors: 0"


class TestMain:
    """Exit codes and wiring."""

    def test_runs_crawl_and_prints_summary(self, tmp_path, capsys):
        output = tmp_path / "out.jsonl"
        with patch("directory_crawler.main.CrawlController") as controller_cls, \
                patch("directory_crawler.main.setup_logging"), \
                patch("directory_crawler.main.events"):
            controller_cls.return_value.run.return_value = CrawlResult(saved=7)

            code = main(["--config", str(tmp_path / "none.json"), "--city", "goa",
                         "--output", str(output), "--format", "json"])

        assert code == 0
        crawl_input = controller_cls.call_args.args[0]
        assert crawl_input.city == "goa"
        assert json.loads(capsys.readouterr().out)["saved"] == 7
        assert output.exists()

    def test_invalid_config_exits_with_error(self, tmp_path, capsys):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"crawler": {"merge_precedence": "newest"}}))

        with patch("directory_crawler.main.CrawlController") as controller_cls:
            code = main(["--config", str(config_path)])

        assert code == 1
        controller_cls.assert_not_called()
        assert capsys.readouterr().err

    def test_keyboard_interrupt_exit_code(self, tmp_path):
        with patch("directory_crawler.main.CrawlController") as controller_cls, \
                patch("directory_crawler.main.setup_logging"), \
                patch("directory_crawler.main.events"):
            controller_cls.return_value.run.side_effect = KeyboardInterrupt

            code = main(["--config", str(tmp_path / "none.json"),
                         "--output", str(tmp_path / "out.jsonl")])

        assert code == 130

    def test_output_replaced_unless_appending(self, tmp_path):
        output = tmp_path / "out.jsonl"
        output.write_text('{"name": "previous run"}\n')

        with patch("directory_crawler.main.CrawlController") as controller_cls, \
                patch("directory_crawler.main.setup_logging"), \
                patch("directory_crawler.main.events"):
            controller_cls.return_value.run.return_value = CrawlResult()

            main(["--config", str(tmp_path / "none.json"), "--output", str(output), "--append"])
            assert "previous run" in output.read_text()

            main(["--config", str(tmp_path / "none.json"), "--output", str(output)])
            assert output.read_text() == ""

    def test_proxies_health_checked_on_start(self, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"proxy": {
            "enabled": True,
            "health_check_on_start": True,
            "proxies": [{"host": "10.0.0.1", "port": 3128}],
        }}))

        with patch("directory_crawler.main.CrawlController") as controller_cls, \
                patch("directory_crawler.main.setup_logging"), \
                patch("directory_crawler.main.events"), \
                patch("directory_crawler.main.create_proxy_pool") as create_pool:
            controller_cls.return_value.run.return_value = CrawlResult()

            code = main(["--config", str(config_path), "--output", str(tmp_path / "out.jsonl")])

        assert code == 0
        create_pool.return_value.check_all_proxies_health.assert_called_once_with()
        assert controller_cls.call_args.kwargs["proxy_pool"] is create_pool.return_value

    def test_unknown_format_rejected(self):
        with pytest.raises(SystemExit):
            create_cli_parser().parse_args(["--format", "xml"])
