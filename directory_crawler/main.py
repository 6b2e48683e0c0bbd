"""
Command-line entry point for the directory crawler.
"""

import sys
import json
import argparse
from dataclasses import replace
from typing import Any, List, Optional

from directory_crawler.concurrent.controller import CrawlController
from directory_crawler.data.sink import JsonLinesSink
from directory_crawler.utils.errors import ConfigurationError, ValidationError
from directory_crawler.utils.logging import get_logger, get_structured_logger, setup_logging
from directory_crawler.utils.proxy_pool import create_proxy_pool
from config import ConfigManager, CrawlInput, SystemConfig


logger = get_logger(__name__)
events = get_structured_logger("directory_crawler.run")


def create_cli_parser() -> argparse.ArgumentParser:
    """Create command-line interface parser."""
    parser = argparse.ArgumentParser(
        description='Directory Crawler - budgeted crawl of a practitioner directory',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                        # Default city and speciality
  %(prog)s --city mumbai --speciality dentist     # Another listing
  %(prog)s --start-url URL --start-url URL        # Explicit listing pages
  %(prog)s --results 200 --concurrency 15         # Bigger run
  %(prog)s --no-details --output doctors.jsonl    # Listing data only
        """
    )

    # Configuration options
    parser.add_argument(
        '--config', '-c',
        type=str,
        help='Path to configuration file (default: config.json)'
    )

    # Crawl input
    parser.add_argument('--speciality', type=str, help='Speciality to search for')
    parser.add_argument('--city', type=str, help='City to search in')
    parser.add_argument('--locality', type=str, help='Locality within the city to narrow the search to')
    parser.add_argument(
        '--start-url',
        type=str,
        action='append',
        dest='start_urls',
        help='Listing URL to start from (can be used multiple times)'
    )
    parser.add_argument('--results', type=int, help='Number of records wanted')
    parser.add_argument('--max-pages', type=int, help='Maximum listing pages per start URL')
    parser.add_argument('--concurrency', type=int, help='Number of concurrent workers (max 20)')
    parser.add_argument(
        '--no-details',
        action='store_true',
        help='Do not fetch profile pages for description and image'
    )
    parser.add_argument('--min-experience', type=float, help='Minimum years of experience')
    parser.add_argument('--min-rating', type=float, help='Minimum rating')

    # Output options
    parser.add_argument(
        '--output', '-o',
        type=str,
        default='results.jsonl',
        help='JSON Lines file receiving the records, replaced on each run (default: results.jsonl)'
    )
    parser.add_argument(
        '--append',
        action='store_true',
        help='Append to the output file instead of replacing it'
    )
    parser.add_argument(
        '--format',
        type=str,
        choices=['json', 'text'],
        default='text',
        help='Format of the printed run summary (default: text)'
    )

    # Logging options
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Override log level from configuration'
    )

    return parser


def format_output(data: Any, format_type: str) -> str:
    """Format output data according to specified format."""
    if format_type == 'json':
        return json.dumps(data, indent=2, default=str, ensure_ascii=False)
    if isinstance(data, dict):
        return '\n'.join(f"{key}: {value}" for key, value in data.items())
    return str(data)


def apply_cli_overrides(config: SystemConfig, args: argparse.Namespace) -> CrawlInput:
    """Crawl input from the configuration with command-line values on top."""
    crawl = config.crawl
    overrides = {
        'speciality': args.speciality,
        'city': args.city,
        'locality': args.locality,
        'start_urls': args.start_urls,
        'results_wanted': args.results,
        'max_pages': args.max_pages,
        'max_concurrency': args.concurrency,
        'min_experience': args.min_experience,
        'min_rating': args.min_rating,
    }
    crawl = replace(crawl, **{k: v for k, v in overrides.items() if v is not None})
    if args.no_details:
        crawl = replace(crawl, fetch_details=False)
    return crawl.normalized(config.crawler.hard_max_concurrency)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with command-line interface."""
    parser = create_cli_parser()
    args = parser.parse_args(argv)

    try:
        config = ConfigManager(args.config or 'config.json').load_config()
        crawl_input = apply_cli_overrides(config, args)
    except (ConfigurationError, ValidationError) as e:
        print(format_output({'error': e.message, **e.details}, args.format), file=sys.stderr)
        return 1

    setup_logging(
        log_level=args.log_level or config.log_level,
        log_file=config.log_file,
        retention_days=config.log_retention_days
    )

    proxy_pool = None
    pool_config = config.proxy.to_pool_config()
    if pool_config:
        proxy_pool = create_proxy_pool(pool_config)
        logger.info(f"Using {len(proxy_pool)} proxies")
        if config.proxy.health_check_on_start:
            proxy_pool.check_all_proxies_health()

    try:
        with JsonLinesSink(args.output, append=args.append) as sink:
            controller = CrawlController(
                crawl_input,
                crawler_config=config.crawler,
                sink=sink,
                proxy_pool=proxy_pool
            )
            result = controller.run()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        return 130

    events.info("crawl_finished", output=args.output, **result.summary())
    print(format_output(result.summary(), args.format))
    return 0


if __name__ == "__main__":
    sys.exit(main())
