import argparse
import asyncio
import logging
import sys
from pathlib import Path
from . import Config, ConfigurationError, DomainFinder, config_from_mapping, load_config

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("config.json")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    defaults = Config()
    parser = argparse.ArgumentParser(
        prog="short-domain-finder",
        description="Find unregistered short domains via WHOIS",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="path to JSON or TOML config file", default=None)
    parser.add_argument("--length", type=int, default=None, help="total label length (2-63)")
    parser.add_argument("--prefix", type=str, default=None)
    parser.add_argument("--suffix", type=str, default=None)
    parser.add_argument("--interval-ms", type=float, default=None, help="delay between lookups")
    parser.add_argument("--tld", type=str, default=None, help="one of de, net, eu, com")
    parser.add_argument("--whois-command", type=str, default=defaults.whois_command)
    parser.add_argument("--timeout", type=float, default=defaults.lookup_timeout, help="seconds per lookup")
    parser.add_argument("--log-file", type=Path, default=defaults.log_file)
    parser.add_argument("--html-out", type=Path, default=defaults.html_out)
    parser.add_argument("--no-progress", action="store_true")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    """Merge the config file (if any) with command line overrides."""
    data = {}
    path = args.config
    if path is None and args.length is None:
        path = DEFAULT_CONFIG_FILE
    if path is not None:
        data = load_config(path)
    return config_from_mapping(
        data,
        domain_length=args.length,
        prefix=args.prefix,
        suffix=args.suffix,
        interval_ms=args.interval_ms,
        top_level_domain=args.tld,
        whois_command=args.whois_command,
        lookup_timeout=args.timeout,
        log_file=args.log_file,
        html_out=args.html_out,
        show_progress=not args.no_progress,
    )


def configure_logging(log_file: Path | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
        handlers=handlers,
    )


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_file)

    try:
        cfg = build_config(args)
        finder = DomainFinder(cfg)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        asyncio.run(finder.run())
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
