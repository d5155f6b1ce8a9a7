#!/usr/bin/env python3
import json
import time
import logging
import asyncio
import re
import tomllib
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Iterator, Mapping

import aiofiles
from tqdm import tqdm

from .whois import (
    PROVIDERS,
    ConfigurationError,
    LookupResult,
    WhoisClient,
    WhoisLookupError,
    WhoisProvider,
    lookup,
    select_provider,
)

logger = logging.getLogger(__name__)

ALPHABET = "abcdefghijklmnopqrstuvwxyz"
MIN_LENGTH = 2
MAX_LENGTH = 63
DEFAULT_INTERVAL_MS = 500
DEFAULT_TLD = "de"
AFFIX_RE = re.compile(r"[a-z]*")
TEMPLATE_DIR = Path(__file__).parent / "templates"


@dataclass(frozen=True)
class Config:
    """Configuration options for a scan run."""

    domain_length: int = 4
    prefix: str = ""
    suffix: str = ""
    interval_ms: float = DEFAULT_INTERVAL_MS
    top_level_domain: str = DEFAULT_TLD
    whois_command: str = "whois"
    lookup_timeout: float | None = None
    log_file: Path | None = None
    html_out: Path | None = None
    show_progress: bool = True

    @property
    def fill_count(self) -> int:
        return self.domain_length - len(self.prefix) - len(self.suffix)


@dataclass
class RunSummary:
    """Running counts for a scan; ``available`` keeps discovery order."""

    checked: int = 0
    taken: int = 0
    available: list[str] = field(default_factory=list)
    duration_ms: int = 0

    def record(self, fqdn: str, available: bool) -> None:
        self.checked += 1
        if available:
            self.available.append(fqdn)
        else:
            self.taken += 1

    @property
    def available_count(self) -> int:
        return len(self.available)

    @property
    def runtime(self) -> str:
        return format_duration(self.duration_ms)


def summary_to_dict(s: RunSummary) -> dict:
    """Convert a ``RunSummary`` to a serializable dictionary."""

    data = asdict(s)
    data["available_count"] = s.available_count
    data["runtime"] = s.runtime
    return data


# --- Configuration --- #


def _check_affix(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ConfigurationError(f"{name} must be a string (letters a-z only).")
    if not AFFIX_RE.fullmatch(value):
        raise ConfigurationError(f"{name} must only contain lowercase a-z characters.")
    return value


def _check_fill(domain_length: int, prefix: str, suffix: str) -> int:
    fill = domain_length - len(prefix) - len(suffix)
    if fill <= 0:
        raise ConfigurationError(
            "prefix + suffix length must be shorter than the domain length."
        )
    return fill


def validate_config(cfg: Config) -> Config:
    """Re-assert every constraint on ``cfg`` and return it unchanged.

    Raises:
        ConfigurationError: If any value is out of range.
    """
    length = cfg.domain_length
    if isinstance(length, bool) or not isinstance(length, int):
        raise ConfigurationError(
            f'"length" must be an integer between {MIN_LENGTH} and {MAX_LENGTH}.'
        )
    if not MIN_LENGTH <= length <= MAX_LENGTH:
        raise ConfigurationError(
            f'"length" must be an integer between {MIN_LENGTH} and {MAX_LENGTH}.'
        )
    _check_affix(cfg.prefix, "prefix")
    _check_affix(cfg.suffix, "suffix")
    _check_fill(length, cfg.prefix, cfg.suffix)

    interval = cfg.interval_ms
    if (
        isinstance(interval, bool)
        or not isinstance(interval, (int, float))
        or not 0 <= interval < float("inf")
    ):
        raise ConfigurationError(
            "intervalMs must be a non-negative number of milliseconds when provided."
        )
    if cfg.top_level_domain not in PROVIDERS:
        raise ConfigurationError(
            f"topLevelDomain must be one of: {', '.join(PROVIDERS)}"
        )
    if cfg.lookup_timeout is not None and not cfg.lookup_timeout > 0:
        raise ConfigurationError("timeout must be a positive number of seconds.")
    return cfg


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if data.get(k) is not None:
            return data[k]
    return default


def config_from_mapping(data: Mapping[str, Any], **overrides: Any) -> Config:
    """Build a validated ``Config`` from a parsed config file.

    Args:
        data: Parsed file content using the ``length``/``prefix``/``suffix``/
            ``intervalMs``/``topLevelDomain`` keys (snake_case also accepted).
        overrides: ``Config`` field values that win over ``data``; ``None``
            values are ignored.

    Returns:
        A validated ``Config``.
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError("config must be an object.")

    length = _pick(data, "length", "domain_length")
    if isinstance(length, float) and length.is_integer():
        length = int(length)
    elif isinstance(length, str):
        try:
            length = int(length.strip(), 10)
        except ValueError:
            raise ConfigurationError(
                f'"length" must be an integer between {MIN_LENGTH} and {MAX_LENGTH}.'
            ) from None
    tld = _pick(data, "topLevelDomain", "top_level_domain", default=DEFAULT_TLD)
    values: dict[str, Any] = {
        "domain_length": length,
        "prefix": _pick(data, "prefix", default=""),
        "suffix": _pick(data, "suffix", default=""),
        "interval_ms": _pick(data, "intervalMs", "interval_ms", default=DEFAULT_INTERVAL_MS),
        "top_level_domain": str(tld).lower(),
    }
    for k, v in overrides.items():
        if v is not None:
            values[k] = v.lower() if k == "top_level_domain" else v
    return validate_config(Config(**values))


def load_config(path: Path) -> dict[str, Any]:
    """Read a JSON (or ``.toml``) config file into a dictionary."""
    if not path.exists():
        raise ConfigurationError(
            f"Missing {path.name}. Copy config.example.json and adjust values."
        )
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Could not read {path}: {e}") from e
    try:
        if path.suffix == ".toml":
            data = tomllib.loads(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"{path.name} contains invalid content: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path.name} must contain an object.")
    return data


# --- Candidates --- #


def count_candidates(length: int, prefix: str = "", suffix: str = "") -> int:
    """Number of labels ``generate_candidates`` yields for these arguments."""
    if length - len(prefix) - len(suffix) == 0:
        return 1
    return len(ALPHABET) ** _check_fill(length, prefix, suffix)


def generate_candidates(length: int, prefix: str = "", suffix: str = "") -> Iterator[str]:
    """Yield every ``prefix + middle + suffix`` label of ``length`` characters.

    The middle segment runs through the alphabet like an odometer, so labels
    come out in lexicographic order and only the current one is held in
    memory. Calling again starts over from the first label.

    Args:
        length: Total label length.
        prefix: Fixed leading letters.
        suffix: Fixed trailing letters.

    Yields:
        Candidate labels, ``aa..a`` middle first and ``zz..z`` last.
    """
    fill = length - len(prefix) - len(suffix)
    if fill == 0:
        yield prefix + suffix
        return
    _check_fill(length, prefix, suffix)

    last = len(ALPHABET) - 1
    digits = [0] * fill
    while True:
        yield prefix + "".join(ALPHABET[d] for d in digits) + suffix
        pos = fill - 1
        while pos >= 0 and digits[pos] == last:
            digits[pos] = 0
            pos -= 1
        if pos < 0:
            return
        digits[pos] += 1


def format_duration(ms: float) -> str:
    """Render milliseconds as ``HHh MMm SSs``."""
    total = int(ms // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}h {minutes:02d}m {seconds:02d}s"


class DomainFinder:
    """Drive one sequential, throttled WHOIS scan over all candidates."""

    def __init__(self, config: Config, client=None) -> None:
        self.config = validate_config(config)
        self.provider: WhoisProvider = select_provider(config.top_level_domain)
        self.client = client or WhoisClient(
            command=config.whois_command, timeout=config.lookup_timeout
        )

        self.domain_length = config.domain_length
        self.prefix = config.prefix
        self.suffix = config.suffix
        self.tld = config.top_level_domain
        self.interval_ms = config.interval_ms
        self.html_out = config.html_out
        self.show_progress = config.show_progress

        self.summary = RunSummary()

    async def _sleep(self) -> None:
        await asyncio.sleep(self.interval_ms / 1000)

    async def check(self, fqdn: str) -> LookupResult | None:
        """Look up a single name and record the verdict.

        Returns ``None`` when the lookup failed; the name is then left out of
        the summary entirely.
        """
        try:
            result = await lookup(fqdn, self.provider, self.client)
        except WhoisLookupError as e:
            logger.error(f"Error checking {fqdn}: {e}")
            return None

        self.summary.record(fqdn, result.available)
        if result.available:
            logger.info(f"{fqdn} - AVAILABLE")
        else:
            logger.info(f"{fqdn} - TAKEN")
        return result

    async def run(self) -> RunSummary:
        """Execute the scan and return the final summary."""
        self.summary = RunSummary()
        total = len(ALPHABET) ** self.config.fill_count
        logger.info(
            f'Checking {self.domain_length}-character .{self.tld} domains '
            f'with prefix="{self.prefix}" and suffix="{self.suffix}"'
        )
        logger.info(f"Delay between lookups: {self.interval_ms}ms")
        logger.info(f"Scanning {total} candidates via {self.provider.host}")

        progress = tqdm(total=total, desc="whois", disable=not self.show_progress)
        started = time.monotonic()
        try:
            for i, label in enumerate(
                generate_candidates(self.domain_length, self.prefix, self.suffix)
            ):
                if i > 0:
                    await self._sleep()
                await self.check(f"{label}.{self.tld}")
                progress.update(1)
        finally:
            progress.close()
        self.summary.duration_ms = int((time.monotonic() - started) * 1000)

        self.log_summary(self.summary)
        if self.html_out:
            await self.write_html(self.summary)
        return self.summary

    def log_summary(self, s: RunSummary) -> None:
        logger.info("Summary")
        logger.info(f"Checked: {s.checked}")
        logger.info(f"Taken: {s.taken}")
        logger.info(f"Available: {s.available_count}")
        listed = ", ".join(s.available) if s.available else "None"
        logger.info(f"Available domains: {listed}")
        logger.info(f"Runtime: {s.runtime}")

    async def write_html(self, s: RunSummary) -> None:
        """Render the run summary to ``html_out`` using Jinja2."""
        from jinja2 import Environment, FileSystemLoader, select_autoescape

        env = Environment(
            loader=FileSystemLoader(TEMPLATE_DIR),
            autoescape=select_autoescape(["html"]),
        )
        template = env.get_template("report.html")
        html = template.render(config=self.config, summary=summary_to_dict(s))
        async with aiofiles.open(self.html_out, "w") as f:
            await f.write(html)
        logger.info(f"Saved report to {self.html_out}")
