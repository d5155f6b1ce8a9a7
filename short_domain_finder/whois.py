import asyncio
import contextlib
import logging
import re
from dataclasses import dataclass
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

STATUS_RE = re.compile(r"Status:\s*(\w+)", re.IGNORECASE)
NO_MATCH_RE = re.compile(r"no match", re.IGNORECASE)


class ConfigurationError(ValueError):
    """Invalid run configuration; fatal before any lookup is made."""


class WhoisLookupError(Exception):
    """A single WHOIS lookup failed; the candidate is skipped."""


@dataclass(frozen=True)
class LookupResult:
    available: bool
    raw: str


@dataclass(frozen=True)
class WhoisProvider:
    """WHOIS server for a TLD and the rule that reads its answer."""

    host: str
    classify: Callable[[str], bool]


class WhoisResolver(Protocol):
    async def query(self, host: str, fqdn: str) -> str: ...


def status_equals(expected: str) -> Callable[[str], bool]:
    """Build a classifier that checks the first ``Status:`` field.

    Args:
        expected: Status value (case-insensitive) that means registerable.

    Returns:
        Function mapping raw WHOIS text to ``True`` when the status matches.
        Text without a ``Status:`` field is treated as not available.
    """
    expected = expected.lower()

    def classify(output: str) -> bool:
        m = STATUS_RE.search(output)
        return m is not None and m.group(1).lower() == expected

    return classify


def contains_no_match(output: str) -> bool:
    return NO_MATCH_RE.search(output) is not None


# WHOIS servers per TLD
_VERISIGN = WhoisProvider("whois.verisign-grs.com", contains_no_match)
PROVIDERS: dict[str, WhoisProvider] = {
    "de": WhoisProvider("whois.denic.de", status_equals("free")),
    "net": _VERISIGN,
    "eu": WhoisProvider("whois.eu", status_equals("available")),
    "com": _VERISIGN,
}


def select_provider(tld: str) -> WhoisProvider:
    """Return the provider for ``tld`` or raise ``ConfigurationError``."""
    provider = PROVIDERS.get(str(tld).lower())
    if provider is None:
        raise ConfigurationError(f"Unsupported TLD: {tld}")
    return provider


class WhoisClient:
    """Run the system ``whois`` command as a subprocess."""

    def __init__(self, command: str = "whois", timeout: float | None = None) -> None:
        self.command = command
        self.timeout = timeout

    async def query(self, host: str, fqdn: str) -> str:
        """Query ``host`` for ``fqdn`` and return the raw standard output.

        Some servers make ``whois`` exit non-zero for unknown names, so a
        failing exit status only counts as an error when something was
        written to standard error.

        Raises:
            WhoisLookupError: If the command cannot be started, reports an
                error or runs past ``timeout``.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command,
                "-h",
                host,
                fqdn,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise WhoisLookupError(f"could not start {self.command}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise WhoisLookupError(f"timed out after {self.timeout}s") from None

        out = stdout.decode(errors="replace")
        err = stderr.decode(errors="replace")
        if proc.returncode != 0 and err:
            raise WhoisLookupError(err.strip())
        if proc.returncode != 0:
            logger.debug(f"{self.command} exited {proc.returncode} for {fqdn}")
        return out


async def lookup(fqdn: str, provider: WhoisProvider, client: WhoisResolver) -> LookupResult:
    """Look up ``fqdn`` at ``provider.host`` and classify the answer."""
    raw = await client.query(provider.host, fqdn)
    return LookupResult(available=provider.classify(raw), raw=raw)
