import sys
import asyncio

import pytest

from short_domain_finder import whois


def fake_whois(tmp_path, body):
    """Write a shell script that plays the part of the ``whois`` binary."""
    path = tmp_path / "fake-whois"
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(0o755)
    return str(path)


posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs /bin/sh")


def test_select_provider():
    assert whois.select_provider("de").host == "whois.denic.de"
    assert whois.select_provider("DE").host == "whois.denic.de"
    assert whois.select_provider("eu").host == "whois.eu"
    assert whois.select_provider("com") is whois.select_provider("net")
    assert whois.select_provider("com").host == "whois.verisign-grs.com"


@pytest.mark.parametrize("tld", ["org", "", "d e", "io"])
def test_select_provider_unsupported(tld):
    with pytest.raises(whois.ConfigurationError):
        whois.select_provider(tld)


def test_de_classifier():
    classify = whois.PROVIDERS["de"].classify
    assert classify("Domain: glaa.de\nStatus: free\n")
    assert classify("STATUS: FREE")
    assert classify("status:free")
    assert not classify("Domain: glab.de\nStatus: connect\n")
    assert not classify("Status: failed")
    assert not classify("")
    assert not classify("free")


def test_verisign_classifier():
    classify = whois.PROVIDERS["com"].classify
    assert classify('No match for "EXAMPLE.COM".\n>>> Last update of whois database')
    assert classify("no MATCH for ab.net")
    assert not classify("   Domain Name: EXAMPLE.COM\n   Registrar: Example Inc.")
    assert not classify("")


def test_eu_classifier():
    classify = whois.PROVIDERS["eu"].classify
    assert classify("Domain: abc.eu\n\nStatus: AVAILABLE\n")
    assert not classify("Status: NOT AVAILABLE")
    assert not classify("Domain: abc.eu\nRegistrant:\n")


def test_classifiers_are_deterministic():
    texts = ["Status: free", "Status: connect", 'No match for "X.COM"', "", "garbage"]
    for provider in whois.PROVIDERS.values():
        for text in texts:
            assert provider.classify(text) == provider.classify(text)


@posix_only
def test_client_passes_host_and_name(tmp_path):
    client = whois.WhoisClient(command=fake_whois(tmp_path, 'echo "$1 $2 $3"'))
    raw = asyncio.run(client.query("whois.denic.de", "glaa.de"))
    assert raw.strip() == "-h whois.denic.de glaa.de"


@posix_only
def test_lookup_classifies_stdout(tmp_path):
    client = whois.WhoisClient(command=fake_whois(tmp_path, 'echo "Status: free"'))
    result = asyncio.run(whois.lookup("glaa.de", whois.PROVIDERS["de"], client))
    assert result.available
    assert "Status: free" in result.raw


@posix_only
def test_nonzero_exit_without_stderr_is_classified(tmp_path):
    script = fake_whois(tmp_path, 'echo \'No match for "GLAA.COM".\'; exit 1')
    client = whois.WhoisClient(command=script)
    result = asyncio.run(whois.lookup("glaa.com", whois.PROVIDERS["com"], client))
    assert result.available


@posix_only
def test_zero_exit_with_stderr_is_classified(tmp_path):
    script = fake_whois(tmp_path, 'echo "Status: connect"; echo "warning" >&2')
    client = whois.WhoisClient(command=script)
    result = asyncio.run(whois.lookup("glaa.de", whois.PROVIDERS["de"], client))
    assert not result.available


@posix_only
def test_nonzero_exit_with_stderr_fails(tmp_path):
    script = fake_whois(tmp_path, 'echo "Status: free"; echo "connect: refused" >&2; exit 2')
    client = whois.WhoisClient(command=script)
    with pytest.raises(whois.WhoisLookupError, match="connect: refused"):
        asyncio.run(client.query("whois.denic.de", "glaa.de"))


def test_missing_command_fails(tmp_path):
    client = whois.WhoisClient(command=str(tmp_path / "no-such-whois"))
    with pytest.raises(whois.WhoisLookupError, match="could not start"):
        asyncio.run(client.query("whois.denic.de", "glaa.de"))


@posix_only
def test_timeout_fails(tmp_path):
    client = whois.WhoisClient(command=fake_whois(tmp_path, "exec sleep 5"), timeout=0.2)
    with pytest.raises(whois.WhoisLookupError, match="timed out"):
        asyncio.run(client.query("whois.denic.de", "glaa.de"))


def test_timeout_when_process_already_gone(monkeypatch):
    class ExitedProc:
        returncode = None

        async def communicate(self):
            await asyncio.sleep(10)

        def kill(self):
            raise ProcessLookupError

        async def wait(self):
            return 0

    async def fake_exec(*args, **kwargs):
        return ExitedProc()

    monkeypatch.setattr(whois.asyncio, "create_subprocess_exec", fake_exec)
    client = whois.WhoisClient(timeout=0.05)
    with pytest.raises(whois.WhoisLookupError, match="timed out"):
        asyncio.run(client.query("whois.denic.de", "glaa.de"))
