"""Shared HTTP helpers for the tools package.

Every outbound call in saveflow goes through aiohttp with a certifi-backed
SSL context and an explicit total timeout.
"""

import ssl

import aiohttp
import certifi

# Some image hosts reject clients without a browser User-Agent
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """SSL context backed by the certifi CA bundle.

    With ``verify=False`` hostname and certificate checks are off; only
    image downloads use that, as a fallback after a certificate error.
    """
    if not verify:
        unverified = ssl.create_default_context()
        unverified.check_hostname = False
        unverified.verify_mode = ssl.CERT_NONE
        return unverified
    return ssl.create_default_context(cafile=certifi.where())


def http_timeout(seconds: float) -> aiohttp.ClientTimeout:
    """Total-request timeout covering connect, send and body read."""
    return aiohttp.ClientTimeout(total=seconds)
