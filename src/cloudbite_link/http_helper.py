# HTTP helpers for server probing and the outbound API client
# Probe sessions are short-lived and plain HTTP; API sessions may use SSL for remote servers

import aiohttp
import ssl
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def create_probe_session(timeout_seconds: float = 1.0, limit: int = 30) -> aiohttp.ClientSession:
    """
    Create aiohttp session for LAN probes (discovery, health, gateway checks)
    Every request made through it is bound to the total timeout
    """
    connector = aiohttp.TCPConnector(
        limit=max(limit, 1),        # One wave of probes at a time
        limit_per_host=2,           # Max 2 connections per candidate IP
        ssl=False,                  # LAN probes are plain HTTP
        force_close=True            # No keep-alive between probes
    )

    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds)
    )


def create_api_session(
    base_url: str,
    timeout_seconds: float = 30,
    ssl_verify: bool = True,
    ca_cert_path: Optional[str] = None
) -> aiohttp.ClientSession:
    """
    Create aiohttp session for the outbound API client
    SSL is enabled when the confirmed base URL uses https (remote mode)
    """
    if base_url.startswith('https://'):
        logger.info(f"Creating SSL-enabled API session (verify={ssl_verify})")

        ssl_context = ssl.create_default_context()

        if not ssl_verify:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
            logger.warning("SSL verification disabled")
        elif ca_cert_path:
            ca_path = Path(ca_cert_path)
            if ca_path.exists():
                ssl_context.load_verify_locations(ca_path)
                logger.info(f"Loaded custom CA certificate: {ca_path}")
            else:
                logger.warning(f"CA certificate not found: {ca_path}")

        connector = aiohttp.TCPConnector(
            ssl=ssl_context,
            limit=20,
            limit_per_host=5
        )
    else:
        logger.info("Creating HTTP-only API session")
        connector = aiohttp.TCPConnector(
            ssl=False,
            limit=20,
            limit_per_host=5
        )

    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds)
    )


def join_url(base_url: str, path: str) -> str:
    """Join a base URL and an absolute API path without doubling slashes"""
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"
