from typing import Dict, Optional
import asyncio
import ipaddress
import logging

import aiohttp

from core.config import settings

logger = logging.getLogger(__name__)


def is_public_ip(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address((ip or "").strip())
    except ValueError:
        return False
    return addr.is_global


def _parse_location(data: dict) -> Dict[str, str]:
    location = {}
    country = data.get("country_code") or data.get("countryCode") or data.get("country")
    if isinstance(country, str) and len(country) == 2:
        location["country"] = country.upper()
    city = data.get("city")
    if isinstance(city, str) and city:
        location["city"] = city[:100]
    return location


async def lookup_location(ip: str, url_template: Optional[str] = None, timeout: Optional[float] = None) -> Dict[str, str]:
    """Best-effort ``{country, city}`` for a public IP; ``{}`` when unknown."""
    url_template = url_template if url_template is not None else settings.GEOIP_LOOKUP_URL
    if not url_template or not is_public_ip(ip):
        return {}

    url = url_template.replace("{ip}", ip.strip())
    client_timeout = aiohttp.ClientTimeout(total=timeout if timeout is not None else settings.GEOIP_TIMEOUT)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(url) as resp:
                if resp.status >= 400:
                    logger.warning(f"Geolocation lookup for {ip} failed: HTTP {resp.status}")
                    return {}
                data = await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.warning(f"Failed to get location from IP {ip}: {e!r}")
        return {}

    if not isinstance(data, dict):
        return {}
    return _parse_location(data)
