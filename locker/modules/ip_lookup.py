import httpx
import ipaddress
import logging
import json
from typing import Optional, Mapping
from locker.config import Server, Monetization

logger = logging.getLogger('locker.ip_lookup')

GEO_API_URL = 'https://ipapi.co/{ip}/json/'

def _normalize_ip(value: str) -> Optional[str]:
    value = (value or '').strip()
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        logger.debug(f"Ignoring malformed IP value: {value[:64]}")
        return None

def get_client_ip(headers: Mapping[str, str], remote_addr: Optional[str],
                  trust_proxy_headers: Optional[bool] = None) -> Optional[str]:
    """
    Resolve the visitor IP.
    Behind a trusted proxy the priority is CF-Connecting-IP, X-Real-IP, first
    X-Forwarded-For entry, socket peer. Otherwise only the socket peer is used.
    Returns None when nothing usable is present; callers treat that as unknown.
    """
    if trust_proxy_headers is None:
        trust_proxy_headers = Server.TRUST_PROXY_HEADERS
    if not trust_proxy_headers:
        return _normalize_ip(remote_addr or '')

    cf_connecting_ip = headers.get('CF-Connecting-IP', '')
    x_real_ip = headers.get('X-Real-IP', '')
    x_forwarded_for = headers.get('X-Forwarded-For', '')

    for candidate in (cf_connecting_ip, x_real_ip, x_forwarded_for.split(',')[0]):
        ip = _normalize_ip(candidate)
        if ip:
            return ip

    return _normalize_ip(remote_addr or '')

def is_public_ip(ip: Optional[str]) -> bool:
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (address.is_private or address.is_loopback or address.is_unspecified
                or address.is_reserved or address.is_link_local or address.is_multicast)

async def get_country_code(ip_address: Optional[str]) -> Optional[str]:
    """
    Best-effort country lookup for click enrichment.
    Never raises: any failure or timeout yields None.
    """
    if not Monetization.GEOIP_ENABLED or not is_public_ip(ip_address):
        return None

    try:
        async with httpx.AsyncClient(timeout=Monetization.IP_LOOKUP_TIMEOUT) as client:
            response = await client.get(
                GEO_API_URL.format(ip=ip_address),
                headers={'User-Agent': 'Mozilla/5.0'}
            )

            if response.status_code == 200:
                try:
                    data = response.json()
                    if 'error' not in data:
                        country_code = data.get('country_code')
                        logger.debug(f"IP {ip_address} -> {country_code}")
                        return country_code or None
                    logger.warning(f"IP geolocation failed for {ip_address}: {data.get('reason', 'Unknown error')}")
                except (json.JSONDecodeError, ValueError) as e:
                    logger.error(f"Invalid JSON response from IP API for {ip_address}: {e}")
            else:
                logger.warning(f"IP geolocation API returned status {response.status_code} for {ip_address}")
    except httpx.TimeoutException:
        logger.error(f"Timeout while getting location for IP {ip_address}")
    except httpx.RequestError as e:
        logger.error(f"Network error getting location for IP {ip_address}: {e}")
    except Exception as e:
        logger.error(f"Unexpected error getting location for IP {ip_address}: {e}")

    return None
