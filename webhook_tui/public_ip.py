"""Public IP lookup against two plain-text services."""
import urllib.error
import urllib.request
from typing import Iterable

from .config import IP_LOOKUP_URLS


class PublicIPError(RuntimeError):
    """Raised when no lookup service answered."""


def fetch_public_ip(urls: Iterable[str] = IP_LOOKUP_URLS, timeout: float = 10.0) -> str:
    """Return the public IP reported by the first service that answers."""
    errors = []
    for url in urls:
        try:
            with urllib.request.urlopen(url, timeout=timeout) as r:
                ip = r.read().decode('utf-8', errors='replace').strip()
        except (urllib.error.URLError, OSError, ValueError) as e:
            errors.append(f"{url}: {e}")
            continue
        if ip:
            return ip
        errors.append(f"{url}: empty response")
    raise PublicIPError("; ".join(errors) or "no lookup service configured")
