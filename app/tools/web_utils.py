from __future__ import annotations

import re
from urllib.parse import urlparse


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def extract_host(url: str) -> str:
    """Lowercased hostname without a leading ``www.``; empty when unparsable."""
    try:
        host = (urlparse(url).hostname or "").lower().strip()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def host_matches(host: str, domain: str) -> bool:
    """True when ``host`` is ``domain`` or one of its subdomains."""
    domain = domain.lower().strip().lstrip(".")
    if not host or not domain:
        return False
    return host == domain or host.endswith("." + domain)
