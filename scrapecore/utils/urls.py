"""URL helpers shared by the rate limiter, registry and engines."""

from urllib.parse import urlparse


def extract_domain(url: str) -> str:
    """Return the lower-cased hostname of ``url``, or ``"unknown"``.

    Example:
        >>> extract_domain("https://Jobs.Example.com:8443/posting/1")
        'jobs.example.com'
        >>> extract_domain("not a url")
        'unknown'
    """
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return "unknown"
    if not hostname:
        return "unknown"
    return hostname.lower()


def normalize_domain(url_or_host: str) -> str:
    """Normalize a URL or bare hostname for registry lookups.

    Lower-cases the host and strips a leading ``www.``. Returns an empty
    string when nothing usable is left.
    """
    value = url_or_host.strip()
    if not value:
        return ""

    if "://" in value:
        host = extract_domain(value)
        if host == "unknown":
            return ""
    else:
        # Bare host, possibly with a path or port
        host = value.split("/", 1)[0].split(":", 1)[0].lower()

    if host.startswith("www."):
        host = host[4:]
    return host
