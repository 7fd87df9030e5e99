"""
Known-CAPTCHA domain registry.

Remembers domains where the browser engine hit a challenge so later jobs for
the same domain go straight to the hosted API. Persisted as a small text file:

    # Captcha-protected domains (automatically managed)
    # Format: domain<TAB>first_seen_timestamp
    example.com<TAB>2025-01-01T00:00:00Z
"""

import os
import tempfile
import threading
from datetime import UTC, datetime
from pathlib import Path

from scrapecore.utils.config import get_data_dir
from scrapecore.utils.logging import get_logger
from scrapecore.utils.urls import normalize_domain

logger = get_logger(__name__)

REGISTRY_FILENAME = "captcha-domains.txt"

_FILE_HEADER = (
    "# Captcha-protected domains (automatically managed)\n"
    "# Format: domain\\tfirst_seen_timestamp\n"
    "# This file is auto-generated and should not be manually edited\n"
    "\n"
)


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class CaptchaDomainRegistry:
    """Thread-safe map of domain -> first time a challenge was seen.

    Reads dominate; writes happen once per newly learned domain and rewrite
    the file atomically.
    """

    def __init__(self, path: Path | str | None = None):
        """Initialize registry.

        Args:
            path: Registry file. Defaults to {data_dir}/captcha-domains.txt.
        """
        self._path = Path(path) if path is not None else get_data_dir() / REGISTRY_FILENAME
        self._domains: dict[str, datetime] = {}
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def initialize(self) -> None:
        """Load the registry file. A missing file leaves the registry empty."""
        if not self._path.exists():
            logger.debug("Captcha domains file does not exist", path=str(self._path))
            return

        loaded: dict[str, datetime] = {}
        with open(self._path, encoding="utf-8") as f:
            for raw in f:
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                domain, _, stamp = line.partition("\t")
                domain = normalize_domain(domain)
                if not domain:
                    continue
                loaded[domain] = _parse_timestamp(stamp) or datetime.now(UTC)

        with self._lock:
            self._domains.update(loaded)

        logger.info("Loaded captcha domains", count=len(loaded), path=str(self._path))

    def is_known(self, url_or_host: str) -> bool:
        """Whether the URL's domain is known to serve challenges."""
        domain = normalize_domain(url_or_host)
        if not domain:
            return False
        with self._lock:
            return domain in self._domains

    def add(self, url_or_host: str) -> bool:
        """Register a domain.

        Args:
            url_or_host: URL or hostname.

        Returns:
            True if the domain was new, False if it was already known
            or could not be parsed.

        Raises:
            OSError: If the registry file could not be written.
        """
        domain = normalize_domain(url_or_host)
        if not domain:
            logger.debug("Cannot register domain", value=url_or_host)
            return False

        with self._lock:
            if domain in self._domains:
                return False
            self._domains[domain] = datetime.now(UTC)
            snapshot = dict(self._domains)
            self._save(snapshot)

        logger.info("Added domain to captcha registry", domain=domain, count=len(snapshot))
        return True

    def get_known_domains(self) -> dict[str, datetime]:
        """Return a copy of the domain map."""
        with self._lock:
            return dict(self._domains)

    def count(self) -> int:
        with self._lock:
            return len(self._domains)

    def _save(self, domains: dict[str, datetime]) -> None:
        """Write the file through a temp file and rename."""
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(_FILE_HEADER)
                for domain in sorted(domains):
                    f.write(f"{domain}\t{_format_timestamp(domains[domain])}\n")
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
