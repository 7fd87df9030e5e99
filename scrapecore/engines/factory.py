"""
Engine factory: maps a requested engine name to a ScrapeEngine.
"""

from scrapecore.captcha.registry import CaptchaDomainRegistry
from scrapecore.engines.base import ScrapeEngine
from scrapecore.engines.hybrid import HybridEngine
from scrapecore.utils.errors import MalformedRequestError

# Aliases accepted on the wire, grouped by the engine they select
HYBRID_NAMES = ("hybrid", "auto")
SECONDARY_NAMES = ("firecrawl",)
PRIMARY_NAMES = ("headed", "rod", "browser")


class EngineFactory:
    """Builds engines from the shared primary/secondary instances.

    The primary and secondary engines are long-lived (they hold the browser
    pool and the HTTP client); the hybrid selector is cheap and built per call.
    """

    def __init__(
        self,
        primary: ScrapeEngine,
        secondary: ScrapeEngine,
        registry: CaptchaDomainRegistry,
    ):
        self._primary = primary
        self._secondary = secondary
        self._registry = registry

    def create(self, engine_name: str | None) -> ScrapeEngine:
        """Return the engine for ``engine_name``.

        Args:
            engine_name: One of supported_engines(). None or "" means hybrid.

        Raises:
            MalformedRequestError: Unknown engine name.
        """
        name = (engine_name or "hybrid").strip().lower()

        if name in HYBRID_NAMES:
            return HybridEngine(self._primary, self._secondary, self._registry)
        if name in SECONDARY_NAMES:
            return self._secondary
        if name in PRIMARY_NAMES:
            return self._primary

        raise MalformedRequestError(
            f"unsupported scraper engine: {engine_name}",
            details={"supported": self.supported_engines()},
        )

    @staticmethod
    def supported_engines() -> list[str]:
        return [*HYBRID_NAMES, *SECONDARY_NAMES, *PRIMARY_NAMES]
