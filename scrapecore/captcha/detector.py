"""CAPTCHA and Cloudflare challenge detection from page HTML."""

import re
from dataclasses import dataclass
from enum import Enum


class ChallengeKind(str, Enum):
    """Kinds of challenge the solver pipeline understands."""

    RECAPTCHA_V2 = "recaptcha_v2"
    TURNSTILE = "turnstile"
    CLOUDFLARE = "cloudflare"


@dataclass(frozen=True)
class CaptchaChallenge:
    """A challenge detected on a page.

    Attributes:
        kind: Challenge kind.
        site_key: Widget site key. None for a generic Cloudflare interstitial.
        page_url: URL the challenge was served on (filled in by the caller).
    """

    kind: ChallengeKind
    site_key: str | None = None
    page_url: str = ""

    @property
    def solvable(self) -> bool:
        """True when a solver can be asked for a token directly."""
        return self.kind != ChallengeKind.CLOUDFLARE and bool(self.site_key)


# Interstitial indicators. A bare "cloudflare" is absent because it
# matches CDN asset URLs on ordinary pages.
CLOUDFLARE_INDICATORS: tuple[str, ...] = (
    "cf-challenge",
    "just a moment",
    "please wait while we verify",
    "checking your browser",
    "ddos protection by cloudflare",
    "enable javascript and cookies",
    "security verification",
    "cf-browser-verification",
    "__cf_chl_jschl_tk__",
    "ray id",
    "performance & security by cloudflare",
)

# Indicators that mean the challenge is still showing
_UNRESOLVED_INDICATORS: tuple[str, ...] = (
    "cf-challenge",
    "just a moment",
    "please wait while we verify",
    "checking your browser",
    "enable javascript and cookies",
    "security verification",
    "cf-browser-verification",
    "__cf_chl_jschl_tk__",
    "performance & security by cloudflare",
)

# Markers of a real content page
_CONTENT_INDICATORS: tuple[str, ...] = (
    "<title>",
    "job posting",
    "job description",
    "apply now",
    "company",
    "salary",
    "requirements",
    "<main",
    "<article",
    "<section",
)

_MIN_CONTENT_INDICATORS = 3
_MIN_TURNSTILE_KEY_LENGTH = 10

_RECAPTCHA_KEY_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r'data-sitekey="([^"]+)"',
        r"data-sitekey='([^']+)'",
        r'"sitekey"\s*:\s*"([^"]+)"',
        r"'sitekey'\s*:\s*'([^']+)'",
    )
)

# Ordered: explicit widget attributes, then inline scripts, then the
# challenge iframe URL as a last resort.
_TURNSTILE_KEY_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r'data-sitekey="([^"]+)"[^>]*(?:turnstile|cf-turnstile)',
        r'(?:turnstile|cf-turnstile)[^>]*data-sitekey="([^"]+)"',
        r'<div[^>]*class="[^"]*cf-turnstile[^"]*"[^>]*data-sitekey="([^"]+)"',
        r'<div[^>]*data-sitekey="([^"]+)"[^>]*class="[^"]*cf-turnstile[^"]*"',
        r"cf-turnstile[^>]*data-sitekey=['\"]([^'\"]+)['\"]",
        r'data-sitekey="([^"]+)".*?turnstile',
        r'turnstile.*?data-sitekey="([^"]+)"',
        r"window\.turnstile.*?sitekey['\"]\s*:\s*['\"]([^'\"]+)['\"]",
        r"turnstile\.render\([^)]*['\"]([0-9a-zA-Z_-]{20,})['\"]",
        r'"sitekey"\s*:\s*"([^"]+)".*?turnstile',
        r'turnstile.*?"sitekey"\s*:\s*"([^"]+)"',
        r"sitekey\s*:\s*['\"]([^'\"]+)['\"]",
        r'<iframe[^>]*src="[^"]*challenges\.cloudflare\.com[^"]*/(0x[0-9a-zA-Z_-]+)/[^"]*"',
        r"challenges\.cloudflare\.com/cdn-cgi/challenge-platform/[^\"]*/(0x[0-9a-zA-Z_-]+)/",
        r'challenges\.cloudflare\.com[^"]*/(0x[0-9a-zA-Z_-]+)/',
        r'challenges\.cloudflare\.com[^"]*?(0x[0-9a-zA-Z_-]{20,})',
    )
)


def extract_recaptcha_site_key(html: str) -> str | None:
    """Return the first reCAPTCHA site key found in ``html``."""
    for pattern in _RECAPTCHA_KEY_PATTERNS:
        match = pattern.search(html)
        if match:
            key = match.group(1).strip()
            if key:
                return key
    return None


def extract_turnstile_site_key(html: str) -> str | None:
    """Return the first plausible Turnstile site key found in ``html``.

    Keys of 10 characters or fewer are rejected as noise.
    """
    for pattern in _TURNSTILE_KEY_PATTERNS:
        match = pattern.search(html)
        if match:
            key = match.group(1).strip()
            if len(key) > _MIN_TURNSTILE_KEY_LENGTH:
                return key
    return None


def detect(content: str, page_url: str = "") -> CaptchaChallenge | None:
    """Detect a CAPTCHA or challenge page.

    Checks run in priority order: reCAPTCHA v2 with a key, Turnstile with a
    key, then Cloudflare interstitial indicators (which still upgrade to
    Turnstile if a key can be found).

    Args:
        content: Page HTML.
        page_url: URL of the page, copied onto the challenge.

    Returns:
        The challenge, or None for a clean page. Never raises.
    """
    if not content:
        return None

    lower = content.lower()

    if "g-recaptcha" in lower or "recaptcha" in lower:
        key = extract_recaptcha_site_key(content)
        if key:
            return CaptchaChallenge(ChallengeKind.RECAPTCHA_V2, key, page_url)

    if "turnstile" in lower or "cf-turnstile" in lower:
        key = extract_turnstile_site_key(content)
        if key:
            return CaptchaChallenge(ChallengeKind.TURNSTILE, key, page_url)

    if any(indicator in lower for indicator in CLOUDFLARE_INDICATORS):
        key = extract_turnstile_site_key(content)
        if key:
            return CaptchaChallenge(ChallengeKind.TURNSTILE, key, page_url)
        return CaptchaChallenge(ChallengeKind.CLOUDFLARE, None, page_url)

    return None


def is_resolved(content: str) -> bool:
    """Whether a page looks like real content after a challenge.

    Requires that no challenge indicator remains and that at least three
    content markers are present.
    """
    lower = content.lower()

    if any(indicator in lower for indicator in _UNRESOLVED_INDICATORS):
        return False

    found = sum(1 for indicator in _CONTENT_INDICATORS if indicator in lower)
    return found >= _MIN_CONTENT_INDICATORS
