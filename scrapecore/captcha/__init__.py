"""
CAPTCHA detection, solving and the known-CAPTCHA domain registry.
"""

from scrapecore.captcha.detector import (
    CaptchaChallenge,
    ChallengeKind,
    detect,
    extract_recaptcha_site_key,
    extract_turnstile_site_key,
    is_resolved,
)
from scrapecore.captcha.registry import CaptchaDomainRegistry
from scrapecore.captcha.solver import (
    CaptchaHandler,
    CaptchaSolver,
    TwoCaptchaSolver,
    inject_and_submit,
)

__all__ = [
    "CaptchaChallenge",
    "ChallengeKind",
    "detect",
    "extract_recaptcha_site_key",
    "extract_turnstile_site_key",
    "is_resolved",
    "CaptchaDomainRegistry",
    "CaptchaHandler",
    "CaptchaSolver",
    "TwoCaptchaSolver",
    "inject_and_submit",
]
