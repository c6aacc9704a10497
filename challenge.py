"""Bot-challenge detection over raw page HTML.

The soft score is an additive fuzzy classifier: every ordinary indicator found
adds 1, every strong indicator adds 2, and the page counts as challenged once
the score reaches 20% of the maximum. Some strong indicators are phrase variants
of ordinary ones, so the same evidence can count twice. Those lists were
captured from real interstitials; re-validate against saved challenge pages
before changing them.
"""
import math

from models import ChallengeVerdict, PageSnapshot

CHALLENGE_INDICATORS = (
    "just a moment",
    "checking your browser",
    "verifying you are human",
    "needs to review the security of your connection",
    "enable javascript and cookies to continue",
    "ray id:",
    "cf-ray",
    "cf_chl_",
    "challenges.cloudflare.com",
    "turnstile",
)

STRONG_CHALLENGE_INDICATORS = (
    "<title>just a moment...</title>",
    "/cdn-cgi/challenge-platform/",
    "window._cf_chl_opt",
    "cf-browser-verification",
)

HARD_CHALLENGE_INDICATORS = (
    "captcha",
    "hcaptcha",
    "h-captcha",
    "recaptcha",
    "g-recaptcha",
    "select all images",
    "please complete the security check",
    "verify you are human by completing",
)

THRESHOLD_RATIO = 0.2

MAX_SCORE = len(CHALLENGE_INDICATORS) + 2 * len(STRONG_CHALLENGE_INDICATORS)
THRESHOLD = math.floor(MAX_SCORE * THRESHOLD_RATIO)


def detect_challenge(html: str) -> ChallengeVerdict:
    low = (html or "").lower()
    score = sum(1 for ind in CHALLENGE_INDICATORS if ind.lower() in low)
    score += sum(2 for ind in STRONG_CHALLENGE_INDICATORS if ind.lower() in low)
    return ChallengeVerdict(
        detected=score >= THRESHOLD,
        score=score,
        max_score=MAX_SCORE,
        threshold=THRESHOLD,
    )


def detect_hard_challenge(html: str) -> bool:
    low = (html or "").lower()
    return any(ind in low for ind in HARD_CHALLENGE_INDICATORS)


def assess(snapshot: PageSnapshot) -> ChallengeVerdict:
    """Soft score plus the hard flag. A hard challenge always counts as detected."""
    verdict = detect_challenge(snapshot.html)
    hard = detect_hard_challenge(snapshot.html)
    return ChallengeVerdict(
        detected=verdict.detected or hard,
        score=verdict.score,
        max_score=verdict.max_score,
        threshold=verdict.threshold,
        is_hard=hard,
    )
