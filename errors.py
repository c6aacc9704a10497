class ScraperError(Exception):
    """Base class for errors raised by the scraper."""


class ConfigError(ScraperError):
    """Run cannot start: no URLs, or no field rules in manual mode."""


class NavigationError(ScraperError):
    """Page failed to load or came back empty. Retryable."""


class ChallengeFailure(ScraperError):
    """Soft challenge did not clear within the configured waits. Retryable."""


class HardChallengeBackoff(ScraperError):
    """Captcha-class challenge; only rotation and waiting are attempted."""


class LoginFailure(ScraperError):
    """Login could not be completed. Never fatal to the run."""
