"""Error taxonomy for profile stats extraction.

Every error carries a machine-readable ``code`` and an HTTP ``status_code``
so the API layer can render it without knowing where it came from.
"""


class GuideStatsError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidIdentifierError(GuideStatsError):
    """Provide contrib_url=.../maps/contrib/<id> or just the numeric <id>."""

    code = "invalid_identifier"
    status_code = 400


class BinaryNotFoundError(GuideStatsError):
    """No usable Chrome/Chromium binary could be located."""

    code = "binary_not_found"
    status_code = 503


class ConsentWallError(GuideStatsError):
    """The page is blocked by a consent interstitial."""

    code = "consent_wall"
    status_code = 422


class NavigationTimeoutError(GuideStatsError):
    """Navigation did not produce initial markup in time."""

    code = "navigation_timeout"
    status_code = 422


class PanelTimeoutError(GuideStatsError):
    """An expected element never appeared on the page."""

    code = "panel_timeout"
    status_code = 422


class AttemptFailedError(GuideStatsError):
    """The browser session failed for an unclassified reason."""

    code = "attempt_failed"
    status_code = 422


class ScrapeExhaustedError(GuideStatsError):
    """All usable candidate URLs failed; carries the last underlying reason."""

    code = "exhausted"
    status_code = 422

    def __init__(self, reason: GuideStatsError, attempts: list[str] | None = None):
        self.reason = reason
        self.attempts = attempts or []
        super().__init__(f"Failed to parse profile ({reason.code}: {reason.message})")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason.to_dict()
        data["attempts"] = list(self.attempts)
        return data


class ExecutionTimeoutError(GuideStatsError):
    """The scrape did not finish before its deadline."""

    code = "execution_timeout"
    status_code = 504
