from __future__ import annotations


class ScraperError(Exception):
    status_code = 500

    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class InvalidInput(ScraperError):
    status_code = 400


class NotConfigured(ScraperError):
    def __init__(self, collaborator: str) -> None:
        super().__init__(f"{collaborator}_not_configured", f"{collaborator} API key is not configured")
        self.collaborator = collaborator


class UpstreamError(ScraperError):
    def __init__(self, code: str, status: int | None = None, message: str | None = None) -> None:
        super().__init__(code, message)
        self.status = status


class RateLimited(UpstreamError):
    status_code = 429

    def __init__(self, code: str = "rate_limited", retry_after_ms: int | None = None) -> None:
        super().__init__(code, status=429)
        self.retry_after_ms = retry_after_ms


class AlreadyRunning(ScraperError):
    status_code = 409

    def __init__(self) -> None:
        super().__init__("already_running", "A scraping job is already running for this session")


class VisionError(ScraperError):
    pass


class ExportError(ScraperError):
    pass


class NotFound(ScraperError):
    status_code = 404
