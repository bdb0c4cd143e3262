"""Error taxonomy for cascade, scan, and moderation jobs."""

from typing import Optional


class ConfigurationError(Exception):
    """Unknown entity kind, malformed cascade rule, or undeclared index.

    Fatal: surfaced immediately and never retried.
    """


class ScanFailure(Exception):
    """A single scan query failed. Sibling scans keep going."""

    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"Scan of {path} failed: {cause}")
        self.path = path
        self.cause = cause


class WorkItemFailure(Exception):
    """A single fan-out write or delete failed."""

    def __init__(self, unit: object, cause: BaseException):
        super().__init__(f"Work unit {unit!r} failed: {cause}")
        self.unit = unit
        self.cause = cause


class ExternalServiceError(Exception):
    """Classifier, mail relay, push sender, auth or storage call failed."""

    def __init__(self, service: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.cause = cause
