from __future__ import annotations


class ConfigurationError(Exception):
    """Raised at startup when required settings are missing."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(
            f"Missing required environment variables: {', '.join(missing)}. "
            "Set them in the environment or in .env."
        )


class StoreError(Exception):
    """Raised by a store when the backing service fails or is unreachable."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        msg = f"Store {operation} failed"
        if cause is not None:
            msg = f"{msg}: {cause}"
        super().__init__(msg)


class SubmissionRejected(Exception):
    """Raised when a score submission fails validation."""

    def __init__(self, reason, detail: str) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(detail)
