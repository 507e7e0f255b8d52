from __future__ import annotations


class VerificationError(Exception):
    """Base class for verification and delivery failures."""


class CooldownActive(VerificationError):
    def __init__(self, retry_after: int):
        super().__init__(f"code requested too recently; retry in {retry_after}s")
        self.retry_after = retry_after


class ProviderUnavailable(VerificationError):
    """Provider has no credentials configured."""

    def __init__(self, provider: str):
        super().__init__(f"{provider} is not configured")
        self.provider = provider


class ProviderError(VerificationError):
    """A configured provider failed to accept the message."""

    def __init__(self, provider: str, detail: str, status_code: int | None = None):
        msg = f"{provider} failed: {detail}"
        if status_code is not None:
            msg = f"{provider} failed ({status_code}): {detail}"
        super().__init__(msg)
        self.provider = provider
        self.detail = detail
        self.status_code = status_code


class AllProvidersFailed(VerificationError):
    def __init__(self, channel: str, attempted: list[str]):
        tried = ", ".join(attempted) if attempted else "none configured"
        super().__init__(f"no {channel} provider delivered the message ({tried})")
        self.channel = channel
        self.attempted = attempted
