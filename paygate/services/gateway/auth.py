"""Candidate authentication schemes for gateway requests.

The gateway has accepted different credential headers over time, so the
client tries these in priority order and advances on HTTP 401.
"""

from abc import ABC, abstractmethod


class AuthStrategy(ABC):
    """Decorate outgoing request headers with credentials."""

    name: str

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key

    @abstractmethod
    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        """Return a copy of `headers` with credentials attached."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class BearerStrategy(AuthStrategy):
    name = "Bearer Token"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        return {**headers, "Authorization": f"Bearer {self._secret_key}"}


class ApiKeyHeaderStrategy(AuthStrategy):
    name = "API Key Header"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        return {**headers, "X-API-Key": self._secret_key}


class RawAuthorizationStrategy(AuthStrategy):
    name = "Authorization Header"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        return {**headers, "Authorization": self._secret_key}


class CustomHeaderStrategy(AuthStrategy):
    name = "Custom Header"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        return {**headers, "X-Lipila-Key": self._secret_key}


def default_strategies(secret_key: str) -> list[AuthStrategy]:
    """Strategies in the order the gateway is probed."""

    return [
        BearerStrategy(secret_key),
        ApiKeyHeaderStrategy(secret_key),
        RawAuthorizationStrategy(secret_key),
        CustomHeaderStrategy(secret_key),
    ]
