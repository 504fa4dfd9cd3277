from __future__ import annotations

from abc import ABC, abstractmethod

MANAGEMENT_SCOPE = "https://management.azure.com/.default"
STORAGE_SCOPE = "https://storage.azure.com/.default"


class CredentialUnavailableError(Exception):
    """No token can be produced for the requested scope."""

    def __init__(self, scope: str) -> None:
        # Carries the ARM error code so the retry policy treats it as permanent.
        super().__init__(f"InvalidAuthenticationToken: no access token available for {scope}")
        self.scope = scope


class TokenCredential(ABC):
    """Opaque bearer-token source injected at startup.

    How tokens are obtained (managed identity, CLI login, ...) is outside this
    service; clients only ask for a token per scope before each request.
    """

    @abstractmethod
    async def get_token(self, scope: str) -> str:
        """Return a bearer token valid for ``scope``."""


class StaticTokenCredential(TokenCredential):
    """Serves pre-acquired tokens, keyed by scope."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = {scope: token for scope, token in tokens.items() if token}

    async def get_token(self, scope: str) -> str:
        try:
            return self._tokens[scope]
        except KeyError:
            raise CredentialUnavailableError(scope) from None

    def __repr__(self) -> str:
        # Never render token values.
        return f"StaticTokenCredential(scopes={sorted(self._tokens)})"
