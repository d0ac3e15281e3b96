"""
The mock Auth Provider, used for testing and local development.
"""

from urllib.parse import urlencode

from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.models import CredentialCheckResponse, GoogleProfile
from cellauth.service.provider import AuthProvider, BaseLoginError


class MockLoginError(BaseLoginError):
    pass


class MockProvider(AuthProvider):
    """
    Hands out a fixed profile for any code it has not seen before. Like the
    real provider, every authorization code can be exchanged once only.
    Profiles can be registered per code to simulate several accounts.
    """

    name = "mock"

    profile: GoogleProfile
    profiles: dict[str, GoogleProfile]
    used_codes: set[str]
    exchanges: int
    # Client ids whose credentials are reported as rejected.
    rejected_clients: set[str]

    def __init__(self, profile: GoogleProfile):
        self.profile = profile
        self.profiles = {}
        self.used_codes = set()
        self.exchanges = 0
        self.rejected_clients = set()

    def register(self, code: str, profile: GoogleProfile):
        self.profiles[code] = profile

    def authorization_url(
        self, redirect_uri: str, state: str, settings: Settings
    ) -> str:
        query = {"redirect_uri": redirect_uri, "state": state}
        return f"{settings.hostname}/mock/authorize?{urlencode(query)}"

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        settings: Settings,
        log: FilteringBoundLogger,
    ) -> GoogleProfile:
        self.exchanges += 1

        if code in self.used_codes:
            await log.ainfo("mock.exchange.code_reused")
            raise MockLoginError("Failed to exchange authorization code for token")

        self.used_codes.add(code)

        return self.profiles.get(code, self.profile)

    async def check_credentials(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        log: FilteringBoundLogger,
    ) -> CredentialCheckResponse:
        if client_id in self.rejected_clients:
            await log.ainfo("mock.credentials.rejected", client_id=client_id)
            return CredentialCheckResponse(
                success=False,
                message="Invalid credentials: the client was rejected.",
                issues=["Invalid Client ID or Secret"],
            )

        return CredentialCheckResponse(success=True, message="Credentials are valid!")
