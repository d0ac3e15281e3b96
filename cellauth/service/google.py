"""
Google OAuth: building the consent-screen URL, exchanging the
authorization code for the user's profile, and checking client
credentials for administrators.
"""

from json import JSONDecodeError
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError
from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.errors import FeatureDisabledError
from cellauth.core.models import CredentialCheckResponse, GoogleProfile
from cellauth.service.provider import AuthProvider, BaseLoginError

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

# A code Google can never have issued, used to check client credentials.
CREDENTIAL_CHECK_CODE = "dummy_code_for_testing"


class GoogleLoginError(BaseLoginError):
    pass


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except JSONDecodeError:
        return None


class GoogleAuthProvider(AuthProvider):
    """
    Authentication provider for Google accounts.
    """

    name = "google"

    timeout: float
    transport: httpx.AsyncBaseTransport | None

    def __init__(
        self,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.transport = transport

    def authorization_url(
        self, redirect_uri: str, state: str, settings: Settings
    ) -> str:
        """
        Create the URL of Google's consent screen.

        Raises
        ------
        FeatureDisabledError
            If Google login is not configured.
        """
        if not settings.google_configured:
            raise FeatureDisabledError(
                "Google authentication is currently disabled or not configured"
            )

        query = {
            "client_id": settings.google_client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "consent",
            "access_type": "offline",
        }

        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(query)}"

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        settings: Settings,
        log: FilteringBoundLogger,
    ) -> GoogleProfile:
        """
        Perform the Google login _after_ receiving the code from the consent
        screen redirect.

        Parameters
        ----------
        code: str
            The one-time authorization code provided by Google.
        redirect_uri: str
            The redirect URI used to obtain the code; Google requires it to
            match exactly.
        settings
            Server settings, containing our Google client credentials.
        log: FilteringBoundLogger
            Logger

        Returns
        -------
        profile: GoogleProfile
            The user's Google profile.

        Raises
        ------
        FeatureDisabledError
            If Google login is not configured.
        GoogleLoginError
            If Google refuses the code or returns an unusable profile.
        """
        if not settings.google_configured:
            raise FeatureDisabledError(
                "Google authentication is currently disabled or not configured"
            )

        log = log.bind(redirect_uri=redirect_uri)

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": settings.google_client_id,
                        "client_secret": settings.google_client_secret,
                        "code": code,
                        "grant_type": "authorization_code",
                        "redirect_uri": redirect_uri,
                    },
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                await log.aerror("google.exchange.transport_error", error=str(e))
                raise GoogleLoginError(
                    "Failed to exchange authorization code for token"
                )

            log = log.bind(status_code=response.status_code)

            if response.status_code != 200:
                content = _json_or_none(response) or {}
                await log.aerror(
                    "google.exchange.failed", google_error=content.get("error")
                )
                raise GoogleLoginError(
                    "Failed to exchange authorization code for token"
                )

            access_token = (_json_or_none(response) or {}).get("access_token")

            if access_token is None:
                await log.aerror("google.exchange.no_access_token")
                raise GoogleLoginError(
                    "Failed to exchange authorization code for token"
                )

            await log.ainfo("google.exchange.success")

            try:
                response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            except httpx.HTTPError as e:
                await log.aerror("google.profile.transport_error", error=str(e))
                raise GoogleLoginError("Failed to fetch user profile from Google")

        if response.status_code != 200:
            await log.aerror("google.profile.failed", status_code=response.status_code)
            raise GoogleLoginError("Failed to fetch user profile from Google")

        try:
            profile = GoogleProfile.model_validate(_json_or_none(response))
        except ValidationError:
            await log.aerror("google.profile.invalid")
            raise GoogleLoginError("Invalid Google profile data received")

        if not (profile.id and profile.email and profile.name):
            await log.aerror("google.profile.incomplete")
            raise GoogleLoginError("Invalid Google profile data received")

        await log.ainfo("google.profile.success", provider_account_id=profile.id)

        return profile

    async def check_credentials(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        log: FilteringBoundLogger,
    ) -> CredentialCheckResponse:
        """
        Ask Google's token endpoint to redeem a code that cannot exist. The
        kind of refusal tells us whether the client credentials are good:
        `invalid_grant` means Google accepted the client and only disliked
        the code, `invalid_client` means the id or secret is wrong.
        """
        log = log.bind(client_id=client_id)

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "code": CREDENTIAL_CHECK_CODE,
                        "grant_type": "authorization_code",
                        "redirect_uri": redirect_uri,
                    },
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                await log.aerror("google.credentials.transport_error", error=str(e))
                return CredentialCheckResponse(
                    success=False,
                    message=(
                        "Failed to connect to Google API. Please check your "
                        "internet connection."
                    ),
                    issues=["Network error"],
                )

        content = _json_or_none(response)

        if not isinstance(content, dict):
            content = {}

        error = content.get("error")

        await log.ainfo(
            "google.credentials.checked",
            status_code=response.status_code,
            google_error=error,
        )

        match error:
            case "invalid_grant":
                return CredentialCheckResponse(
                    success=True,
                    message=(
                        "Credentials are valid! Google accepted the Client ID "
                        "and Secret."
                    ),
                )
            case "invalid_client" | "unauthorized_client":
                return CredentialCheckResponse(
                    success=False,
                    message=(
                        "Invalid credentials: Google rejected the Client ID or "
                        "Secret."
                    ),
                    issues=["Invalid Client ID or Secret"],
                )
            case "redirect_uri_mismatch":
                return CredentialCheckResponse(
                    success=True,
                    message=(
                        "Credentials are valid! (Note: You may need to add "
                        "redirect URIs in Google Cloud Console)"
                    ),
                )

        description = content.get("error_description") or error or "Unknown error"

        return CredentialCheckResponse(
            success=False,
            message=f"Google API error: {description}",
            issues=[error or "Unknown error"],
        )
