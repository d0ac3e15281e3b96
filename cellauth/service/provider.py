"""
Base for providers.
"""

import abc
from typing import Literal

from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.errors import ProviderError
from cellauth.core.models import CredentialCheckResponse, GoogleProfile


class BaseLoginError(ProviderError):
    pass


class AuthProvider(abc.ABC):
    """
    The base class for authentication providers. Downstream must implement:

    - authorization_url: the consent-screen URL to send users to, carrying
                         our `state` token.
    - exchange_code: turn the one-time authorization code from the provider
                     redirect into a profile. Codes are single use on the
                     provider side, so a failure here is final for that
                     attempt and must not be retried.
    - check_credentials: tell an administrator whether a client id and
                         secret would be accepted, without logging anyone
                         in.
    """

    name: Literal["mock", "google"]

    @abc.abstractmethod
    def authorization_url(
        self, redirect_uri: str, state: str, settings: Settings
    ) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        settings: Settings,
        log: FilteringBoundLogger,
    ) -> GoogleProfile:
        raise NotImplementedError

    @abc.abstractmethod
    async def check_credentials(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        log: FilteringBoundLogger,
    ) -> CredentialCheckResponse:
        raise NotImplementedError
