"""
Pydantic models for request/responses to APIs.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel

from cellauth.core.state import FlowType
from cellauth.core.timing import is_expired
from cellauth.core.uuid import UUID


class RequestKind(str, Enum):
    LOGIN = "login"
    CONNECT = "connect"


class RequestStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self != RequestStatus.PENDING


class GoogleProfile(BaseModel):
    """
    The userinfo document returned by Google.
    """

    id: str
    email: str
    name: str
    verified_email: bool | None = None
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None
    locale: str | None = None
    hd: str | None = None

    def normalized(self) -> "NormalizedProfile":
        return NormalizedProfile(
            display_name=self.name.strip(),
            email=self.email.strip().lower(),
            provider_account_id=self.id,
        )


class NormalizedProfile(BaseModel):
    display_name: str
    email: str
    provider_account_id: str


class ExchangeRequest(BaseModel):
    code: str
    state: str
    redirect_uri: str


class ExchangeResponse(BaseModel):
    success: bool
    profile: GoogleProfile | None = None


class LoginResult(BaseModel):
    success: bool
    user_id: UUID
    created: bool = False


class ConnectResult(BaseModel):
    success: bool
    message: str
    connected_email: str | None = None
    converted: bool = False
    already_connected: bool = False


class CreateRequestBody(BaseModel):
    redirect_uri: str


class CreateRequestResponse(BaseModel):
    id: UUID
    expires_at: datetime


class AuthorizeBody(BaseModel):
    state: str


class AuthorizeResponse(BaseModel):
    auth_url: str


class RequestData(BaseModel):
    """
    Snapshot of a login or connect request, as observed by the opener tab.
    """

    id: UUID
    kind: RequestKind
    status: RequestStatus
    error: str | None = None
    redirect_uri: str
    created_at: datetime
    expires_at: datetime
    completed_at: datetime | None = None

    def observed(self) -> "RequestData":
        """
        The request as clients must see it: pending past its expiry reads
        as failed, whether or not the sweeper has removed it yet.
        """
        if self.status == RequestStatus.PENDING and is_expired(self.expires_at):
            return self.model_copy(
                update=dict(
                    status=RequestStatus.FAILED,
                    error="The authentication request has expired",
                )
            )

        return self


class CallbackResult(BaseModel):
    success: bool
    flow_type: FlowType | None = None
    error: str | None = None
    error_code: str | None = None
    message: str


class GoogleConfigResponse(BaseModel):
    enabled: bool
    client_id: str | None


class GoogleProfileResponse(BaseModel):
    name: str
    email: str | None
    picture: str | None
    provider_account_id: str


class LoginCodeResponse(BaseModel):
    success: bool
    code: str
    display_code: str
    expires_at: datetime


class ActiveLoginCodeResponse(BaseModel):
    success: bool
    code: str | None = None
    display_code: str | None = None
    expires_at: datetime | None = None
    reason: Literal["not_authenticated", "no_active_code", "feature_disabled"] | None = (
        None
    )


class VerifyLoginCodeBody(BaseModel):
    code: str


class VerifyLoginCodeResponse(BaseModel):
    success: bool
    message: str
    reason: (
        Literal["invalid_code", "code_expired", "user_not_found", "feature_disabled"]
        | None
    ) = None
    user_id: UUID | None = None


class RecoveryCodeResponse(BaseModel):
    success: bool
    recovery_code: str | None = None
    reason: Literal["not_authenticated", "user_not_found", "feature_disabled"] | None = (
        None
    )


class VerifyRecoveryCodeBody(BaseModel):
    recovery_code: str


class VerifyRecoveryCodeResponse(BaseModel):
    success: bool
    message: str
    reason: Literal["invalid_code", "feature_disabled"] | None = None
    user_id: UUID | None = None


class GoogleAuthConfigData(BaseModel):
    """
    The stored Google configuration as shown to administrators. The client
    secret is reduced to whether one is stored.
    """

    type: Literal["google"] = "google"
    enabled: bool
    project_id: str | None = None
    client_id: str | None = None
    has_client_secret: bool
    is_configured: bool
    redirect_uris: list[str] = []
    configured_by: UUID | None = None
    configured_at: datetime


class UpdateGoogleAuthConfigBody(BaseModel):
    enabled: bool
    project_id: str | None = None
    client_id: str
    # Empty keeps the stored secret.
    client_secret: str = ""
    redirect_uris: list[str] = []


class ToggleGoogleAuthBody(BaseModel):
    enabled: bool


class CheckGoogleCredentialsBody(BaseModel):
    client_id: str
    # None checks the stored secret.
    client_secret: str | None = None


class CredentialCheckResponse(BaseModel):
    success: bool
    message: str
    issues: list[str] = []


class UpdateNameBody(BaseModel):
    name: str


class MessageResponse(BaseModel):
    success: bool
    message: str
    reason: str | None = None


class AccessLevelBody(BaseModel):
    access_level: Literal["user", "system_admin"]


class SweepPassResult(BaseModel):
    deleted_count: int


class SweepResult(BaseModel):
    success: bool
    login_requests: SweepPassResult
    connect_requests: SweepPassResult
    login_codes: SweepPassResult

    @property
    def deleted_count(self) -> int:
        return (
            self.login_requests.deleted_count
            + self.connect_requests.deleted_count
            + self.login_codes.deleted_count
        )


class CodeValidityResponse(BaseModel):
    valid: bool
