from tradedesk.schemas.auth import (
    AuthEnvelope,
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    GoogleSignInRequest,
    LoginRequest,
    ProfileEnvelope,
    RefreshEnvelope,
    RefreshedCredentials,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
)
from tradedesk.schemas.common import ApiEnvelope, ApiModel, Pagination
from tradedesk.schemas.trades import (
    CancelTradeRequest,
    CreateTradeRequest,
    Trade,
    TradeEnvelope,
    TradeFilters,
    TradeFormData,
    TradesEnvelope,
    TradeTimelineEvent,
    UpdateTradeRequest,
)
from tradedesk.schemas.users import CompanyAccess, User, UserInfo

__all__ = [
    "ApiEnvelope",
    "ApiModel",
    "AuthEnvelope",
    "AuthResponse",
    "CancelTradeRequest",
    "ChangePasswordRequest",
    "CompanyAccess",
    "CreateTradeRequest",
    "ForgotPasswordRequest",
    "GoogleSignInRequest",
    "LoginRequest",
    "Pagination",
    "ProfileEnvelope",
    "RefreshEnvelope",
    "RefreshTokenRequest",
    "RefreshedCredentials",
    "RegisterRequest",
    "ResetPasswordRequest",
    "Trade",
    "TradeEnvelope",
    "TradeFilters",
    "TradeFormData",
    "TradeTimelineEvent",
    "TradesEnvelope",
    "UpdateProfileRequest",
    "UpdateTradeRequest",
    "User",
    "UserInfo",
]
