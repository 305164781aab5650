from tradedesk.services.auth import AuthError, AuthService
from tradedesk.services.http_pipeline import ApiRequest, ApiResult, AuthenticatedPipeline
from tradedesk.services.response_cache import ResponseCache
from tradedesk.services.trade_lifecycle import TradeActionNotAllowed, TradeValidationError
from tradedesk.services.trade_timeline import build_trade_timeline
from tradedesk.services.trades import TradeActionInFlight, TradeApiError, TradeService

__all__ = [
    "ApiRequest",
    "ApiResult",
    "AuthError",
    "AuthService",
    "AuthenticatedPipeline",
    "ResponseCache",
    "TradeActionInFlight",
    "TradeActionNotAllowed",
    "TradeApiError",
    "TradeService",
    "TradeValidationError",
    "build_trade_timeline",
]
