"""Trade commands and queries against the remote API.

Mutations follow the same order every time:

1. validate user input (cancel reason, form fields)
2. refuse a duplicate of a command still in flight for the same trade
3. re-read the active role and re-check the lifecycle guard
4. dispatch through the authenticated pipeline
5. invalidate cached trade results on success

Steps 1-3 never touch the network for the command itself, so a refused
action leaves no trace on the server.
"""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import ValidationError

from tradedesk.core.observability import logger
from tradedesk.core.session_state import SessionState
from tradedesk.models.domain import TradeAction, TradeType
from tradedesk.schemas.trades import (
    CancelTradeRequest,
    CreateTradeRequest,
    Trade,
    TradeEnvelope,
    TradeFilters,
    TradeFormData,
    TradesEnvelope,
    UpdateTradeRequest,
)
from tradedesk.services.http_pipeline import ApiResult, AuthenticatedPipeline
from tradedesk.services.response_cache import CacheTag, ResponseCache, cache_key
from tradedesk.services.trade_lifecycle import (
    TradeValidationError,
    ensure_action_allowed,
    validate_cancel_reason,
    validate_trade_fields,
)

TRADE_LIST_TAG: CacheTag = ("Trade", "LIST")


class TradeActionInFlight(Exception):
    def __init__(self, trade_id: str, action: TradeAction):
        self.trade_id = trade_id
        self.action = action
        super().__init__(f"{action.value} already in progress for trade {trade_id}")


class TradeApiError(Exception):
    """The server refused or failed a trade request."""

    def __init__(self, status_code: int, message: Optional[str], request_id: Optional[str] = None):
        self.status_code = status_code
        self.message = message or f"Request failed with status {status_code}"
        self.request_id = request_id
        super().__init__(self.message)


def trade_tag(trade_id: str) -> CacheTag:
    return ("Trade", trade_id)


class TradeService:
    def __init__(
        self,
        pipeline: AuthenticatedPipeline,
        session: SessionState | None = None,
        cache: ResponseCache | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.session = session or pipeline.session
        self.cache = cache
        self._in_flight: set[tuple[str, TradeAction]] = set()

    # Queries

    async def list_trades(self, filters: TradeFilters | None = None) -> TradesEnvelope:
        params = (filters or TradeFilters()).to_params()
        key = self._cache_key("/trades", params)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        result = await self.pipeline.get("/trades", params=params or None)
        self._raise_for_failure(result)
        envelope = self._parse(TradesEnvelope, result)
        trades = envelope.data or []

        if self.cache is not None:
            tags = [TRADE_LIST_TAG, *(trade_tag(t.id) for t in trades)]
            self.cache.put(key, envelope, tags)
        return envelope

    async def get_trade(self, trade_id: str, *, fresh: bool = False) -> Trade:
        """Fetch one trade; `fresh` skips the cached copy but still refreshes it."""

        path = f"/trades/{trade_id}"
        key = self._cache_key(path, None)
        if self.cache is not None and not fresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        result = await self.pipeline.get(path)
        trade = self._unwrap_trade(result)
        if self.cache is not None:
            self.cache.put(key, trade, [trade_tag(trade.id)])
        return trade

    # Commands

    async def create_trade(self, request: CreateTradeRequest) -> Trade:
        errors = validate_trade_fields(
            TradeFormData(
                party_id=request.party_id,
                trade_type=request.trade_type,
                trade_reference=request.trade_reference or "",
                remarks=request.remarks or "",
            )
        )
        if errors:
            raise TradeValidationError(errors)
        ensure_action_allowed(self.session.active_role, None, TradeAction.create)

        result = await self.pipeline.post("/trades", json=request.to_wire())
        trade = self._unwrap_trade(result)
        self._invalidate(None)
        logger.info(
            "trade_created",
            extra={"trade_id": trade.id, "company_id": self.session.active_company_id},
        )
        return trade

    async def update_trade(self, request: UpdateTradeRequest, trade: Trade | None = None) -> Trade:
        async with self._claim(request.id, TradeAction.edit):
            current = trade or await self.get_trade(request.id, fresh=True)
            merged = TradeFormData.from_trade(current).model_copy(
                update=request.model_dump(exclude={"id"}, exclude_none=True)
            )
            errors = validate_trade_fields(merged)
            if errors:
                raise TradeValidationError(errors)
            ensure_action_allowed(self.session.active_role, current, TradeAction.edit)

            result = await self.pipeline.put(f"/trades/{request.id}", json=request.body())
            updated = self._unwrap_trade(result)
            self._invalidate(request.id)
            return updated

    async def submit_trade(self, trade_id: str, trade: Trade | None = None) -> Trade:
        return await self._transition(trade_id, TradeAction.submit, trade)

    async def approve_trade(self, trade_id: str, trade: Trade | None = None) -> Trade:
        return await self._transition(trade_id, TradeAction.approve, trade)

    async def cancel_trade(self, trade_id: str, reason: str, trade: Trade | None = None) -> Trade:
        error = validate_cancel_reason(reason)
        if error:
            raise TradeValidationError({"cancelReason": error})
        request = CancelTradeRequest(id=trade_id, cancel_reason=reason)
        return await self._transition(trade_id, TradeAction.cancel, trade, body=request.body())

    async def close_trade(self, trade_id: str, trade: Trade | None = None) -> Trade:
        return await self._transition(trade_id, TradeAction.close, trade)

    # Internals

    async def _transition(
        self,
        trade_id: str,
        action: TradeAction,
        trade: Trade | None,
        *,
        body: dict | None = None,
    ) -> Trade:
        async with self._claim(trade_id, action):
            current = trade or await self.get_trade(trade_id, fresh=True)
            # Role is read now, not when the action was offered.
            role = self.session.active_role
            ensure_action_allowed(role, current, action)

            result = await self.pipeline.post(f"/trades/{trade_id}/{action.value}", json=body)
            updated = self._unwrap_trade(result)
            self._invalidate(trade_id)
            logger.info(
                "trade_transition",
                extra={
                    "trade_id": trade_id,
                    "action": action.value,
                    "from_stage": current.trade_stage.value,
                    "to_stage": updated.trade_stage.value,
                    "role": role.value if role else None,
                    "request_id": result.request_id,
                },
            )
            return updated

    def _claim(self, trade_id: str, action: TradeAction) -> "_InFlightClaim":
        return _InFlightClaim(self._in_flight, (trade_id, action))

    def _cache_key(self, path: str, params: dict | None) -> str:
        return cache_key(self.session.active_company_id, "GET", path, params)

    def _invalidate(self, trade_id: Optional[str]) -> None:
        if self.cache is None:
            return
        tags = [TRADE_LIST_TAG]
        if trade_id:
            tags.append(trade_tag(trade_id))
        self.cache.invalidate(tags)

    @staticmethod
    def _raise_for_failure(result: ApiResult) -> None:
        if not result.success:
            logger.warning(
                "trade_api_rejected",
                extra={
                    "status_code": result.status_code,
                    "request_id": result.request_id,
                    "server_message": result.message,
                },
            )
            raise TradeApiError(result.status_code, result.message, result.request_id)

    @staticmethod
    def _parse(model, result: ApiResult):
        try:
            return model.model_validate(result.data)
        except ValidationError as exc:
            message = f"Malformed trade response: {exc.error_count()} error(s)"
            raise TradeApiError(result.status_code, message, result.request_id) from exc

    def _unwrap_trade(self, result: ApiResult) -> Trade:
        self._raise_for_failure(result)
        envelope = self._parse(TradeEnvelope, result)
        if envelope.data is None:
            message = envelope.message or "Empty trade response"
            raise TradeApiError(result.status_code, message, result.request_id)
        return envelope.data


class _InFlightClaim:
    def __init__(self, registry: set, key: tuple[str, TradeAction]):
        self.registry = registry
        self.key = key

    async def __aenter__(self) -> None:
        if self.key in self.registry:
            raise TradeActionInFlight(*self.key)
        self.registry.add(self.key)

    async def __aexit__(self, *exc_info) -> None:
        self.registry.discard(self.key)


def filter_trades_by_search(trades: Iterable[Trade], term: Optional[str]) -> list[Trade]:
    """Case-insensitive match on number, party, reference and remarks."""

    trades = list(trades)
    if not term or not term.strip():
        return trades
    needle = term.strip().lower()

    def _matches(trade: Trade) -> bool:
        haystack = (
            trade.trade_number,
            trade.party_name,
            trade.trade_reference or "",
            trade.remarks or "",
        )
        return any(needle in value.lower() for value in haystack)

    return [t for t in trades if _matches(t)]


def filter_trades_by_type(
    trades: Iterable[Trade], trade_type: TradeType | str | None
) -> list[Trade]:
    trades = list(trades)
    if not trade_type:
        return trades
    wanted = TradeType(trade_type)
    return [t for t in trades if t.trade_type == wanted]
