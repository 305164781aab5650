"""Authenticated request pipeline.

Every outbound API call goes through `AuthenticatedPipeline.request`:

    SENT ──(not 401)──────────────────────────────────────────> DONE
      └─(401)─> AWAITING_REFRESH ──(no refresh token / refresh failed)──> DONE (logout)
                     └─(refreshed)─> RETRIED ──(whatever comes back)──> DONE

Each request makes at most one refresh call and at most one retry. The
`_Exchange` object enforces those edges, so a second refresh or retry is a
programming error rather than a silent loop.

Transport errors (DNS, connect, timeout) are never treated as 401s; they
propagate to the caller as `httpx.TransportError`.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from tradedesk.config import Settings, settings
from tradedesk.core.observability import elapsed_ms, logger, request_id_for, safe_headers
from tradedesk.core.session_state import SessionState
from tradedesk.schemas.auth import RefreshEnvelope, RefreshTokenRequest


@dataclass(frozen=True)
class ApiRequest:
    method: str
    path: str
    json: Any = None
    params: Optional[dict[str, str]] = None
    headers: Optional[dict[str, str]] = None
    request_id: Optional[str] = None


@dataclass(frozen=True)
class ApiResult:
    status_code: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    request_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def success(self) -> bool:
        """Transport-level OK and, when the body is an envelope, `success` is not false."""

        if not self.ok:
            return False
        if isinstance(self.data, dict) and "success" in self.data:
            return self.data.get("success") is True
        return True

    @property
    def message(self) -> Optional[str]:
        if isinstance(self.data, dict):
            for key in ("message", "detail", "error"):
                value = self.data.get(key)
                if isinstance(value, str) and value:
                    return value
            errors = self.data.get("errors")
            if isinstance(errors, list) and errors:
                return "; ".join(str(e) for e in errors)
        if isinstance(self.data, str) and self.data:
            return self.data
        return None


class PipelineStep(str, Enum):
    SENT = "SENT"
    AWAITING_REFRESH = "AWAITING_REFRESH"
    RETRIED = "RETRIED"
    DONE = "DONE"


_ALLOWED_STEPS: dict[PipelineStep, frozenset[PipelineStep]] = {
    PipelineStep.SENT: frozenset({PipelineStep.AWAITING_REFRESH, PipelineStep.DONE}),
    PipelineStep.AWAITING_REFRESH: frozenset({PipelineStep.RETRIED, PipelineStep.DONE}),
    PipelineStep.RETRIED: frozenset({PipelineStep.DONE}),
    PipelineStep.DONE: frozenset(),
}


@dataclass
class _Exchange:
    request: ApiRequest
    request_id: str
    step: PipelineStep = PipelineStep.SENT

    def advance(self, to_step: PipelineStep) -> None:
        if to_step not in _ALLOWED_STEPS[self.step]:
            raise RuntimeError(f"Invalid pipeline step {self.step.value} -> {to_step.value}")
        logger.debug(
            "pipeline_step",
            extra={
                "request_id": self.request_id,
                "from_step": self.step.value,
                "to_step": to_step.value,
            },
        )
        self.step = to_step


class RefreshStatus(str, Enum):
    refreshed = "refreshed"
    failed = "failed"
    discarded = "discarded"


@dataclass(frozen=True)
class RefreshOutcome:
    status: RefreshStatus
    access_token: Optional[str] = None
    result: Optional[ApiResult] = None


class AuthenticatedPipeline:
    def __init__(
        self,
        session: SessionState,
        client: httpx.AsyncClient | None = None,
        *,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session = session
        self.config = config or settings
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.config.api_root,
            timeout=self.config.request_timeout_seconds,
            transport=transport,
        )
        self._refresh_task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "AuthenticatedPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # Convenience verbs

    async def get(self, path: str, *, params: Optional[dict[str, str]] = None) -> ApiResult:
        return await self.request(ApiRequest("GET", path, params=params))

    async def post(self, path: str, *, json: Any = None) -> ApiResult:
        return await self.request(ApiRequest("POST", path, json=json))

    async def put(self, path: str, *, json: Any = None) -> ApiResult:
        return await self.request(ApiRequest("PUT", path, json=json))

    async def delete(self, path: str) -> ApiResult:
        return await self.request(ApiRequest("DELETE", path))

    # Pipeline

    def build_headers(
        self, request: ApiRequest, access_token: Optional[str], request_id: str
    ) -> dict[str, str]:
        headers = dict(request.headers or {})
        headers[self.config.request_id_header] = request_id
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        company_id = self.session.active_company_id
        if company_id:
            headers[self.config.company_header] = company_id
        return headers

    async def request(self, request: ApiRequest) -> ApiResult:
        supplied_id = request.request_id or (request.headers or {}).get(
            self.config.request_id_header
        )
        exchange = _Exchange(request=request, request_id=request_id_for(supplied_id))
        epoch = self.session.epoch
        sent_token = self.session.access_token

        result = await self._send(request, sent_token, exchange.request_id)
        if not result.unauthorized:
            exchange.advance(PipelineStep.DONE)
            return result

        exchange.advance(PipelineStep.AWAITING_REFRESH)
        refresh_token = self.session.refresh_token
        if not refresh_token:
            logger.info(
                "auth_refresh_skipped",
                extra={"request_id": exchange.request_id, "reason": "no_refresh_token"},
            )
            self._end_session(epoch, exchange.request_id)
            exchange.advance(PipelineStep.DONE)
            return result

        try:
            outcome = await self._refresh(
                refresh_token=refresh_token,
                sent_token=sent_token,
                epoch=epoch,
                request_id=exchange.request_id,
            )
        except httpx.TransportError:
            logger.warning("auth_refresh_transport_error", extra={"request_id": exchange.request_id})
            self._end_session(epoch, exchange.request_id)
            raise

        if outcome.status == RefreshStatus.failed:
            self._end_session(epoch, exchange.request_id)
            exchange.advance(PipelineStep.DONE)
            return outcome.result or result

        if outcome.status == RefreshStatus.discarded:
            if not self.session.is_authenticated:
                # Tokens with no user behind them; wipe them so they are not sent again.
                self._end_session(epoch, exchange.request_id)
            exchange.advance(PipelineStep.DONE)
            return result

        exchange.advance(PipelineStep.RETRIED)
        retry = await self._send(request, outcome.access_token, exchange.request_id)
        if retry.unauthorized:
            logger.warning(
                "auth_retry_unauthorized",
                extra={
                    "request_id": exchange.request_id,
                    "logout": self.config.logout_on_retry_unauthorized,
                },
            )
            if self.config.logout_on_retry_unauthorized:
                self._end_session(epoch, exchange.request_id)
        exchange.advance(PipelineStep.DONE)
        return retry

    def _end_session(self, epoch: int, request_id: str) -> None:
        # A response that outlived its session (logout or re-login meanwhile) ends nothing.
        if self.session.epoch != epoch:
            logger.info("auth_logout_skipped_stale", extra={"request_id": request_id})
            return
        self.session.logout()

    async def _send(
        self, request: ApiRequest, access_token: Optional[str], request_id: str
    ) -> ApiResult:
        headers = self.build_headers(request, access_token, request_id)
        start = time.perf_counter()
        try:
            response = await self.client.request(
                request.method.upper(),
                request.path,
                json=request.json,
                params=request.params,
                headers=headers,
            )
        except httpx.TransportError as exc:
            logger.warning(
                "api_transport_error",
                extra={
                    "request_id": request_id,
                    "method": request.method.upper(),
                    "path": request.path,
                    "duration_ms": elapsed_ms(start),
                    "error": type(exc).__name__,
                },
            )
            raise

        logger.info(
            "api_request",
            extra={
                "request_id": request_id,
                "method": request.method.upper(),
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms(start),
            },
        )
        logger.debug("api_request_headers", extra={"headers": safe_headers(headers)})
        return ApiResult(
            status_code=response.status_code,
            data=_parse_body(response),
            headers=dict(response.headers),
            request_id=request_id,
        )

    async def _refresh(
        self,
        *,
        refresh_token: str,
        sent_token: Optional[str],
        epoch: int,
        request_id: str,
    ) -> RefreshOutcome:
        if not self.config.coalesce_refresh:
            return await self._perform_refresh(refresh_token, epoch, request_id)

        # Another request already rotated the token after ours was sent: reuse it.
        current = self.session.access_token
        if current and current != sent_token and self.session.epoch == epoch:
            logger.info("auth_refresh_reused", extra={"request_id": request_id})
            return RefreshOutcome(RefreshStatus.refreshed, access_token=current)

        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._perform_refresh(refresh_token, epoch, request_id))
            self._refresh_task = task
            task.add_done_callback(self._forget_refresh_task)
        else:
            logger.info("auth_refresh_joined", extra={"request_id": request_id})
        return await asyncio.shield(task)

    def _forget_refresh_task(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _perform_refresh(
        self, refresh_token: str, epoch: int, request_id: str
    ) -> RefreshOutcome:
        start = time.perf_counter()
        refresh_request = ApiRequest(
            "POST",
            self.config.refresh_path,
            json=RefreshTokenRequest(refresh_token=refresh_token).to_wire(),
        )
        result = await self._send(refresh_request, None, request_id)

        if not result.ok:
            logger.warning(
                "auth_refresh_failed",
                extra={"request_id": request_id, "status_code": result.status_code},
            )
            return RefreshOutcome(RefreshStatus.failed, result=result)

        try:
            envelope = RefreshEnvelope.model_validate(result.data)
        except ValidationError:
            logger.warning(
                "auth_refresh_failed",
                extra={"request_id": request_id, "reason": "malformed_response"},
            )
            return RefreshOutcome(RefreshStatus.failed, result=result)

        if not envelope.success or envelope.data is None:
            logger.warning(
                "auth_refresh_failed",
                extra={"request_id": request_id, "reason": "rejected", "server_message": envelope.message},
            )
            return RefreshOutcome(RefreshStatus.failed, result=result)

        creds = envelope.data
        applied = self.session.apply_refreshed_credentials(
            access_token=creds.access_token,
            refresh_token=creds.refresh_token,
            user=creds.user,
            expected_epoch=epoch,
        )
        if not applied:
            return RefreshOutcome(RefreshStatus.discarded, result=result)

        logger.info(
            "auth_refresh_succeeded",
            extra={"request_id": request_id, "duration_ms": elapsed_ms(start)},
        )
        return RefreshOutcome(RefreshStatus.refreshed, access_token=creds.access_token)


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
