"""In-process trade API used by the service tests.

Served through httpx.ASGITransport, so every request the client makes goes
through the real pipeline (headers, 401 handling, refresh) without a socket.
Tokens are real HS256 JWTs; an expired or foreign token gets a 401.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from jose import JWTError, jwt

SECRET_KEY = "stub-secret-key-1234567890"
ALGORITHM = "HS256"

PASSWORD = "correct-horse"

USER = {
    "id": "u-1",
    "name": "Priya Shah",
    "email": "priya@example.com",
    "companies": [
        {"companyId": "c-acme", "companyName": "Acme Exports", "role": "FINANCE"},
        {"companyId": "c-globex", "companyName": "Globex Imports", "role": "ADMIN"},
    ],
}

# action -> (stages it may start from, resulting stage, audit field prefix)
_TRANSITIONS = {
    "submit": ({"DRAFT"}, "SUBMITTED", "submitted"),
    "approve": ({"SUBMITTED"}, "APPROVED", "approved"),
    "cancel": ({"DRAFT", "SUBMITTED"}, "CANCELLED", "cancelled"),
    "close": ({"APPROVED"}, "CLOSED", "closed"),
}


def issue_token(subject: str, kind: str = "access", minutes: int = 15) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode({"sub": subject, "typ": kind, "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def _decode(token: str, kind: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != kind:
        return None
    return payload.get("sub")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ok(data=None, status_code: int = 200, message: Optional[str] = None) -> JSONResponse:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return JSONResponse(body, status_code=status_code)


def _fail(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "message": message}, status_code=status_code)


async def _json_body(request: Request) -> dict:
    raw = await request.body()
    return json.loads(raw) if raw else {}


class StubApi:
    def __init__(self, *, transition_delay: float = 0.0) -> None:
        self.trades: dict[str, dict] = {}
        self.requests: list[tuple[str, str]] = []
        self.refresh_calls = 0
        self.password = PASSWORD
        self.reset_tokens = {"reset-token-1"}
        self.reset_emails: list[str] = []
        self.transition_delay = transition_delay
        self.app = self._build()

    def add_trade(self, stage: str = "DRAFT", **overrides) -> dict:
        n = len(self.trades) + 1
        trade = {
            "id": f"t-{n}",
            "companyId": "c-acme",
            "partyId": "p-1",
            "partyName": "Sunrise Textiles",
            "tradeNumber": f"TRD-{n:04d}",
            "tradeType": "EXPORT",
            "tradeReference": None,
            "remarks": None,
            "tradeStage": stage,
            "createdBy": "u-1",
            "createdByName": "Priya Shah",
            "createdAt": _now(),
        }
        trade.update(overrides)
        self.trades[trade["id"]] = trade
        return trade

    def mutations(self) -> list[tuple[str, str]]:
        return [
            (m, p)
            for m, p in self.requests
            if m in ("POST", "PUT") and p.startswith("/api/trades")
        ]

    def _build(self) -> FastAPI:
        app = FastAPI()
        stub = self

        @app.middleware("http")
        async def record(request: Request, call_next):
            stub.requests.append((request.method, request.url.path))
            return await call_next(request)

        def current_user(authorization: Optional[str] = Header(default=None)) -> str:
            if not authorization or not authorization.startswith("Bearer "):
                raise HTTPException(status_code=401, detail="Not authenticated")
            subject = _decode(authorization[len("Bearer ") :], "access")
            if subject is None:
                raise HTTPException(status_code=401, detail="Token expired or invalid")
            return subject

        @app.post("/api/Auth/login")
        async def login(request: Request):
            body = await _json_body(request)
            if body.get("email") != USER["email"] or body.get("password") != stub.password:
                return _fail("Invalid email or password", 401)
            return _ok(
                {
                    "accessToken": issue_token(USER["id"]),
                    "refreshToken": issue_token(USER["id"], "refresh", minutes=60),
                    "expiresIn": 900,
                    "user": USER,
                }
            )

        @app.post("/api/auth/refresh")
        async def refresh(request: Request):
            stub.refresh_calls += 1
            body = await _json_body(request)
            subject = _decode(body.get("refreshToken") or "", "refresh")
            if subject is None:
                return _fail("Refresh token invalid", 401)
            return _ok(
                {
                    "accessToken": issue_token(subject),
                    "refreshToken": issue_token(subject, "refresh", minutes=60),
                }
            )

        @app.get("/api/users/me")
        async def me(user_id: str = Depends(current_user)):
            return _ok({k: v for k, v in USER.items() if k != "companies"})

        @app.put("/api/users/me")
        async def update_me(request: Request, user_id: str = Depends(current_user)):
            body = await _json_body(request)
            view = {k: v for k, v in USER.items() if k != "companies"}
            view.update({k: v for k, v in body.items() if k in ("name", "email")})
            return _ok(view)

        @app.post("/api/Auth/forgot-password")
        async def forgot_password(request: Request):
            body = await _json_body(request)
            # Same answer for unknown addresses.
            if body.get("email") == USER["email"]:
                stub.reset_emails.append(body["email"])
            return _ok(message="If the account exists, a reset link has been sent")

        @app.post("/api/Auth/reset-password")
        async def reset_password(request: Request):
            body = await _json_body(request)
            if body.get("token") not in stub.reset_tokens:
                return _fail("Reset link is invalid or has expired", 400)
            stub.reset_tokens.discard(body["token"])
            stub.password = body["newPassword"]
            return _ok(message="Password has been reset")

        @app.post("/api/users/change-password")
        async def change_password(request: Request, user_id: str = Depends(current_user)):
            body = await _json_body(request)
            if body.get("currentPassword") != stub.password:
                return _fail("Current password is incorrect", 400)
            stub.password = body["newPassword"]
            return _ok(message="Password changed")

        @app.get("/api/trades")
        async def list_trades(
            stage: Optional[str] = None,
            tradeType: Optional[str] = None,
            user_id: str = Depends(current_user),
        ):
            trades = [
                t
                for t in stub.trades.values()
                if (stage is None or t["tradeStage"] == stage)
                and (tradeType is None or t["tradeType"] == tradeType)
            ]
            return JSONResponse(
                {
                    "success": True,
                    "data": trades,
                    "pagination": {
                        "page": 1,
                        "limit": 20,
                        "total": len(trades),
                        "totalPages": 1,
                    },
                }
            )

        @app.get("/api/trades/{trade_id}")
        async def get_trade(trade_id: str, user_id: str = Depends(current_user)):
            trade = stub.trades.get(trade_id)
            if trade is None:
                return _fail("Trade not found", 404)
            return _ok(trade)

        @app.post("/api/trades")
        async def create_trade(
            request: Request,
            user_id: str = Depends(current_user),
            x_company_id: Optional[str] = Header(default=None),
        ):
            body = await _json_body(request)
            trade = stub.add_trade(
                companyId=x_company_id or "",
                partyId=body["partyId"],
                tradeType=body["tradeType"],
                tradeReference=body.get("tradeReference"),
                remarks=body.get("remarks"),
            )
            return _ok(trade, status_code=201)

        @app.put("/api/trades/{trade_id}")
        async def update_trade(trade_id: str, request: Request, user_id: str = Depends(current_user)):
            trade = stub.trades.get(trade_id)
            if trade is None:
                return _fail("Trade not found", 404)
            if trade["tradeStage"] != "DRAFT":
                return _fail("Only draft trades can be edited", 409)
            trade.update(await _json_body(request))
            trade["updatedAt"] = _now()
            return _ok(trade)

        @app.post("/api/trades/{trade_id}/{action}")
        async def transition(
            trade_id: str, action: str, request: Request, user_id: str = Depends(current_user)
        ):
            if stub.transition_delay:
                await asyncio.sleep(stub.transition_delay)
            trade = stub.trades.get(trade_id)
            if trade is None:
                return _fail("Trade not found", 404)
            if action not in _TRANSITIONS:
                return _fail(f"Unknown action {action}", 404)
            allowed_from, to_stage, prefix = _TRANSITIONS[action]
            if trade["tradeStage"] not in allowed_from:
                return _fail(f"Trade cannot be {to_stage.lower()} from {trade['tradeStage']}", 409)
            trade["tradeStage"] = to_stage
            trade[f"{prefix}At"] = _now()
            trade[f"{prefix}By"] = user_id
            trade[f"{prefix}ByName"] = USER["name"]
            if action == "cancel":
                trade["cancelReason"] = (await _json_body(request)).get("cancelReason")
            return _ok(trade)

        return app
