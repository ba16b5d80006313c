"""
REST / HTTP API server for StakeFlow.

Built on ``aiohttp``; every handler calls the staking engine
synchronously, and the engine lock keeps concurrent requests serialized.

Endpoints
---------
GET  /health                     Liveness + pool summary
GET  /owner                      Administrator address
GET  /pool                       Pool totals and the active schedule
GET  /bonus/{amount}             Bonus multiplier for an amount
GET  /balance/{address}          Token balance
GET  /pending/{owner}            Pending reward (account / all stakes)
GET  /pending/{owner}/{index}    Pending reward of one stake
GET  /stakes/{owner}             Stake count and every stake
GET  /stakes/{owner}/{index}     One stake
GET  /account/{owner}            Aggregate account
GET  /quote/{owner}[/{index}]    What an unstake would pay now
GET  /sequence/{address}         Next request sequence number
POST /tx/approve                 Allow the engine to pull {amount}
POST /tx/stake                   Stake {amount, tier}
POST /tx/claim                   Claim rewards [{index}]
POST /tx/unstake                 Unstake [{index}]
POST /tx/fund                    Add {amount} to the reward reserve
POST /admin/force_unstake        Toggle early withdrawal {allowed}
POST /admin/log_level            Change log level {level}

Caller identity
---------------
POST bodies must be signed: ``X-Public-Key`` carries the hex secp256k1
public key and ``X-Signature`` the hex signature of the raw body.  The
caller address is derived from the public key.

Every signed body carries ``"sequence"``, which must be exactly one more
than the last sequence accepted from that address (start at 1, or ask
``/sequence/{address}``).  A replayed or out-of-order request is
rejected with 409.  The sequence is spent even when the operation then
fails, and the server persists it either way.

Security
--------
- Optional API-key check on POST endpoints via ``X-API-Key``
  (``hmac.compare_digest``).
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``).
- Amounts are integers in base units, given as JSON integers or decimal
  strings; floats are rejected.
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable, Optional

from aiohttp import web

from stakeflow_core.errors import (
    BadSequence,
    PositionNotFound,
    StakingError,
    Unauthorized,
)
from stakeflow_core.logging_config import set_level
from stakeflow_core.wallet import derive_address, verify_signature

if TYPE_CHECKING:
    from stakeflow_core.config import APIConfig
    from stakeflow_core.engine import StakingEngine

logger = logging.getLogger("stakeflow_api")


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_amount(value: Any, name: str = "amount") -> int:
    """Parse a base-unit amount from a JSON int or decimal string."""
    if isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise web.HTTPBadRequest(text=f"{name} must be an integer or decimal string")


def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to int, rejecting non-integer input."""
    if isinstance(value, bool) or isinstance(value, float):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, default=str)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an API key on POST requests."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """aiohttp middleware that adds CORS headers for listed origins only."""

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = (
                "Content-Type, X-API-Key, X-Public-Key, X-Signature"
            )
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Turn engine errors into JSON responses."""
    try:
        return await handler(request)
    except Unauthorized as exc:
        return web.json_response(exc.to_dict(), status=403)
    except PositionNotFound as exc:
        return web.json_response(exc.to_dict(), status=404)
    except BadSequence as exc:
        return web.json_response(exc.to_dict(), status=409)
    except StakingError as exc:
        return web.json_response(exc.to_dict(), status=400)


def build_middlewares(api_config: Optional[APIConfig]) -> list:
    middlewares: list = []
    if api_config is not None:
        if api_config.rate_limit_rpm > 0:
            middlewares.append(_make_rate_limit_middleware(_TokenBucket(api_config.rate_limit_rpm)))
        if api_config.cors_origins:
            middlewares.append(_make_cors_middleware(api_config.cors_origins))
        if api_config.api_key:
            middlewares.append(_make_api_key_middleware(api_config.api_key))
    middlewares.append(error_middleware)
    return middlewares


class APIServer:
    """Thin aiohttp wrapper around a ``StakingEngine``."""

    def __init__(
        self,
        engine: StakingEngine,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
        on_commit: Optional[Callable[[], None]] = None,
    ):
        self.engine = engine
        self.host = host
        self.port = port
        self._api_config = api_config
        self._on_commit = on_commit
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def make_app(self) -> web.Application:
        max_body = self._api_config.max_body_bytes if self._api_config else 65_536
        app = web.Application(
            middlewares=build_middlewares(self._api_config),
            client_max_size=max_body,
        )
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/owner", self._owner)
        app.router.add_get("/pool", self._pool)
        app.router.add_get("/bonus/{amount}", self._bonus)
        app.router.add_get("/balance/{address}", self._balance)
        app.router.add_get("/pending/{owner}", self._pending)
        app.router.add_get("/pending/{owner}/{index}", self._pending)
        app.router.add_get("/stakes/{owner}", self._stakes)
        app.router.add_get("/stakes/{owner}/{index}", self._stake_at)
        app.router.add_get("/account/{owner}", self._account)
        app.router.add_get("/quote/{owner}", self._quote)
        app.router.add_get("/quote/{owner}/{index}", self._quote)
        app.router.add_get("/sequence/{address}", self._sequence)
        app.router.add_post("/tx/approve", self._submit_approve)
        app.router.add_post("/tx/stake", self._submit_stake)
        app.router.add_post("/tx/claim", self._submit_claim)
        app.router.add_post("/tx/unstake", self._submit_unstake)
        app.router.add_post("/tx/fund", self._submit_fund)
        app.router.add_post("/admin/force_unstake", self._admin_force_unstake)
        app.router.add_post("/admin/log_level", self._admin_log_level)

    # ── request helpers ──────────────────────────────────────────

    async def _signed_body(self, request: web.Request) -> tuple[str, dict]:
        """Verify a signed POST, spend its sequence and return ``(caller, body)``."""
        raw = await request.read()
        pub_hex = request.headers.get("X-Public-Key", "")
        sig_hex = request.headers.get("X-Signature", "")
        try:
            pub = bytes.fromhex(pub_hex)
            sig = bytes.fromhex(sig_hex)
        except ValueError:
            raise web.HTTPUnauthorized(text="Malformed signature headers")
        if not pub or not sig or not verify_signature(pub, sig, raw):
            raise web.HTTPUnauthorized(text="Invalid or missing request signature")
        try:
            body = json.loads(raw or b"{}")
        except ValueError as exc:
            raise web.HTTPBadRequest(text="Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="JSON body must be an object")
        if "sequence" not in body:
            raise web.HTTPBadRequest(text="sequence is required")
        caller = derive_address(pub)
        self.engine.use_sequence(caller, _safe_int(body["sequence"], "sequence"))
        return caller, body

    def _committed(self) -> None:
        if self._on_commit is not None:
            self._on_commit()

    @staticmethod
    def _optional_index(body: dict) -> Optional[int]:
        if body.get("index") is None:
            return None
        return _safe_int(body["index"], "index")

    # ── read handlers ────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        return web.json_response(
            {"ok": True, "pool": self.engine.pool_summary()}, dumps=_json_dumps,
        )

    async def _owner(self, _request: web.Request) -> web.Response:
        return web.json_response({"owner": self.engine.owner})

    async def _pool(self, _request: web.Request) -> web.Response:
        summary = self.engine.pool_summary()
        summary["schedule_terms"] = self.engine.schedule.to_dict()
        summary["bonus"] = self.engine.bonus.to_dict()
        summary["token"] = self.engine.token.to_dict()
        return web.json_response(summary, dumps=_json_dumps)

    async def _bonus(self, request: web.Request) -> web.Response:
        amount = _safe_amount(request.match_info["amount"])
        return web.json_response({
            "amount": str(amount),
            "multiplier": self.engine.calculate_bonus(amount),
        })

    async def _balance(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        return web.json_response({
            "address": address,
            "balance": str(self.engine.token.balance_of(address)),
        })

    async def _pending(self, request: web.Request) -> web.Response:
        owner = request.match_info["owner"]
        index = request.match_info.get("index")
        if index is None:
            pending = self.engine.calculate_pending_rewards(owner)
        else:
            pending = self.engine.calculate_pending_rewards(
                _safe_int(index, "index"), caller=owner,
            )
        return web.json_response({"owner": owner, "pending_reward": str(pending)})

    async def _stakes(self, request: web.Request) -> web.Response:
        owner = request.match_info["owner"]
        if self.engine.mode == "aggregate":
            acct = self.engine.user_info_map(owner)
            stakes = [self.engine.position_dict(acct)] if acct else []
        else:
            stakes = [
                self.engine.position_dict(p)
                for p in self.engine.store.positions_of(owner)
            ]
        return web.json_response({
            "owner": owner,
            "count": self.engine.user_stake_count(owner),
            "stakes": stakes,
        }, dumps=_json_dumps)

    async def _stake_at(self, request: web.Request) -> web.Response:
        owner = request.match_info["owner"]
        index = _safe_int(request.match_info["index"], "index")
        pos = self.engine.user_stakes(owner, index)
        return web.json_response(self.engine.position_dict(pos), dumps=_json_dumps)

    async def _account(self, request: web.Request) -> web.Response:
        owner = request.match_info["owner"]
        acct = self.engine.user_info_map(owner)
        if acct is None:
            raise web.HTTPNotFound(text=f"No account for {owner}")
        return web.json_response(self.engine.position_dict(acct), dumps=_json_dumps)

    async def _quote(self, request: web.Request) -> web.Response:
        owner = request.match_info["owner"]
        index = request.match_info.get("index")
        quote = self.engine.quote_unstake(
            owner, None if index is None else _safe_int(index, "index"),
        )
        return web.json_response(quote, dumps=_json_dumps)

    async def _sequence(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        return web.json_response({
            "address": address,
            "next_sequence": self.engine.next_sequence(address),
        })

    # ── write handlers ───────────────────────────────────────────
    #
    # Each handler commits in ``finally``: the request's sequence number is
    # spent as soon as the signature checks out, success or not.

    async def _submit_approve(self, request: web.Request) -> web.Response:
        """
        POST /tx/approve
        Body: {"amount": "1000", "sequence": 1}
        """
        caller, body = await self._signed_body(request)
        try:
            amount = _safe_amount(body.get("amount"))
            self.engine.token.approve(caller, self.engine.custody_address, amount)
        finally:
            self._committed()
        return web.json_response({
            "status": "approved",
            "owner": caller,
            "spender": self.engine.custody_address,
            "amount": str(amount),
        })

    async def _submit_stake(self, request: web.Request) -> web.Response:
        """
        POST /tx/stake
        Body: {"amount": "100000", "tier": 1, "sequence": 2}
        """
        caller, body = await self._signed_body(request)
        try:
            amount = _safe_amount(body.get("amount"))
            tier = _safe_int(body.get("tier", 0), "tier")
            index = self.engine.stake(caller, amount, tier)
        finally:
            self._committed()
        return web.json_response({
            "status": "staked",
            "owner": caller,
            "amount": str(amount),
            "tier": tier,
            "index": index,
        })

    async def _submit_claim(self, request: web.Request) -> web.Response:
        caller, body = await self._signed_body(request)
        try:
            reward = self.engine.claim_rewards(caller, self._optional_index(body))
        finally:
            self._committed()
        return web.json_response({
            "status": "claimed", "owner": caller, "reward": str(reward),
        })

    async def _submit_unstake(self, request: web.Request) -> web.Response:
        caller, body = await self._signed_body(request)
        try:
            payout = self.engine.unstake(caller, self._optional_index(body))
        finally:
            self._committed()
        return web.json_response({
            "status": "unstaked", "owner": caller, "payout": str(payout),
        })

    async def _submit_fund(self, request: web.Request) -> web.Response:
        caller, body = await self._signed_body(request)
        try:
            amount = _safe_amount(body.get("amount"))
            self.engine.fund_rewards(caller, amount)
        finally:
            self._committed()
        return web.json_response({
            "status": "funded",
            "reward_reserve": str(self.engine.reward_reserve),
        })

    async def _admin_force_unstake(self, request: web.Request) -> web.Response:
        """
        POST /admin/force_unstake
        Body: {"allowed": true, "sequence": 7}   (signed by the administrator)
        """
        caller, body = await self._signed_body(request)
        try:
            allowed = body.get("allowed")
            if not isinstance(allowed, bool):
                raise web.HTTPBadRequest(text="allowed must be a boolean")
            self.engine.update_force_unstake_allowed(caller, allowed)
        finally:
            self._committed()
        return web.json_response({"force_unstake_allowed": allowed})

    async def _admin_log_level(self, request: web.Request) -> web.Response:
        caller, body = await self._signed_body(request)
        try:
            if caller != self.engine.owner:
                raise Unauthorized(f"{caller} is not the administrator")
            try:
                level = set_level(str(body.get("level", "")))
            except ValueError as exc:
                raise web.HTTPBadRequest(text=str(exc)) from exc
        finally:
            self._committed()
        return web.json_response({"level": level})
