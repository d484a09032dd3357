"""Credential Guard: attaches access credentials and renews them.

A single :class:`CredentialGuard` is shared by every client in the
process. At most one renewal call is outstanding at a time; requests
that hit an expired credential while it runs wait on a future and are
released together, in registration order, once it settles.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import logging
import time
from typing import Any

import httpx

from erp_client.config import PipelineConfig
from erp_client.exceptions import (
    AuthorizationExpired,
    AuthorizationInvalid,
    ForcedLogoutError,
)
from erp_client.protocols import CredentialStore, Resend, TokenRenewer
from erp_client.schemas import CredentialState, TokenPair

logger = logging.getLogger(__name__)

AUTHORIZATION = "Authorization"


def bearer(token: str) -> str:
    return f"Bearer {token}"


def decode_claims(token: str) -> dict[str, Any] | None:
    """Decode the payload segment of a JWT without verifying it."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except ValueError:
        return None
    return claims if isinstance(claims, dict) else None


def is_token_expired(
    token: str,
    leeway_seconds: int = 60,
    *,
    now: float | None = None,
) -> bool:
    """Whether the token's ``exp`` claim falls within ``leeway_seconds``.

    Opaque tokens and tokens without ``exp`` are never reported as
    expired; the server remains the authority on those.
    """
    claims = decode_claims(token)
    if not claims or not isinstance(claims.get("exp"), int | float):
        return False
    current = time.time() if now is None else now
    return claims["exp"] <= current + leeway_seconds


class HttpTokenRenewer:
    """Calls the renewal endpoint with the refresh token."""

    def __init__(
        self,
        *,
        config: PipelineConfig,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._http = http

    async def renew(self, refresh_token: str) -> TokenPair:
        if self._http is not None:
            response = await self._post(self._http, refresh_token)
        else:
            async with httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.refresh_timeout,
            ) as client:
                response = await self._post(client, refresh_token)

        if not response.is_success:
            raise AuthorizationInvalid(
                f"Credential renewal rejected with status "
                f"{response.status_code}"
            )
        data = response.json()
        access_token = (
            data.get("accessToken")
            or data.get("access_token")
            or data.get("token")
        )
        if not access_token:
            raise AuthorizationInvalid(
                "Renewal response carried no access token"
            )
        return TokenPair(
            access_token=access_token,
            refresh_token=data.get("refreshToken") or data.get("refresh_token"),
        )

    async def _post(
        self, client: httpx.AsyncClient, refresh_token: str
    ) -> httpx.Response:
        return await client.post(
            self.config.refresh_path,
            json={"refreshToken": refresh_token},
        )


class CredentialGuard:
    """Owns the credential state of one client session."""

    def __init__(
        self,
        *,
        store: CredentialStore,
        renewer: TokenRenewer,
        refresh_timeout: float = 10.0,
        proactive_refresh: bool = False,
        expiry_leeway_seconds: int = 60,
    ) -> None:
        self.store = store
        self.renewer = renewer
        self.refresh_timeout = refresh_timeout
        self.proactive_refresh = proactive_refresh
        self.expiry_leeway_seconds = expiry_leeway_seconds
        self._tokens: TokenPair | None = None
        self._refresh_in_flight = False
        self._waiters: list[asyncio.Future[str]] = []
        self._renewal_task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        # bumped by login and logout; a renewal started under an older
        # session must not store its tokens
        self._session = 0

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        *,
        store: CredentialStore,
        renewer: TokenRenewer | None = None,
    ) -> CredentialGuard:
        return cls(
            store=store,
            renewer=renewer or HttpTokenRenewer(config=config),
            refresh_timeout=config.refresh_timeout,
            proactive_refresh=config.proactive_refresh,
            expiry_leeway_seconds=config.expiry_leeway_seconds,
        )

    @property
    def access_token(self) -> str | None:
        return self._tokens.access_token if self._tokens else None

    @property
    def refresh_token(self) -> str | None:
        return self._tokens.refresh_token if self._tokens else None

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_in_flight

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    @property
    def state(self) -> CredentialState:
        if self._refresh_in_flight:
            return CredentialState.RENEWAL_IN_FLIGHT
        if self._tokens is None:
            return CredentialState.UNAUTHENTICATED
        return CredentialState.AUTHENTICATED

    async def load(self) -> CredentialState:
        """Restore persisted credentials, e.g. after a restart."""
        self._tokens = await self.store.load()
        return self.state

    async def login(self, tokens: TokenPair) -> None:
        async with self._lock:
            self._session += 1
            self._tokens = tokens
            await self.store.save(tokens)

    async def logout(self) -> None:
        async with self._lock:
            self._session += 1
            self._tokens = None
            await self.store.clear()

    async def aclose(self) -> None:
        """Cancel an in-flight renewal; its waiters get ForcedLogoutError."""
        task = self._renewal_task
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def attach_credential(self, request: httpx.Request) -> httpx.Request:
        """Set the current access credential on an outbound request.

        Without a credential the request goes out unauthenticated;
        authorization is the server's call.
        """
        token = self.access_token
        if token is None:
            return request
        if (
            self.proactive_refresh
            and self.refresh_token
            and is_token_expired(token, self.expiry_leeway_seconds)
        ):
            logger.debug("Access credential about to expire, renewing early")
            token = await self._renew_or_wait()
        request.headers[AUTHORIZATION] = bearer(token)
        return request

    async def handle_unauthorized(
        self,
        request: httpx.Request,
        *,
        attempt: int,
        resend: Resend,
    ) -> httpx.Response:
        """Renew the credential (once, process-wide) and resend ``request``.

        ``attempt`` counts how many times this request was already
        replayed after a renewal; a replayed request that is rejected
        again fails immediately.
        """
        if attempt > 0:
            raise AuthorizationExpired(
                f"{request.method} {request.url.path} rejected again "
                f"after credential renewal"
            )

        current = self.access_token
        sent_with = request.headers.get(AUTHORIZATION)
        if (
            current is not None
            and not self._refresh_in_flight
            and sent_with != bearer(current)
        ):
            # renewed while this request was in flight
            token = current
        else:
            token = await self._renew_or_wait()

        request.headers[AUTHORIZATION] = bearer(token)
        return await resend(request, attempt + 1)

    async def _renew_or_wait(self) -> str:
        waiter: asyncio.Future[str] = (
            asyncio.get_running_loop().create_future()
        )
        self._waiters.append(waiter)
        if not self._refresh_in_flight:
            self._refresh_in_flight = True
            self._renewal_task = asyncio.create_task(
                self._run_renewal(self._session, self.refresh_token)
            )
            self._renewal_task.add_done_callback(self._renewal_done)
        try:
            return await waiter
        except asyncio.CancelledError:
            with contextlib.suppress(ValueError):
                self._waiters.remove(waiter)
            raise

    async def _run_renewal(
        self, session: int, refresh_token: str | None
    ) -> None:
        token: str | None = None
        error: BaseException = ForcedLogoutError(
            "Credential renewal was cancelled"
        )
        try:
            if not refresh_token:
                raise ForcedLogoutError("No renewal credential available")
            async with asyncio.timeout(self.refresh_timeout):
                tokens = await self.renewer.renew(refresh_token)
            if tokens.refresh_token is None:
                tokens = tokens.model_copy(
                    update={"refresh_token": refresh_token}
                )
            async with self._lock:
                if self._session == session:
                    self._tokens = tokens
                    await self.store.save(tokens)
                else:
                    logger.info(
                        "Session changed during credential renewal, "
                        "discarding renewed tokens"
                    )
            token = self.access_token
            if token is None:
                raise ForcedLogoutError("Logged out during credential renewal")
        except Exception as exc:
            logger.warning("Credential renewal failed, forcing logout: %r", exc)
            if isinstance(exc, ForcedLogoutError):
                error = exc
            else:
                error = ForcedLogoutError(f"Credential renewal failed: {exc!r}")
                error.__cause__ = exc
            if self._session == session:
                try:
                    await self.logout()
                except Exception:
                    logger.exception(
                        "Could not clear credentials after failed renewal"
                    )
        finally:
            if token is not None:
                logger.info(
                    "Credential renewed, releasing %d waiting request(s)",
                    len(self._waiters),
                )
                self._release(token=token)
            else:
                self._release(error=error)

    def _renewal_done(self, task: asyncio.Task[None]) -> None:
        # a task cancelled before its first step never reaches its finally
        if (
            task.cancelled()
            and task is self._renewal_task
            and self._refresh_in_flight
        ):
            self._release(
                error=ForcedLogoutError("Credential renewal was cancelled")
            )

    def _release(
        self,
        *,
        token: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        waiters, self._waiters = self._waiters, []
        self._refresh_in_flight = False
        for waiter in waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(token)
