"""Resilient request pipeline around an ``httpx.AsyncClient``."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from erp_client.config import PipelineConfig
from erp_client.connectivity import ConnectivityMonitor
from erp_client.credentials import CredentialGuard, HttpTokenRenewer
from erp_client.exceptions import (
    AuthorizationInvalid,
    NetworkUnreachable,
    QueueReplayConflict,
    ValidationRejected,
)
from erp_client.protocols import CredentialStore, OperationStore
from erp_client.queue import OperationQueue
from erp_client.replay import Prepare
from erp_client.schemas import (
    DrainReport,
    MutationIntent,
    QueuedAck,
    QueuedOperation,
    ReconciliationEvent,
)

logger = logging.getLogger(__name__)

VALIDATION_STATUSES = frozenset({400, 422})


class ResilientClient:
    """Sends every call through the Credential Guard and, when the
    server is unreachable, parks mutations in the Durable Operation
    Queue.

    Guard, queue and their stores are meant to be shared by all
    clients of a process; the client itself holds no pipeline state.
    """

    def __init__(
        self,
        *,
        config: PipelineConfig,
        guard: CredentialGuard,
        queue: OperationQueue,
        http: httpx.AsyncClient | None = None,
        connectivity: ConnectivityMonitor | None = None,
        prepare_replay: Prepare | None = None,
    ) -> None:
        self.config = config
        self.guard = guard
        self.queue = queue
        self.connectivity = connectivity
        self.prepare_replay = prepare_replay
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.request_timeout,
            headers={"Accept": "application/json"},
        )
        self._unsubscribe = (
            connectivity.subscribe(self.drain)
            if connectivity is not None
            else None
        )

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        *,
        credential_store: CredentialStore,
        operation_store: OperationStore,
        http: httpx.AsyncClient | None = None,
        connectivity: ConnectivityMonitor | None = None,
    ) -> ResilientClient:
        guard = CredentialGuard.from_config(
            config,
            store=credential_store,
            renewer=HttpTokenRenewer(config=config, http=http),
        )
        queue = OperationQueue.from_config(config, store=operation_store)
        return cls(
            config=config,
            guard=guard,
            queue=queue,
            http=http,
            connectivity=connectivity,
        )

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._owns_http:
            await self.http.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        intent: MutationIntent | None = None,
        queueable: bool = True,
        wait_for_sync: bool = False,
    ) -> httpx.Response | QueuedAck | ReconciliationEvent:
        """Send a request through the pipeline.

        Returns the server's response, or a :class:`QueuedAck` when a
        mutation carrying an ``intent`` was queued because the server
        was unreachable. With ``wait_for_sync`` the call instead
        suspends until the queued operation reconciles and returns the
        confirming event, raising :class:`QueueReplayConflict` if the
        replay was rejected.
        """
        request = self.http.build_request(
            method, url, json=json, params=params, headers=headers
        )
        try:
            return await self._send(request, 0)
        except NetworkUnreachable:
            if not (queueable and self.config.queue_enabled):
                raise
            operation = self.queue.classify(request, intent)
            if operation is None:
                raise
            ack = await self.queue.enqueue(operation)

        if not wait_for_sync:
            return ack
        event = await self.queue.wait_for(ack.operation_id)
        if event.type != "confirmed":
            raise QueueReplayConflict(
                event.operation, event.status_code, event.detail
            )
        return event

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(
        self, url: str, **kwargs: Any
    ) -> httpx.Response | QueuedAck | ReconciliationEvent:
        return await self.request("POST", url, **kwargs)

    async def put(
        self, url: str, **kwargs: Any
    ) -> httpx.Response | QueuedAck | ReconciliationEvent:
        return await self.request("PUT", url, **kwargs)

    async def patch(
        self, url: str, **kwargs: Any
    ) -> httpx.Response | QueuedAck | ReconciliationEvent:
        return await self.request("PATCH", url, **kwargs)

    async def delete(
        self, url: str, **kwargs: Any
    ) -> httpx.Response | QueuedAck | ReconciliationEvent:
        return await self.request("DELETE", url, **kwargs)

    async def drain(self) -> DrainReport:
        """Replay queued operations; wired to the connectivity signal."""
        return await self.queue.drain(
            self._replay, prepare=self.prepare_replay
        )

    async def _replay(self, operation: QueuedOperation) -> httpx.Response:
        request = self.http.build_request(
            operation.method,
            operation.url,
            json=operation.payload,
            params=operation.params or None,
        )
        return await self._send(request, 0)

    async def _send(
        self, request: httpx.Request, attempt: int
    ) -> httpx.Response:
        await self.guard.attach_credential(request)
        try:
            response = await self.http.send(request)
        except httpx.TransportError as exc:
            if self.connectivity is not None and self.connectivity.online:
                self.connectivity.set_online(False)
            raise NetworkUnreachable(
                f"{request.method} {request.url.path} could not reach "
                f"the server: {exc!r}"
            ) from exc

        if response.status_code == 401:
            if self._is_invalid_credential(response):
                logger.warning(
                    "Credential rejected as invalid on %s %s, logging out",
                    request.method,
                    request.url.path,
                )
                await self.guard.logout()
                raise AuthorizationInvalid(
                    f"{request.method} {request.url.path}: "
                    f"credential is invalid"
                )
            return await self.guard.handle_unauthorized(
                request, attempt=attempt, resend=self._send
            )

        if response.status_code in VALIDATION_STATUSES:
            raise ValidationRejected(
                f"{request.method} {request.url.path} rejected with "
                f"status {response.status_code}",
                response,
            )
        logger.debug(
            "%s %s -> %d",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response

    def _is_invalid_credential(self, response: httpx.Response) -> bool:
        try:
            body = response.json()
        except ValueError:
            return False
        if not isinstance(body, dict):
            return False
        code = body.get("code") or body.get("error")
        return code in self.config.invalid_token_codes
