"""
Clients for the Dapr sidecar.

Used by the test-trigger endpoints to invoke output bindings, publish events,
invoke peer services and proxy gRPC calls. Calls are never retried here;
retrying is the job of the sidecar's resiliency policies under test.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import grpc
import grpc.aio
import httpx
from google.protobuf.wrappers_pb2 import StringValue

logger = logging.getLogger(__name__)


class SidecarError(Exception):
    """The sidecar could not be reached or rejected a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DaprClient:
    """Client for the sidecar's HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def wait_until_ready(self, retries: int = 10, interval: float = 5.0) -> None:
        """
        Block until the sidecar reports outbound readiness.

        Raises:
            SidecarError: if the sidecar is still unavailable after ``retries``
                attempts.
        """
        last_error = "no attempt made"
        for attempt in range(1, retries + 1):
            try:
                response = await self._client.get(f"{self._base_url}/v1.0/healthz/outbound")
                if response.is_success:
                    logger.info("Connected to Dapr sidecar at %s", self._base_url)
                    return
                last_error = f"status {response.status_code}"
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__

            if attempt < retries:
                logger.warning(
                    f"Could not connect to Dapr ({last_error}), retrying "
                    f"({attempt}/{retries})..."
                )
                await asyncio.sleep(interval)

        raise SidecarError(f"Could not connect to Dapr at {self._base_url}: {last_error}")

    async def invoke_binding(
        self, name: str, data: Any, operation: str = "create"
    ) -> None:
        await self._post(
            f"/v1.0/bindings/{name}",
            {"data": data, "operation": operation},
        )

    async def publish_event(self, pubsub: str, topic: str, data: Any) -> None:
        await self._post(f"/v1.0/publish/{pubsub}/{topic}", data)

    async def invoke_method(
        self, app_id: str, method: str, data: Any = None
    ) -> httpx.Response:
        """
        Invoke ``method`` on ``app_id`` through the sidecar.

        The response is returned whatever its status, since callers relay the
        upstream status code. Only transport failures raise.
        """
        url = f"{self._base_url}/v1.0/invoke/{app_id}/method/{method}"
        try:
            return await self._client.post(url, json=data)
        except httpx.HTTPError as e:
            raise SidecarError(f"Invocation of {app_id}/{method} failed: {e}") from e

    async def _post(self, path: str, payload: Any) -> None:
        try:
            response = await self._client.post(
                f"{self._base_url}{path}",
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SidecarError(
                f"Sidecar rejected POST {path}: {e.response.status_code} {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise SidecarError(f"POST {path} failed: {e}") from e


class GrpcProxyClient:
    """
    Proxies a greeting call through the sidecar's gRPC API.

    The sidecar routes the call by the ``dapr-app-id`` metadata. HelloRequest
    and HelloReply each hold a single string in field 1, so ``StringValue`` is
    wire-compatible with both and no generated stubs are needed.
    """

    SAY_HELLO = "/helloworld.Greeter/SayHello"

    def __init__(self, target: str, timeout: float = 30.0) -> None:
        self._target = target
        self._timeout = timeout

    async def say_hello(self, app_id: str, name: str) -> str:
        try:
            async with grpc.aio.insecure_channel(self._target) as channel:
                say_hello = channel.unary_unary(
                    self.SAY_HELLO,
                    request_serializer=StringValue.SerializeToString,
                    response_deserializer=StringValue.FromString,
                )
                reply = await say_hello(
                    StringValue(value=name),
                    metadata=(("dapr-app-id", app_id),),
                    timeout=self._timeout,
                )
        except grpc.RpcError as e:
            raise SidecarError(f"failed to proxy request: {e}") from e
        return reply.value
