"""Shared fixtures for Resiliency App tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Iterator
from dataclasses import dataclass, field

import grpc
import grpc.aio
import httpx
import pytest
import pytest_asyncio
from google.protobuf.wrappers_pb2 import StringValue

from resiliency_app.call_tracker import CallTracker
from resiliency_app.clients import DaprClient, GrpcProxyClient
from resiliency_app.failure_engine import FailureDecisionEngine
from resiliency_app.main import app


@pytest.fixture
def engine() -> Iterator[FailureDecisionEngine]:
    """Fresh engine and tracker installed on the app for one test."""
    previous = app.state.engine
    fresh = FailureDecisionEngine(CallTracker())
    app.state.engine = fresh
    yield fresh
    app.state.engine = previous


@pytest.fixture
def sidecar_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def sidecar_handler() -> Callable[[httpx.Request], httpx.Response]:
    """Default fake sidecar: accepts everything with 204."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    return handler


@pytest_asyncio.fixture
async def dapr_client(
    sidecar_requests: list[httpx.Request],
    sidecar_handler: Callable[[httpx.Request], httpx.Response],
) -> AsyncGenerator[DaprClient, None]:
    def recording_handler(request: httpx.Request) -> httpx.Response:
        sidecar_requests.append(request)
        return sidecar_handler(request)

    client = DaprClient("http://dapr.test", transport=httpx.MockTransport(recording_handler))
    previous = app.state.dapr_client
    app.state.dapr_client = client
    yield client
    app.state.dapr_client = previous
    await client.close()


@pytest_asyncio.fixture
async def client(engine: FailureDecisionEngine) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://app.test") as client:
        yield client


@dataclass
class GreeterServer:
    """In-process stand-in for the sidecar's gRPC endpoint."""

    target: str
    calls: list[tuple[str, str | None]] = field(default_factory=list)
    fail_with: grpc.StatusCode | None = None


@pytest_asyncio.fixture
async def greeter_server() -> AsyncGenerator[GreeterServer, None]:
    server = grpc.aio.server()
    port = server.add_insecure_port("127.0.0.1:0")
    greeter = GreeterServer(target=f"127.0.0.1:{port}")

    async def say_hello(
        request: StringValue, context: grpc.aio.ServicerContext
    ) -> StringValue:
        metadata = dict(context.invocation_metadata() or ())
        greeter.calls.append((request.value, metadata.get("dapr-app-id")))
        if greeter.fail_with is not None:
            await context.abort(greeter.fail_with, "deadline exceeded upstream")
        return StringValue(value=f"Hello {request.value}")

    handler = grpc.method_handlers_generic_handler(
        "helloworld.Greeter",
        {
            "SayHello": grpc.unary_unary_rpc_method_handler(
                say_hello,
                request_deserializer=StringValue.FromString,
                response_serializer=StringValue.SerializeToString,
            )
        },
    )
    server.add_generic_rpc_handlers((handler,))
    await server.start()
    yield greeter
    await server.stop(None)


@pytest.fixture
def grpc_proxy_client(greeter_server: GreeterServer) -> Iterator[GrpcProxyClient]:
    client = GrpcProxyClient(greeter_server.target, timeout=5.0)
    previous = app.state.grpc_proxy_client
    app.state.grpc_proxy_client = client
    yield client
    app.state.grpc_proxy_client = previous
