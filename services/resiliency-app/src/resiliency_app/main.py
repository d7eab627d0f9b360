"""
Resiliency App: scripted fault-injection target.

Every request under test carries a FailureDescription. The app records the
attempt, then fails, stalls or succeeds as the description dictates, so a
test runner can check that the sidecar's resiliency policies (timeouts,
retries, circuit breakers) behaved as configured:
1. Service invocation, pub/sub delivery and input bindings share one engine
2. /tests/getCallCount exposes the recorded attempts per scenario id
3. /tests/* trigger endpoints drive traffic back through the sidecar
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from resiliency_app.call_tracker import CallTracker
from resiliency_app.clients import DaprClient, GrpcProxyClient, SidecarError
from resiliency_app.config import Settings
from resiliency_app.failure_engine import FailureDecisionEngine, Verdict
from resiliency_app.models import (
    CloudEventEnvelope,
    FailureDescription,
    PubsubResponse,
    PubsubStatus,
    Subscription,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Global instances
settings = Settings()
call_tracker = CallTracker()
engine = FailureDecisionEngine(call_tracker)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(f"Starting Resiliency App on port {settings.port}...")
    dapr_client = DaprClient(
        settings.dapr_http_endpoint, timeout=settings.dapr_timeout_seconds
    )

    if settings.dapr_wait_for_sidecar:
        try:
            await dapr_client.wait_until_ready(
                retries=settings.dapr_startup_retries,
                interval=settings.dapr_startup_retry_interval_seconds,
            )
        except SidecarError:
            # Trigger endpoints are useless without the sidecar; refuse to serve.
            await dapr_client.close()
            raise

    app.state.dapr_client = dapr_client
    app.state.grpc_proxy_client = GrpcProxyClient(
        settings.dapr_grpc_endpoint, timeout=settings.dapr_timeout_seconds
    )

    yield

    logger.info("Shutting down Resiliency App...")
    app.state.dapr_client = None
    app.state.grpc_proxy_client = None
    await dapr_client.close()


app = FastAPI(
    title="Resiliency App",
    description="Fault-injection target for sidecar resiliency policies",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.engine = engine
app.state.dapr_client = None
app.state.grpc_proxy_client = None


@app.exception_handler(RequestValidationError)
async def malformed_input_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Reject unparseable payloads with 400; nothing is recorded for them."""
    logger.warning(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


def _engine(request: Request) -> FailureDecisionEngine:
    return request.app.state.engine


def _dapr_client(request: Request) -> DaprClient:
    client: DaprClient | None = request.app.state.dapr_client
    if client is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return client


def _grpc_proxy_client(request: Request) -> GrpcProxyClient:
    client: GrpcProxyClient | None = request.app.state.grpc_proxy_client
    if client is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return client


def _simulated_failure(description: FailureDescription, verdict: Verdict) -> HTTPException:
    return HTTPException(
        status_code=500,
        detail=f"Simulated failure for {description.id} (attempt {verdict.attempt})",
    )


# ============================================================================
# Calls from the sidecar
# ============================================================================


@app.get("/")
async def index() -> Response:
    return Response(status_code=200)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "service": "resiliency-app"}


@app.get("/dapr/subscribe")
async def subscribe() -> list[Subscription]:
    """Topics this app listens on."""
    return [
        Subscription(
            pubsubname=settings.pubsub_name,
            topic=settings.pubsub_topic,
            route=settings.pubsub_topic,
        )
    ]


@app.options("/resiliencybinding")
async def binding_probe() -> Response:
    logger.info("Resiliency binding input has been accepted")
    return Response(status_code=200)


@app.post("/resiliencybinding")
async def binding_input(description: FailureDescription, request: Request) -> Response:
    verdict = await _engine(request).apply(description, "Binding")
    if not verdict.succeeds:
        raise _simulated_failure(description, verdict)
    return Response(status_code=200)


@app.post(f"/{settings.pubsub_topic}", response_model=PubsubResponse)
async def pubsub_delivery(envelope: CloudEventEnvelope, request: Request) -> PubsubResponse:
    description = envelope.data
    verdict = await _engine(request).apply(description, f"Pubsub ({envelope.topic})")
    if not verdict.succeeds:
        # A 5xx lets the sidecar decide whether to redeliver.
        raise _simulated_failure(description, verdict)
    return PubsubResponse(status=PubsubStatus.SUCCESS, message="consumed")


@app.post("/resiliencyInvocation")
async def service_invocation(description: FailureDescription, request: Request) -> Response:
    verdict = await _engine(request).apply(description, "Http invocation")
    if not verdict.succeeds:
        raise _simulated_failure(description, verdict)
    return Response(status_code=200)


# ============================================================================
# Test functions
# ============================================================================


@app.get("/tests/getCallCount")
async def get_call_count(request: Request) -> dict[str, list[dict[str, Any]]]:
    """Recorded attempts per scenario id. Read-only."""
    snapshot = _engine(request).tracker.snapshot()
    logger.info("Getting call counts")
    for scenario_id, records in snapshot.items():
        logger.info("\t%s - Called %d times.", scenario_id, len(records))

    return {
        scenario_id: [record.model_dump(mode="json", by_alias=True) for record in records]
        for scenario_id, records in snapshot.items()
    }


@app.get("/tests/getCallCountGRPC")
async def get_call_count_grpc(request: Request) -> Response:
    """Call history held by the gRPC variant of this app."""
    client = _dapr_client(request)
    try:
        response = await client.invoke_method(settings.grpc_app_id, "GetCallCount")
    except SidecarError as e:
        logger.error(f"Getting call counts for gRPC failed: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e

    if not response.is_success:
        logger.error(f"Getting call counts for gRPC returned {response.status_code}")
        raise HTTPException(status_code=500, detail=response.text)
    return Response(content=response.content, media_type="application/json")


@app.post("/tests/invokeBinding/{binding}")
async def invoke_output_binding(
    binding: str, description: FailureDescription, request: Request
) -> Response:
    client = _dapr_client(request)
    logger.info(f"Making call to output binding {binding}.")
    try:
        await client.invoke_binding(binding, description.to_wire())
    except SidecarError as e:
        logger.error(f"Error invoking binding: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e
    return Response(status_code=200)


@app.post("/tests/publishMessage/{pubsub}/{topic}")
async def publish_message(
    pubsub: str, topic: str, description: FailureDescription, request: Request
) -> Response:
    client = _dapr_client(request)
    logger.info(f"Publishing to {pubsub}/{topic} - {description!r}")
    try:
        await client.publish_event(pubsub, topic, description.to_wire())
    except SidecarError as e:
        logger.error(f"Error publishing event: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e
    return Response(status_code=200)


@app.post("/tests/invokeService/{protocol}")
async def invoke_service(
    protocol: str, description: FailureDescription, request: Request
) -> Response:
    if protocol == "grpc_proxy":
        return await _proxy_grpc(description, request)

    targets = {
        "http": (settings.app_id, "resiliencyInvocation"),
        "grpc": (settings.grpc_app_id, "grpcInvoke"),
    }
    if protocol not in targets:
        raise HTTPException(status_code=400, detail=f"Unsupported protocol: {protocol}")

    client = _dapr_client(request)
    app_id, method = targets[protocol]
    logger.info(f"Invoking resiliency service with {protocol}")
    try:
        response = await client.invoke_method(app_id, method, description.to_wire())
    except SidecarError as e:
        logger.error(f"Failed to invoke service: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e

    if not response.is_success:
        logger.info(f"Invocation of {app_id}/{method} returned {response.status_code}")
    return Response(status_code=response.status_code)


async def _proxy_grpc(description: FailureDescription, request: Request) -> Response:
    client = _grpc_proxy_client(request)
    name = json.dumps(description.to_wire())
    logger.info(f"Proxying message: {name}")
    try:
        await client.say_hello(settings.grpc_app_id, name)
    except SidecarError as e:
        logger.error(f"Could not greet: {e}")
        return Response(status_code=500, content=str(e), media_type="text/plain")
    return Response(status_code=200)


def run() -> None:
    import uvicorn

    uvicorn.run(
        "resiliency_app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
