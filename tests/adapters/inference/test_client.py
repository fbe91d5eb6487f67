from __future__ import annotations

import asyncio
import json
from collections.abc import Callable  # noqa: TC003

import httpx
import pytest

from atomledger.adapters.http_resilience import ResilientClient
from atomledger.adapters.inference import ATOM_SCHEMA, HttpInferenceService
from atomledger.adapters.inference.client import failure_for_status
from atomledger.config.http_resilience import ResilienceConfig
from atomledger.config.inference import InferenceConfig
from atomledger.domain.ports import InferenceFailure, InferenceFailureKind, InferenceSuccess

BASE_URL = "https://inference.test"


def _make_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[[ResilienceConfig], ResilientClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        client = ResilientClient(resilience)
        client._client = httpx.AsyncClient(  # noqa: SLF001  # type: ignore[reportPrivateUsage]
            base_url=BASE_URL, transport=httpx.MockTransport(async_handler)
        )
        return client

    return factory


def _service(handler: Callable[[httpx.Request], httpx.Response]) -> HttpInferenceService:
    config = InferenceConfig(
        api_key="secret",
        model="intent-small",
        endpoint="/v1/infer",
        resilience=ResilienceConfig(name="inference", base_url=BASE_URL),
    )
    return HttpInferenceService(config=config, client_factory=_make_client_factory(handler))


def test_successful_response_unwraps_result() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": {"atoms": []}})

    outcome = asyncio.run(_service(handler).infer("Infer atoms", ATOM_SCHEMA))

    assert outcome == InferenceSuccess(payload={"atoms": []})
    (request,) = seen
    assert request.url.path == "/v1/infer"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["prompt"] == "Infer atoms"
    assert body["model"] == "intent-small"
    assert "atoms" in body["schema"]["properties"]


def test_bare_payload_is_accepted() -> None:
    outcome = asyncio.run(
        _service(lambda _: httpx.Response(200, json={"molecules": []})).infer("p", {})
    )

    assert outcome == InferenceSuccess(payload={"molecules": []})


def test_refusal_is_not_retryable() -> None:
    outcome = asyncio.run(
        _service(lambda _: httpx.Response(200, json={"refusal": "Not allowed"})).infer("p", {})
    )

    assert isinstance(outcome, InferenceFailure)
    assert outcome.kind is InferenceFailureKind.REFUSED
    assert not outcome.retryable
    assert outcome.message == "Not allowed"


@pytest.mark.parametrize(
    ("status_code", "kind", "retryable"),
    [
        (429, InferenceFailureKind.RATE_LIMITED, True),
        (500, InferenceFailureKind.UNAVAILABLE, True),
        (400, InferenceFailureKind.INVALID_REQUEST, False),
        (403, InferenceFailureKind.REFUSED, False),
    ],
)
def test_http_errors_are_classified(
    status_code: int,
    kind: InferenceFailureKind,
    retryable: bool,  # noqa: FBT001
) -> None:
    outcome = asyncio.run(
        _service(lambda _: httpx.Response(status_code, text="nope")).infer("p", {})
    )

    assert isinstance(outcome, InferenceFailure)
    assert outcome.kind is kind
    assert outcome.retryable is retryable
    assert outcome.message.startswith(f"HTTP {status_code}")


def test_non_json_body_is_malformed() -> None:
    outcome = asyncio.run(
        _service(lambda _: httpx.Response(200, text="<html>busy</html>")).infer("p", {})
    )

    assert isinstance(outcome, InferenceFailure)
    assert outcome.kind is InferenceFailureKind.MALFORMED_RESPONSE
    assert not outcome.retryable


def test_timeout_is_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    outcome = asyncio.run(_service(handler).infer("p", {}))

    assert isinstance(outcome, InferenceFailure)
    assert outcome.kind is InferenceFailureKind.TIMEOUT
    assert outcome.retryable


def test_success_statuses_are_not_failures() -> None:
    assert failure_for_status(200) is None
    assert failure_for_status(404) == InferenceFailure(
        InferenceFailureKind.INVALID_REQUEST, retryable=False
    )
