"""HTTP client for the structured-output inference service."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from atomledger.adapters.http_resilience import ResilientClient
from atomledger.config.inference import InferenceConfig, get_inference_config
from atomledger.domain.ports import (
    InferenceFailure,
    InferenceFailureKind,
    InferenceOutcome,
    InferenceSuccess,
)

from .schema import InferenceEnvelope

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from atomledger.config.http_resilience import ResilienceConfig

log = getLogger(__name__)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def failure_for_status(status_code: int) -> InferenceFailure | None:
    if status_code < 400:
        return None
    if status_code == 429:
        return InferenceFailure(InferenceFailureKind.RATE_LIMITED, retryable=True)
    if status_code >= 500:
        return InferenceFailure(InferenceFailureKind.UNAVAILABLE, retryable=True)
    if status_code == 403:
        return InferenceFailure(InferenceFailureKind.REFUSED, retryable=False)
    return InferenceFailure(InferenceFailureKind.INVALID_REQUEST, retryable=False)


@dataclass(slots=True)
class HttpInferenceService:
    config: InferenceConfig = field(default_factory=get_inference_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )

    async def infer(self, prompt: str, schema: Mapping[str, Any]) -> InferenceOutcome:
        body: dict[str, Any] = {"prompt": prompt, "schema": dict(schema)}
        if self.config.model:
            body["model"] = self.config.model

        try:
            async with self.client_factory(self.config.resilience) as client:
                response = await client.post(
                    self.config.endpoint,
                    json=body,
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                )
        except httpx.TimeoutException as exc:
            log.warning("Inference request timed out: %s", exc)
            return InferenceFailure(InferenceFailureKind.TIMEOUT, retryable=True, message=str(exc))
        except httpx.TransportError as exc:
            log.warning("Inference service unreachable: %s", exc)
            return InferenceFailure(
                InferenceFailureKind.UNAVAILABLE, retryable=True, message=str(exc)
            )

        failure = failure_for_status(response.status_code)
        if failure is not None:
            log.warning("Inference service answered HTTP %s", response.status_code)
            return InferenceFailure(
                failure.kind,
                retryable=failure.retryable,
                message=f"HTTP {response.status_code}: {response.text[:200]}",
            )
        return _parse(response)


def _parse(response: httpx.Response) -> InferenceOutcome:
    try:
        data = response.json()
    except ValueError:
        return InferenceFailure(
            InferenceFailureKind.MALFORMED_RESPONSE,
            retryable=False,
            message="response body is not JSON",
        )
    if not isinstance(data, dict):
        return InferenceFailure(
            InferenceFailureKind.MALFORMED_RESPONSE,
            retryable=False,
            message="response body is not a JSON object",
        )

    try:
        envelope = InferenceEnvelope.model_validate(data)
    except PydanticValidationError as exc:
        return InferenceFailure(
            InferenceFailureKind.MALFORMED_RESPONSE, retryable=False, message=str(exc)
        )
    if envelope.refusal:
        return InferenceFailure(
            InferenceFailureKind.REFUSED, retryable=False, message=envelope.refusal
        )
    if envelope.error:
        return InferenceFailure(
            InferenceFailureKind.INVALID_REQUEST, retryable=False, message=envelope.error
        )
    payload: dict[str, Any] = envelope.result if envelope.result is not None else data
    return InferenceSuccess(payload=payload)
