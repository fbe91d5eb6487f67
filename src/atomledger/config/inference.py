"""Inference service configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int, optional_env_var, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

INFERENCE_TIMEOUT_SECONDS = 120.0
INFERENCE_ENDPOINT = "/v1/infer"

# The inference adapter retries failed calls itself, so the transport sends each call once.
INFERENCE_TRANSPORT_RETRY = RetryPolicy(total=0, status_forcelist=frozenset())


@dataclass(frozen=True)
class InferenceConfig:
    """Holds connection settings for the external inference service."""

    api_key: str
    model: str | None
    endpoint: str
    resilience: ResilienceConfig


def get_inference_config(*, resilience: ResilienceConfig | None = None) -> InferenceConfig:
    values = require_env_vars(("INFERENCE_BASE_URL", "INFERENCE_API_KEY"))
    max_calls = env_int("INFERENCE_RATE_LIMIT_CALLS", 0)
    ratelimit = (
        RateLimit(max_calls=max_calls, per_seconds=env_float("INFERENCE_RATE_LIMIT_SECONDS", 1.0))
        if max_calls > 0
        else None
    )
    return InferenceConfig(
        api_key=values["INFERENCE_API_KEY"],
        model=optional_env_var("INFERENCE_MODEL"),
        endpoint=optional_env_var("INFERENCE_ENDPOINT") or INFERENCE_ENDPOINT,
        resilience=resilience
        or ResilienceConfig(
            name="inference",
            base_url=values["INFERENCE_BASE_URL"],
            timeout_seconds=env_float("INFERENCE_TIMEOUT_SECONDS", INFERENCE_TIMEOUT_SECONDS),
            retry=INFERENCE_TRANSPORT_RETRY,
            ratelimit=ratelimit,
        ),
    )
