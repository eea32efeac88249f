"""Client configuration.

Two kinds of configuration live here:
- ClientConfig: local knobs of this library (timeouts, default addresses)
- V3Options and friends: the opaque configuration bag sent with `start`

Credential discovery is a pure lookup over an explicit mapping; nothing in
this module reads the process environment by itself.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .transport.base import DEFAULT_REST_URL, DEFAULT_RPC_URL, Credentials

logger = logging.getLogger(__name__)

API_KEY_ENV = "BROWSERBASE_API_KEY"
PROJECT_ID_ENV = "BROWSERBASE_PROJECT_ID"

# Provider prefix -> environment keys to try, in order
MODEL_API_KEY_ENV: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "google": ("GOOGLE_GENERATIVE_AI_API_KEY", "GOOGLE_API_KEY", "GEMINI_API_KEY"),
    "gemini": ("GOOGLE_GENERATIVE_AI_API_KEY", "GOOGLE_API_KEY", "GEMINI_API_KEY"),
    "groq": ("GROQ_API_KEY",),
    "cerebras": ("CEREBRAS_API_KEY",),
}
# Tried after the provider-specific keys
FALLBACK_MODEL_API_KEY_ENV = ("MODEL_API_KEY",)


@dataclass
class ClientConfig:
    """Configuration for the client library itself."""

    # Connect (RPC channel readiness)
    connect_timeout: float = 10.0

    # Operation bounds, in milliseconds; None means unbounded
    start_timeout_ms: int | None = 120_000
    end_timeout_ms: int = 10_000
    force_end_timeout_ms: int = 2_000

    # Time allowed for a cancelled stream to release its connection
    cancel_grace: float = 2.0

    # Default addresses
    rpc_url: str = DEFAULT_RPC_URL
    rest_url: str = DEFAULT_REST_URL


class Env(str, Enum):
    LOCAL = "LOCAL"
    BROWSERBASE = "BROWSERBASE"


class ModelConfig(BaseModel):
    """Structured model selection with optional key/base URL overrides."""

    model_config = ConfigDict(protected_namespaces=())

    model_name: str
    api_key: str | None = None
    base_url: str | None = None


class Viewport(BaseModel):
    width: int
    height: int


class LocalBrowserLaunchOptions(BaseModel):
    headless: bool | None = None
    executable_path: str | None = None
    args: list[str] | None = None
    user_data_dir: str | None = None
    viewport: Viewport | None = None
    devtools: bool | None = None
    ignore_https_errors: bool | None = None
    cdp_url: str | None = None


class V3Options(BaseModel):
    """Options sent with `start`.

    Example:
        V3Options(env=Env.BROWSERBASE, model="openai/gpt-4o", verbose=1)
    """

    env: Env = Env.LOCAL
    api_key: str | None = None
    project_id: str | None = None
    browserbase_session_id: str | None = None
    browserbase_session_create_params: dict[str, Any] | None = None
    local_browser_launch_options: LocalBrowserLaunchOptions | None = None
    model: str | ModelConfig | None = None
    system_prompt: str | None = None
    self_heal: bool | None = None
    experimental: bool | None = None
    wait_for_captcha_solves: bool | None = None
    dom_settle_timeout_ms: int | None = None
    act_timeout_ms: int | None = None
    cache_dir: str | None = None
    verbose: int = Field(default=0, ge=0, le=2)
    log_inference_to_file: bool | None = None
    disable_pino: bool | None = None

    @property
    def model_name(self) -> str | None:
        if isinstance(self.model, ModelConfig):
            return self.model.model_name
        return self.model

    def to_params(self) -> dict[str, Any]:
        """Operation params for `start` (snake_case, Nones dropped)."""
        return self.model_dump(mode="json", exclude_none=True)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AgentConfig(_CamelModel):
    """Agent configuration, forwarded opaquely with `execute`."""

    provider: str | None = None
    model: str | ModelConfig | None = None
    instructions: str | None = None
    cua: bool | None = None


class AgentExecuteOptions(_CamelModel):
    """Per-run agent options, forwarded opaquely with `execute`."""

    instruction: str
    max_steps: int | None = None
    highlight_cursor: bool | None = None


def resolve_credential(
    bag: Mapping[str, Any],
    source: Mapping[str, str],
    keys: Sequence[str],
    field: str | None = None,
) -> str | None:
    """Resolve one credential.

    An explicit, non-empty `bag[field]` wins; otherwise the first non-empty
    entry of `keys` found in `source` is used.
    """
    if field is not None:
        explicit = bag.get(field)
        if explicit:
            return str(explicit)
    for key in keys:
        value = source.get(key)
        if value:
            return value
    return None


def resolve_model_api_key(model: str | ModelConfig | None, source: Mapping[str, str]) -> str | None:
    """Find the model provider key: explicit override, then provider env keys."""
    if model is None:
        return None
    if isinstance(model, ModelConfig):
        if model.api_key:
            return model.api_key
        name = model.model_name
    else:
        name = model

    provider = name.split("/", 1)[0].lower() if "/" in name else ""
    keys = (*MODEL_API_KEY_ENV.get(provider, ()), *FALLBACK_MODEL_API_KEY_ENV)
    return resolve_credential({}, source, keys)


def resolve_credentials(
    source: Mapping[str, str],
    api_key: str | None = None,
    project_id: str | None = None,
) -> Credentials:
    """Service credentials: explicit values first, then `source`."""
    bag = {"api_key": api_key, "project_id": project_id}
    return Credentials(
        api_key=resolve_credential(bag, source, (API_KEY_ENV,), "api_key"),
        project_id=resolve_credential(bag, source, (PROJECT_ID_ENV,), "project_id"),
    )


def log_level_for_verbosity(verbose: int) -> int:
    """0/1/2 -> WARNING/INFO/DEBUG."""
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return logging.WARNING


def configure_logging(verbose: int) -> None:
    """Set the package logger's level from a verbosity setting."""
    logging.getLogger("stagehand_sdk").setLevel(log_level_for_verbosity(verbose))
