"""Request bodies for the HTTP API.

Required fields are optional at the model level so the routes can answer
missing values with the same 400 messages the web client expects.
"""

from typing import Any

from pydantic import ConfigDict, Field

from fluxdigest.schemas.common import CamelModel


class _Body(CamelModel):
    model_config = ConfigDict(extra="ignore")


class LoginRequest(_Body):
    username: str | None = None
    password: str | None = None


class ChangePasswordRequest(_Body):
    new_password: str | None = None


class MinifluxConfigRequest(_Body):
    url: str | None = None
    username: str | None = None
    password: str | None = None
    api_key: str | None = None
    auth_type: str | None = None


class GenerateRequest(_Body):
    scope: str = "all"
    feed_id: int | None = None
    group_id: int | None = None
    hours: int = 12
    time_range: int | None = None
    target_lang: str = "简体中文"
    prompt: str | None = None
    include_read: bool = False


class ParseCronRequest(_Body):
    expression: str | None = None


class ChatRequest(_Body):
    messages: list[dict[str, Any]] = Field(default_factory=list)
    model: str | None = None
    temperature: float | None = None
    stream: bool = False


class AITestRequest(_Body):
    api_url: str | None = None
    api_key: str | None = None
    model: str | None = None
