"""
Schema definitions for authzscript.

This module defines the Pydantic models used throughout authzscript:
- AuthZRequest: Immutable snapshot of an inbound API request
- AuthZResponse: Decision returned to the authorization host
- DecisionStatus: States of a single evaluation's decision
- PluginConfig: Runtime configuration loaded from YAML

Design Decisions:
    - Request and config models are frozen (never mutated after load)
    - Request fields accept both snake_case and the plugin wire names
      (RequestMethod, RequestURI, ...) so decoded payloads validate directly
    - The wire body is base64 (the host encodes a byte slice); from_wire()
      decodes it, snake_case construction takes raw bytes or text
"""

import base64
import binascii
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class DecisionStatus(str, Enum):
    """
    State of the decision recorded by a policy script.

    UNDECIDED is the only non-terminal state. A script that finishes
    without leaving it is implicitly denied.
    """

    UNDECIDED = "undecided"
    ALLOWED = "allowed"
    DENIED = "denied"


# =============================================================================
# Request / Response Models
# =============================================================================


WIRE_REQUEST_KEYS = frozenset({
    "User",
    "UserAuthNMethod",
    "RequestMethod",
    "RequestURI",
    "RequestBody",
    "RequestHeaders",
})


class AuthZRequest(BaseModel):
    """
    Snapshot of an inbound API request, as delivered by the host.

    The evaluator only ever reads this model. Its lifetime spans one
    evaluation call.

    Attributes:
        user: Authenticated user identity
        user_authn_method: Authentication method used by the user
        method: HTTP method of the request (e.g., "GET")
        uri: Raw, unparsed request URI (e.g., "/v1.41/containers/json?all=1")
        headers: One value per header name
        body: Raw request body bytes
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    user: str = Field(default="", alias="User", description="Authenticated user")
    user_authn_method: str = Field(
        default="",
        alias="UserAuthNMethod",
        description="Authentication method",
    )
    method: str = Field(default="", alias="RequestMethod", description="HTTP method")
    uri: str = Field(default="", alias="RequestURI", description="Raw request URI")
    headers: dict[str, str] = Field(
        default_factory=dict,
        alias="RequestHeaders",
        description="Request headers (one value per name)",
    )
    body: bytes = Field(default=b"", alias="RequestBody", description="Raw request body")

    @field_validator("headers", mode="before")
    @classmethod
    def default_headers(cls, v: Any) -> Any:
        """Treat a null header map as empty."""
        return {} if v is None else v

    @field_validator("body", mode="before")
    @classmethod
    def coerce_body(cls, v: Any) -> Any:
        """Accept text bodies and treat a null body as empty."""
        if v is None:
            return b""
        if isinstance(v, str):
            return v.encode("utf-8")
        return v

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> "AuthZRequest":
        """
        Build a snapshot from a decoded plugin wire payload.

        Args:
            payload: JSON-decoded request with wire field names

        Returns:
            Validated AuthZRequest

        Raises:
            ValueError: If RequestBody is not valid base64
        """
        data = dict(payload)
        raw_body = data.get("RequestBody")
        if isinstance(raw_body, str):
            try:
                data["RequestBody"] = base64.b64decode(raw_body, validate=True)
            except binascii.Error as e:
                msg = f"RequestBody is not valid base64: {e}"
                raise ValueError(msg) from e
        return cls.model_validate(data)


class AuthZResponse(BaseModel):
    """
    Decision sent back to the authorization host.

    Attributes:
        allow: Whether the request is permitted
        msg: Informational message
        err: Error/denial message shown to the client
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    allow: bool = Field(..., alias="Allow", description="Whether the request is permitted")
    msg: str = Field(default="", alias="Msg", description="Informational message")
    err: str = Field(default="", alias="Err", description="Error or denial message")

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the wire field names."""
        return self.model_dump(by_alias=True)


# =============================================================================
# Configuration
# =============================================================================


class PluginConfig(BaseModel):
    """
    Runtime configuration for the authorization plugin.

    Attributes:
        rule: Path to the policy script
        failure_message: Message returned when the script fails
        log_level: Logging level for the process
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rule: Path = Field(..., description="Path to the policy script")
    failure_message: str = Field(
        default="authorization script failed",
        description="Message returned to the host when the script fails",
        min_length=1,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lower-case level names."""
        return v.upper() if isinstance(v, str) else v


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_config(path: Path | str) -> PluginConfig:
    """
    Load a plugin configuration from a YAML file.

    A relative rule path is resolved against the config file's directory.

    Args:
        path: Path to the YAML file

    Returns:
        Validated PluginConfig object

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        content = f.read()
    return load_config_from_string(content, base_dir=path.parent)


def load_config_from_string(content: str, base_dir: Path | str | None = None) -> PluginConfig:
    """
    Load a plugin configuration from a YAML string.

    A relative rule path is resolved against base_dir when given, and left
    as written otherwise.
    """
    data = yaml.safe_load(content)
    config = PluginConfig.model_validate(data)
    if base_dir is not None and not config.rule.is_absolute():
        config = config.model_copy(update={"rule": Path(base_dir) / config.rule})
    return config


def parse_request_document(data: Any) -> AuthZRequest:
    """
    Validate a decoded request document.

    Documents using any wire field name are treated as wire payloads
    (base64 body); anything else is validated with snake_case names.
    """
    if not isinstance(data, dict):
        msg = f"Request document must be a mapping, got {type(data).__name__}"
        raise ValueError(msg)
    if WIRE_REQUEST_KEYS & data.keys():
        return AuthZRequest.from_wire(data)
    return AuthZRequest.model_validate(data)
