"""Schemas for adapter credentials, adapter config and structured output.

Credential blobs arrive as JSON strings in the api key field; adapter config
arrives as a plain dict stored with the key.
"""

import json
from typing import Any

import jsonschema
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import LLMValidationError, StructuredOutputError


# Sentinel api key: use the AWS default credential chain (self-hosted only)
BEDROCK_USE_DEFAULT_CREDENTIALS = "__langfuse_default_aws_credentials"


class BedrockConfig(BaseModel):
    """Bedrock adapter config."""

    region: str


class BedrockCredential(BaseModel):
    """Explicit AWS credentials for Bedrock."""

    accessKeyId: str
    secretAccessKey: str
    sessionToken: str | None = None


class VertexAIConfig(BaseModel):
    """Vertex AI adapter config."""

    location: str | None = None


class GCPServiceAccountKey(BaseModel):
    """Google Cloud service account key file contents."""

    model_config = ConfigDict(extra="allow")

    type: str
    project_id: str
    private_key_id: str
    private_key: str
    client_email: str
    client_id: str
    auth_uri: str
    token_uri: str
    auth_provider_x509_cert_url: str
    client_x509_cert_url: str


def parse_credential_blob(api_key: str, schema: type[BaseModel]) -> BaseModel:
    """Parse a JSON credential blob without echoing its contents on failure."""
    try:
        return schema.model_validate(json.loads(api_key))
    except (json.JSONDecodeError, ValidationError):
        # Error text from either parser may quote the secret
        raise LLMValidationError(f"Invalid {schema.__name__} credentials") from None


def schema_name(schema: type[BaseModel] | dict[str, Any]) -> str:
    """Name used for the schema in vendor requests."""
    if isinstance(schema, dict):
        return str(schema.get("title") or schema.get("name") or "response")
    return schema.__name__


def to_json_schema(schema: type[BaseModel] | dict[str, Any]) -> dict[str, Any]:
    """Return the JSON schema for a pydantic model or pass a dict through.

    Dicts wrapped OpenAI-style (``{"name": ..., "schema": {...}}``) are unwrapped.
    """
    if isinstance(schema, dict):
        if "schema" in schema and isinstance(schema["schema"], dict):
            return schema["schema"]
        return schema
    return schema.model_json_schema()


def parse_json_output(text: str | None) -> Any:
    """Parse a JSON completion, tolerating a surrounding markdown code fence.

    Raises:
        StructuredOutputError: The text is not valid JSON.
    """
    if not text:
        raise StructuredOutputError("Structured output is empty")

    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        stripped = stripped.rsplit("```", 1)[0]

    try:
        return json.loads(stripped)
    except json.JSONDecodeError as e:
        raise StructuredOutputError(f"Structured output is not valid JSON: {e}") from e


def validate_structured_output(
    result: Any,
    schema: type[BaseModel] | dict[str, Any],
) -> dict[str, Any]:
    """Validate a parsed completion against the caller's schema.

    Returns:
        The validated object as a plain dict.

    Raises:
        StructuredOutputError: The completion does not match the schema.
    """
    if not isinstance(result, dict):
        raise StructuredOutputError(
            f"Structured output must be a JSON object, got {type(result).__name__}"
        )

    if isinstance(schema, dict):
        try:
            jsonschema.validate(result, to_json_schema(schema))
        except jsonschema.ValidationError as e:
            raise StructuredOutputError(
                f"Structured output does not match schema: {e.message}"
            ) from e
        return result

    try:
        return schema.model_validate(result).model_dump()
    except ValidationError as e:
        raise StructuredOutputError(
            f"Structured output does not match schema {schema.__name__}: {e}"
        ) from e
