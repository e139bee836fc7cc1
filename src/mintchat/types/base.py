"""Reusable base models for configuration and wire messages."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    A base model that converts field names to camel case when serializing.

    For example, the field name `mime_type` in a Python model will be
    represented as `mimeType` when it is serialized to JSON.

    This matches the key style of the chat wire format.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_default=True,
        arbitrary_types_allowed=True,
    )


class StrictBaseModel(CamelModel):
    """A strict, immutable pydantic base model."""

    model_config = CamelModel.model_config | {
        "extra": "forbid",
        "frozen": True,
        "strict": True,
    }


class WireModel(CamelModel):
    """
    An immutable model for data received from remote peers.

    Unknown keys are dropped during validation instead of rejected.
    Remote payloads may carry fields we never trust (a claimed sender id,
    a display name); those must never survive parsing.
    """

    model_config = CamelModel.model_config | {
        "extra": "ignore",
        "frozen": True,
    }
