"""
Request model for custom-script rendering.

The wire shape is {"inputs": {name: source}, "script": text}. The order of
`inputs` is significant: the first input fixes the reference CRS.
"""

import json
import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..constants import RESERVED_WORDS, ErrorMessages

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


class CustomScriptRequest(BaseModel):
    """Named raster inputs plus a pixel script."""

    model_config = ConfigDict(extra="forbid")

    inputs: dict[str, str] = Field(
        ..., description="Input name -> raster source identifier, in reference order"
    )
    script: str = Field(default="", description="Pixel script returning [r, g, b(, a)]")

    @field_validator("inputs")
    @classmethod
    def _check_inputs(cls, value: dict[str, str]) -> dict[str, str]:
        if not value:
            raise ValueError(ErrorMessages.NO_INPUTS)
        for name, source in value.items():
            if not _IDENTIFIER_RE.match(name):
                raise ValueError(ErrorMessages.INVALID_INPUT_NAME.format(name))
            if name in RESERVED_WORDS:
                raise ValueError(ErrorMessages.RESERVED_INPUT_NAME.format(name))
            if not source or not source.strip():
                raise ValueError(ErrorMessages.EMPTY_SOURCE.format(name))
        return value

    def input_pairs(self) -> list[tuple[str, str]]:
        """Ordered (name, source) pairs; the first is the reference input."""
        return list(self.inputs.items())

    @property
    def input_names(self) -> list[str]:
        return list(self.inputs.keys())

    @classmethod
    def from_json(cls, text: str) -> "CustomScriptRequest":
        """
        Parse a serialized request.

        Raises:
            ValueError: malformed JSON or an invalid request
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(ErrorMessages.INVALID_REQUEST_JSON.format(e)) from e
        if not isinstance(data, dict):
            raise ValueError(ErrorMessages.INVALID_REQUEST_JSON.format("expected a JSON object"))
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            details = "; ".join(err["msg"] for err in e.errors())
            raise ValueError(ErrorMessages.INVALID_REQUEST_JSON.format(details)) from e
