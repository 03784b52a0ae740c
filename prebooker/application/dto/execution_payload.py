from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from prebooker.application.exceptions import InvalidPayloadError


class ExecutionPayloadDTO(BaseModel):
    """Body delivered by the delayed trigger to the execution webhook."""

    model_config = ConfigDict(populate_by_name=True)

    prebooking_id: str = Field(alias="prebookingId", min_length=1)
    execute_at_ms: int = Field(alias="executeAt")
    security_token: str = Field(alias="securityToken", min_length=1)
    user_ref: str | None = Field(default=None, alias="userRef")
    venue_ref: str | None = Field(default=None, alias="venueRef")

    @field_validator("execute_at_ms", mode="before")
    @classmethod
    def _parse_execute_at(cls, value: Any) -> int:
        # Sent as a number by us, but some relays stringify the body.
        if isinstance(value, bool):
            raise ValueError("executeAt must be epoch milliseconds")
        if isinstance(value, str):
            value = value.strip()
            if not value.isdigit():
                raise ValueError("executeAt must be epoch milliseconds")
            return int(value)
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError("executeAt must be whole milliseconds")
            return int(value)
        return value

    @classmethod
    def parse(cls, payload: Any) -> "ExecutionPayloadDTO":
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Payload must be a JSON object")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(str(err["loc"][-1]) for err in e.errors() if err.get("loc"))
            raise InvalidPayloadError(f"Invalid payload fields: {fields}") from e
