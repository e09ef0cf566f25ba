"""
Pydantic models for the admin API.

Defines request/response schemas for call forward management.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from callforward.models.call_forward import CallForward
from callforward.models.telephony import Context, Extension


class ExtensionResponse(BaseModel):
    """An extension, named if known to the registry."""
    extension: str = Field(..., description="Extension id")
    name: Optional[str] = Field(None, description="Display name from the registry")

    @classmethod
    def from_extension(cls, exten: Extension) -> "ExtensionResponse":
        return cls(extension=exten.extension_id, name=exten.display_name)


class ContextResponse(BaseModel):
    """A context from the registry."""
    asterisk_name: str = Field(..., description="Context name used in the dialplan")
    display_name: str = Field(..., description="Human readable name")

    @classmethod
    def from_context(cls, ctx: Context) -> "ContextResponse":
        return cls(asterisk_name=ctx.protocol_name, display_name=ctx.display_name)


class CallForwardRequest(BaseModel):
    """Body for creating or replacing a call forward."""
    from_extension: str = Field(..., min_length=1, description="Dialed extension")
    to_extension: str = Field(..., min_length=1, description="Forward destination, may be external")
    contexts: List[str] = Field(..., min_length=1, description="Asterisk context names")

    model_config = {
        "json_schema_extra": {
            "example": {
                "from_extension": "702",
                "to_extension": "12341234",
                "contexts": ["from_external"]
            }
        }
    }


class CallForwardResponse(BaseModel):
    """A persisted call forward."""
    fwd_id: int = Field(..., description="Call forward id")
    from_extension: ExtensionResponse
    to_extension: ExtensionResponse
    contexts: List[ContextResponse]

    @classmethod
    def from_call_forward(cls, fwd: CallForward) -> "CallForwardResponse":
        return cls(
            fwd_id=fwd.fwd_id,
            from_extension=ExtensionResponse.from_extension(fwd.from_extension),
            to_extension=ExtensionResponse.from_extension(fwd.to_extension),
            contexts=[ContextResponse.from_context(ctx) for ctx in fwd.sorted_contexts()],
        )


class ErrorResponse(BaseModel):
    """Structured error returned by the admin API."""
    error: str = Field(..., description="Error kind")
    message: str = Field(..., description="Human readable message")
    source: Optional[str] = Field(None, description="Conflicting source extension (overlap only)")
    context: Optional[str] = Field(None, description="Conflicting context (overlap only)")
    existing_fwd_id: Optional[int] = Field(None, description="Call forward holding the context")


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Overall status: ok or error")
    database: str = Field(..., description="Database status")
    agi_server: str = Field(..., description="AGI server status")
    timestamp: datetime = Field(..., description="Check timestamp")
