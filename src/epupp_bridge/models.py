"""Pydantic models for the nREPL eval bridge.

These models cover:
- The relay endpoint a call connects to
- The single ``eval`` request sent per connection
- The structured result handed back to test code
- Polling configuration for state cells in the browser tab
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

ErrorKind = Literal["transport", "evaluation"]

UNKNOWN_ERROR = "Unknown error"


class Endpoint(BaseModel):
    """Host/port of the nREPL relay."""

    model_config = ConfigDict(frozen=True)

    host: str = Field("localhost", description="Relay host name or address")
    port: int = Field(ge=1, le=65535, description="Relay nREPL port")

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


# ============================================================================
# Request
# ============================================================================


class EvalRequest(BaseModel):
    """Evaluate source code in the connected browser tab."""

    model_config = ConfigDict(frozen=True)

    op: Literal["eval"] = Field("eval", description="nREPL operation name")
    code: str = Field(description="Source text to evaluate")


# ============================================================================
# Result
# ============================================================================


class EvalResult(BaseModel):
    """Outcome of one evaluation.

    ``error`` is set exactly when ``success`` is false. ``values`` holds the
    printed form of each returned value in evaluation order and may be empty
    on success.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = Field(description="True when no error was reported")
    values: List[str] = Field(
        default_factory=list, description="Printed values in evaluation order"
    )
    error: Optional[str] = Field(None, description="Error message on failure")
    error_kind: Optional[ErrorKind] = Field(
        None, description="'transport' for local socket failures, 'evaluation' for remote errors"
    )

    @model_validator(mode="after")
    def _check_discriminant(self) -> "EvalResult":
        if self.success:
            if self.error is not None or self.error_kind is not None:
                raise ValueError("successful result cannot carry an error")
        else:
            if self.error is None or self.error_kind is None:
                raise ValueError("failed result requires error and error_kind")
        return self

    @classmethod
    def ok(cls, values: List[str] | None = None) -> "EvalResult":
        return cls(success=True, values=list(values or []))

    @classmethod
    def failed(cls, error: str, kind: ErrorKind) -> "EvalResult":
        return cls(success=False, error=error or UNKNOWN_ERROR, error_kind=kind)

    @property
    def first_value(self) -> Optional[str]:
        """First returned value, or None when nothing was printed."""
        return self.values[0] if self.values else None


# ============================================================================
# Polling
# ============================================================================


class PollConfig(BaseModel):
    """How to poll a state cell in the browser tab."""

    probe_expression: str = Field(
        description="Expression that prints the sentinel or the resolved value"
    )
    interval_ms: int = Field(20, ge=0, description="Delay between probes")
    timeout_ms: int = Field(gt=0, description="Wall-clock budget for the whole wait")
    pending_sentinel: str = Field(
        ":pending", description="Printed value meaning 'not resolved yet'"
    )
