"""
Configuration for the bloc lifecycle close sequence.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LifecycleConfig(BaseModel):
    """How tracked subscriptions are cancelled when the sink closes."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Sequential cancellation (first attached, first cancelled) unless set
    cancel_concurrently: bool = False
    # Keep cancelling after a failure and raise CancellationError at the end
    continue_on_cancel_error: bool = True
    # Seconds allowed per cancellation; None waits forever
    cancel_timeout: Optional[float] = Field(default=None, gt=0)


DEFAULT_CONFIG = LifecycleConfig()
