"""
Result models returned by the lifecycle orchestrators.

Advisory failures (reloads, site registration, renewal jobs) never abort
an operation; they are collected in `warnings` for the caller to show.
"""

from datetime import datetime, timezone
from typing import List, Dict, Optional
from pydantic import BaseModel, Field


class OperationResult(BaseModel):
    """Outcome of a domain or SSL mutation."""

    success: bool = Field(default=True, description="Whether the operation completed")
    message: str = Field(..., description="Human-readable result message")
    domain: str = Field(..., description="Affected domain")
    files_written: List[str] = Field(default_factory=list, description="Generated artifacts written")
    files_removed: List[str] = Field(default_factory=list, description="Generated artifacts removed")
    reloaded: bool = Field(default=False, description="Whether every web server reloaded cleanly")
    warnings: List[str] = Field(default_factory=list, description="Non-blocking problems")
    details: Dict[str, str] = Field(default_factory=dict, description="Extra key/value information")
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RebuildResult(BaseModel):
    """Outcome of regenerating every domain's artifacts."""

    rebuilt: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict, description="Domain -> error message")
    reloaded: bool = False
    warnings: List[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class RenewalStatusReport(BaseModel):
    """Which automatic renewal mechanism is active, if any."""

    mechanism: str
    enabled: bool
    detail: Optional[str] = None
