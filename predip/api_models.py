from __future__ import annotations

from pydantic import BaseModel, Field


class MemberEvent(BaseModel):
    """A member-changed notification; the member itself is re-read from the store."""

    namespace: str = Field(..., min_length=1, description="Namespace of the fleet member")
    name: str = Field(..., min_length=1, description="Member (pod) name, {set-name}-{ordinal}")


class ReconcileResponse(BaseModel):
    member: str
    outcome: str = Field(..., description="ignored|released|release_failed|terminal|unchanged|annotated")
    address: str | None = None
    pool: str | None = None


class PoolView(BaseModel):
    name: str
    namespace: str
    version: str | None = None
    allocations: dict[str, str] = Field(default_factory=dict, description="holder key -> address")


class ReleaseResponse(BaseModel):
    pool: str
    address: str
    released: bool
