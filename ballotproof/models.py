"""
BALLOTPROOF — API Models.
Centralized Pydantic models for request/response validation.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class CreateBallotRequest(BaseModel):
    proposalNames: list[str] = Field(..., description="Ordered proposal names")
    addresses: list[str] = Field(default_factory=list, description="Initial whitelist")

    @field_validator("proposalNames")
    @classmethod
    def names_not_blank(cls, v: list[str]) -> list[str]:
        for name in v:
            if not name or not name.strip():
                raise ValueError("Proposal names must not be empty or whitespace only")
        return v


class AddToWhitelistRequest(BaseModel):
    addresses: list[str] = Field(..., min_length=1, description="Addresses to whitelist")


class ProofData(BaseModel):
    proof: list[str]
    merkleRoot: str
    isWhitelisted: bool
    syncStatus: str


class WhitelistedData(BaseModel):
    isWhitelisted: bool


class ApiResponse(BaseModel):
    """Envelope shared by every endpoint."""

    success: bool
    data: Any = None
    message: str | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    retryable: bool = False
