"""
BALLOTPROOF — API Dependencies.
Shared dependencies for FastAPI routes.
"""

from __future__ import annotations

from fastapi import Request

from ballotproof.service import VotingService


def get_service(request: Request) -> VotingService:
    """Inject the voting service from app state."""
    return request.app.state.service
