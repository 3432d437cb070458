"""
BALLOTPROOF — Merkle Router.
Ballot creation, whitelist management and proof lookup.

Errors raised by the service are translated centrally in ``api.py``.
"""

import logging

from fastapi import APIRouter, Depends

from ballotproof.api_deps import get_service
from ballotproof.models import (
    AddToWhitelistRequest,
    ApiResponse,
    CreateBallotRequest,
    ProofData,
    WhitelistedData,
)
from ballotproof.service import VotingService

logger = logging.getLogger("ballotproof.api.merkle")
router = APIRouter(prefix="/merkle", tags=["merkle"])


@router.post("/ballot", response_model=ApiResponse)
async def create_ballot(
    req: CreateBallotRequest,
    service: VotingService = Depends(get_service),
) -> ApiResponse:
    """Create a ballot with its proposals and initial whitelist."""
    result = await service.create_ballot(req.proposalNames, req.addresses)
    return ApiResponse(success=True, data=result)


@router.get("/ballots", response_model=ApiResponse)
async def get_all_ballots(service: VotingService = Depends(get_service)) -> ApiResponse:
    return ApiResponse(success=True, data=await service.get_all_ballots())


@router.get("/ballot/{ballot_id}", response_model=ApiResponse)
async def get_ballot_info(
    ballot_id: int,
    service: VotingService = Depends(get_service),
) -> ApiResponse:
    return ApiResponse(success=True, data=await service.get_ballot_info(ballot_id))


@router.post("/ballot/{ballot_id}/close", response_model=ApiResponse)
async def close_ballot(
    ballot_id: int,
    service: VotingService = Depends(get_service),
) -> ApiResponse:
    await service.close_ballot(ballot_id)
    return ApiResponse(success=True, message=f"Ballot {ballot_id} closed")


@router.get("/proof/{ballot_id}/{address}", response_model=ApiResponse)
async def get_proof(
    ballot_id: int,
    address: str,
    service: VotingService = Depends(get_service),
) -> ApiResponse:
    """Inclusion proof for ``address``; ``isWhitelisted`` is false when absent."""
    result = await service.get_proof(ballot_id, address)
    return ApiResponse(success=True, data=ProofData(**result.to_dict()))


@router.get("/whitelisted/{ballot_id}/{address}", response_model=ApiResponse)
async def check_whitelisted(
    ballot_id: int,
    address: str,
    service: VotingService = Depends(get_service),
) -> ApiResponse:
    listed = await service.is_whitelisted(ballot_id, address)
    return ApiResponse(success=True, data=WhitelistedData(isWhitelisted=listed))


@router.post("/whitelist/{ballot_id}", response_model=ApiResponse)
async def add_to_whitelist(
    ballot_id: int,
    req: AddToWhitelistRequest,
    service: VotingService = Depends(get_service),
) -> ApiResponse:
    """Whitelist addresses; succeeds once the ledger holds the new root."""
    result = await service.add_to_whitelist(ballot_id, req.addresses)
    logger.info("Whitelist for ballot %d now has %d entries", ballot_id, result["whitelistSize"])
    return ApiResponse(
        success=True,
        data=result,
        message=f"Successfully added addresses to ballot {ballot_id} whitelist",
    )


@router.post("/whitelist/{ballot_id}/retry", response_model=ApiResponse)
async def retry_root_push(
    ballot_id: int,
    service: VotingService = Depends(get_service),
) -> ApiResponse:
    """Re-queue a failed root push for the ballot and wait for the ledger."""
    result = await service.retry_root_push(ballot_id)
    if not result["retried"]:
        return ApiResponse(success=True, data=result, message=f"No failed root push for ballot {ballot_id}")
    return ApiResponse(success=True, data=result, message=f"Root push for ballot {ballot_id} confirmed")
