from fastapi import APIRouter, Depends
from loguru import logger
from ..deps import get_verifier
from ...models.invoice import VerifyBatchRequest, VerifyBatchResponse
from ...services.registry.entity import EntityVerificationResult
from ...services.registry.uen_verifier import EntityVerifier

router = APIRouter(prefix="/entities", tags=["entities"])


@router.get("/{uen}", response_model=EntityVerificationResult)
async def verify_entity(uen: str, verifier: EntityVerifier = Depends(get_verifier)):
    """Resolve a UEN to registry facts. Invalid formats return is_valid=false, not an HTTP error."""
    return await verifier.verify(uen)


@router.post("/verify-batch", response_model=VerifyBatchResponse)
async def verify_batch(req: VerifyBatchRequest, verifier: EntityVerifier = Depends(get_verifier)):
    logger.info("Batch verification request received", count=len(req.uens))
    results = await verifier.verify_batch(req.uens)
    return VerifyBatchResponse(results=results)
