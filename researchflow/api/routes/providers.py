from __future__ import annotations

from fastapi import APIRouter

from researchflow.api.deps import get_available_providers
from researchflow.models.schemas import ProviderInfo, ProvidersResponse

router = APIRouter(prefix="/api/providers", tags=["providers"])


@router.get("", response_model=ProvidersResponse)
async def list_providers():
    """List the AI providers a research request can use."""
    return ProvidersResponse(providers=[ProviderInfo(**p) for p in get_available_providers()])
