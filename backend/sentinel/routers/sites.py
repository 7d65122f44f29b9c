"""Site registration and read API endpoints."""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from ..schemas.site import CheckResultOut, SiteCreate, SiteResponse
from ..services.immediate import ImmediateCheckService
from ..services.registry import DuplicateSiteError, RegistryFailure, SiteRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sites", tags=["sites"])


def get_registry(request: Request) -> SiteRegistry:
    return request.app.state.registry


def get_immediate_checks(request: Request) -> ImmediateCheckService:
    return request.app.state.immediate_checks


def _unavailable(e: RegistryFailure) -> HTTPException:
    logger.error(f"Registry failure: {e}")
    return HTTPException(status_code=503, detail="Storage temporarily unavailable")


@router.post("", response_model=SiteResponse, status_code=201)
async def register_site(
    payload: SiteCreate,
    registry: SiteRegistry = Depends(get_registry),
    immediate: ImmediateCheckService = Depends(get_immediate_checks),
):
    """Register a site; it is checked once before the response is returned."""
    try:
        if await registry.get_by_url(payload.url):
            raise HTTPException(status_code=409, detail="This URL is already being monitored")
        site = await immediate.register(payload.url, payload.name, payload.notify_email)
    except DuplicateSiteError:
        raise HTTPException(status_code=409, detail="This URL is already being monitored")
    except RegistryFailure as e:
        raise _unavailable(e)
    return SiteResponse.from_site(site)


@router.get("", response_model=List[SiteResponse])
async def list_sites(registry: SiteRegistry = Depends(get_registry)):
    """List all sites with uptime statistics."""
    try:
        sites = await registry.list_all()
    except RegistryFailure as e:
        raise _unavailable(e)
    return [SiteResponse.from_site(site) for site in sites]


@router.get("/{site_id}", response_model=SiteResponse)
async def get_site(site_id: int, registry: SiteRegistry = Depends(get_registry)):
    try:
        site = await registry.get_by_id(site_id)
    except RegistryFailure as e:
        raise _unavailable(e)
    if site is None:
        raise HTTPException(status_code=404, detail="Site not found")
    return SiteResponse.from_site(site)


@router.get("/{site_id}/history", response_model=List[CheckResultOut])
async def get_site_history(site_id: int, registry: SiteRegistry = Depends(get_registry)):
    """Full retained history, oldest first."""
    try:
        site = await registry.get_by_id(site_id)
    except RegistryFailure as e:
        raise _unavailable(e)
    if site is None:
        raise HTTPException(status_code=404, detail="Site not found")
    return [CheckResultOut.from_result(r) for r in site.history]


@router.delete("/{site_id}", status_code=204)
async def delete_site(site_id: int, registry: SiteRegistry = Depends(get_registry)):
    """Deregister a site; the scheduler stops checking it."""
    try:
        deleted = await registry.delete(site_id)
    except RegistryFailure as e:
        raise _unavailable(e)
    if not deleted:
        raise HTTPException(status_code=404, detail="Site not found")
