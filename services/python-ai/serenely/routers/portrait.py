from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..agent.reconciliation import ReconciliationController
from ..agent.session import ChatSession
from .deps import get_controller, get_session

router = APIRouter(prefix="/portrait", tags=["portrait"])


@router.get("")
async def read_portrait(controller: ReconciliationController = Depends(get_controller)) -> Dict[str, Any]:
    portrait = await controller.snapshot()
    return portrait.model_dump(mode="json")


@router.get("/highlights")
async def read_highlights(controller: ReconciliationController = Depends(get_controller)) -> Dict[str, Any]:
    return controller.last_highlights.model_dump(mode="json")


@router.delete("")
async def clear_portrait(session: ChatSession = Depends(get_session)) -> Dict[str, Any]:
    await session.clear_portrait()
    return {"status": "cleared"}
