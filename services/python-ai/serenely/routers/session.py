from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..agent.session import ChatSession
from ..schemas.chat import MessageRequest, StreamRequest
from ..schemas.session import SessionFeedback
from .deps import get_session, parse_body

router = APIRouter(prefix="/session", tags=["session"])


@router.get("")
async def read_session(session: ChatSession = Depends(get_session)) -> Dict[str, Any]:
    return session.view().model_dump(mode="json")


@router.post("/new")
async def new_session(session: ChatSession = Depends(get_session)) -> Dict[str, Any]:
    session.start_new_session()
    return session.view().model_dump(mode="json")


@router.post("/message")
async def send_message(body: Dict[str, Any], session: ChatSession = Depends(get_session)) -> Dict[str, Any]:
    request = parse_body(MessageRequest, body)
    reply = await session.send(request.text)
    return {
        "reply": reply.model_dump(mode="json") if reply else None,
        "session": session.view().model_dump(mode="json"),
    }


@router.post("/stream")
async def stream_message(body: Dict[str, Any], session: ChatSession = Depends(get_session)) -> StreamingResponse:
    request = parse_body(StreamRequest, body)
    chunks = session.stream(request.text, fast_mode=request.fast_mode)
    return StreamingResponse(chunks, media_type="text/plain; charset=utf-8")


@router.post("/finalize")
async def finalize_session(session: ChatSession = Depends(get_session)) -> Dict[str, Any]:
    outcome = await session.finalize()
    return outcome.model_dump(mode="json")


@router.post("/feedback")
async def submit_feedback(body: Dict[str, Any], session: ChatSession = Depends(get_session)) -> Dict[str, Any]:
    feedback = parse_body(SessionFeedback, body)
    result = await session.confirm(feedback)
    return result.model_dump(mode="json")


@router.post("/skip")
async def skip_session(session: ChatSession = Depends(get_session)) -> Dict[str, Any]:
    session.skip()
    return session.view().model_dump(mode="json")
