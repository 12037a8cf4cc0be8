import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from ..agent.tasks import TaskBoard
from ..schemas.tasks import TaskCreate, TaskStatusUpdate, TaskUsefulnessUpdate
from .deps import get_task_board, parse_body

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("")
async def list_tasks(board: TaskBoard = Depends(get_task_board)) -> List[Dict[str, Any]]:
    return [task.model_dump(mode="json") for task in await board.list()]


@router.get("/history")
async def task_history(board: TaskBoard = Depends(get_task_board)) -> List[Dict[str, Any]]:
    return [entry.model_dump(mode="json") for entry in await board.history()]


@router.post("")
async def add_task(body: Dict[str, Any], board: TaskBoard = Depends(get_task_board)) -> Dict[str, Any]:
    request = parse_body(TaskCreate, body)
    task = await board.add(request.title, request.details)
    return task.model_dump(mode="json")


@router.post("/{task_id}/status")
async def set_status(task_id: uuid.UUID, body: Dict[str, Any], board: TaskBoard = Depends(get_task_board)) -> Dict[str, Any]:
    request = parse_body(TaskStatusUpdate, body)
    task = await board.set_status(task_id, request.status)
    return task.model_dump(mode="json")


@router.post("/{task_id}/usefulness")
async def set_usefulness(task_id: uuid.UUID, body: Dict[str, Any], board: TaskBoard = Depends(get_task_board)) -> Dict[str, Any]:
    request = parse_body(TaskUsefulnessUpdate, body)
    task = await board.set_usefulness(task_id, request.usefulness)
    return task.model_dump(mode="json")


@router.delete("/{task_id}")
async def delete_task(task_id: uuid.UUID, board: TaskBoard = Depends(get_task_board)) -> Dict[str, Any]:
    await board.delete(task_id)
    return {"status": "deleted", "id": str(task_id)}
