from typing import Any, Dict, Type, TypeVar

from fastapi import HTTPException, Request
from pydantic import BaseModel, ValidationError

from ..agent.reconciliation import ReconciliationController
from ..agent.session import ChatSession
from ..agent.tasks import TaskBoard

Model = TypeVar("Model", bound=BaseModel)


def get_controller(request: Request) -> ReconciliationController:
    return request.app.state.controller


def get_session(request: Request) -> ChatSession:
    return request.app.state.session


def get_task_board(request: Request) -> TaskBoard:
    return request.app.state.task_board


def parse_body(model: Type[Model], body: Dict[str, Any]) -> Model:
    try:
        return model.model_validate(body)
    except ValidationError as error:
        raise HTTPException(status_code=400, detail=error.errors(include_url=False, include_context=False)) from error
