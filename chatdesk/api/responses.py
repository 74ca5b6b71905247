# chatdesk/api/responses.py
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


def ok(data: Any = None) -> dict:
    return {"code": 0, "message": "success", "data": data}


def fail(message: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": -1, "message": message})


def get_store(request: Request):
    return request.app.state.store


def get_notifier(request: Request):
    return request.app.state.notifier
