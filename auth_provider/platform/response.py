from typing import Any

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(status_code: int = status.HTTP_200_OK, **data: Any) -> JSONResponse:
    """`{"success": true, ...}` plus any extra fields."""
    content = {"success": True}
    content.update(jsonable_encoder(data))
    return JSONResponse(status_code=status_code, content=content)


def error_response(
    message: str, status_code: int = status.HTTP_400_BAD_REQUEST, **extra: Any
) -> JSONResponse:
    """
    Single shape for every error leaving the API: `{"error": message}`.
    Never put exception text in here, only the public message. `extra` adds
    fixed public fields such as an OAuth `error_description`.
    """
    content = {"error": message}
    content.update(jsonable_encoder(extra))
    return JSONResponse(status_code=status_code, content=content)
