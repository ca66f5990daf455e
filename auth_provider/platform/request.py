import json
from typing import Any, Dict

from fastapi import Request

from auth_provider.platform.exceptions import InvalidRequestBody


async def read_json_object(request: Request) -> Dict[str, Any]:
    """
    Parse the request body as a JSON object.

    Handlers that must run checks before body validation read the body
    themselves instead of declaring a pydantic body parameter.
    """
    raw = await request.body()
    if not raw:
        raise InvalidRequestBody("Request body is required")
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise InvalidRequestBody()
    if not isinstance(payload, dict):
        raise InvalidRequestBody()
    return payload
