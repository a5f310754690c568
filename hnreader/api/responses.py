import hashlib
import json
from typing import Any

from fastapi import Request, Response
from pydantic import BaseModel


def etag_for(body: bytes) -> str:
    """Strong ETag: quoted MD5 of the response body."""
    return f'"{hashlib.md5(body).hexdigest()}"'


def json_with_etag(request: Request, payload: Any, status_code: int = 200) -> Response:
    """
    Serialize `payload` to JSON with an ETag.

    Returns 304 with an empty body when the client's If-None-Match
    already names this ETag.
    """
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")

    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    etag = etag_for(body)

    if_none_match = request.headers.get("If-None-Match")
    if if_none_match:
        candidates = {tag.strip() for tag in if_none_match.split(",")}
        if etag in candidates or "*" in candidates:
            return Response(status_code=304, headers={"ETag": etag})

    return Response(
        content=body,
        status_code=status_code,
        media_type="application/json",
        headers={"ETag": etag, "Cache-Control": "no-cache"},
    )
