from __future__ import annotations

import errno
import logging
from pathlib import Path

from fastapi import APIRouter, Request, Response
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["assets"])

DEFAULT_CONTENT_TYPE = "text/html"
CONTENT_TYPES = {
    ".js": "text/javascript",
    ".css": "text/css",
    ".m4a": "audio/mp4",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".ico": "image/x-icon",
    ".mp3": "audio/mpeg",
}
NOT_FOUND_ERRNOS = {errno.ENOENT, errno.ENOTDIR, errno.EISDIR}


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), DEFAULT_CONTENT_TYPE)


def resolve_asset_path(public_dir: Path, request_path: str) -> Path | None:
    relative = request_path.lstrip("/") or "index.html"
    root = public_dir.resolve()
    candidate = (root / relative).resolve()
    if root not in candidate.parents:
        return None
    return candidate


@router.get("/{asset_path:path}", include_in_schema=False)
async def serve_asset(asset_path: str, request: Request) -> Response:
    public_dir: Path = request.app.state.public_dir
    file_path = resolve_asset_path(public_dir, asset_path)
    if file_path is None:
        return Response("File not found", status_code=404, media_type="text/plain")

    try:
        content = await run_in_threadpool(file_path.read_bytes)
    except OSError as exc:
        if exc.errno in NOT_FOUND_ERRNOS:
            return Response("File not found", status_code=404, media_type="text/plain")
        code = errno.errorcode.get(exc.errno or 0, "EIO")
        logger.exception("Failed to read asset %s", file_path)
        return Response(f"Server Error: {code}", status_code=500, media_type="text/plain")

    return Response(content, status_code=200, media_type=content_type_for(file_path))
