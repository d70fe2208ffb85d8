"""Request dependencies: optional API key check and upload size guard."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from ripecheck.config import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

# Room for multipart boundaries, part headers and form fields around the image.
MULTIPART_OVERHEAD = 64 * 1024


def _settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject the request unless it carries 'Authorization: Bearer <RIPECHECK_API_KEY>'.

    Auth is off when RIPECHECK_API_KEY is unset.
    """
    expected = _settings(request).api_key
    if expected is None:
        return

    if credentials is not None and secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        return

    logger.warning(
        "Rejected %s %s: %s API key",
        request.method,
        request.url.path,
        "missing" if credentials is None else "invalid",
    )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def reject_oversized_upload(request: Request) -> None:
    """Refuse a classify upload whose declared body size can't fit the file limit.

    Runs before the upload is read into memory or decoded. Bodies without a
    usable Content-Length pass through to the per-file check in the route.
    """
    declared = request.headers.get("content-length")
    if declared is None or not declared.isdigit():
        return

    limit = _settings(request).max_file_size
    if int(declared) > limit + MULTIPART_OVERHEAD:
        raise HTTPException(
            status_code=413,
            detail=f"Request body of {declared} bytes exceeds the {limit} byte image limit",
        )
