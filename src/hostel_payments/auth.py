"""Authentication, caller identity and rate limiting helpers for the API."""

import os
import secrets
import logging
from typing import Optional

from fastapi import HTTPException, Security, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

security = HTTPBearer()


def student_or_address(request: Request) -> str:
    """Rate-limit key: the calling student when known, else the client address."""
    student_id = request.headers.get("x-student-id")
    if student_id:
        return f"student:{student_id}"
    return get_remote_address(request)


# Rate limiter
limiter = Limiter(key_func=student_or_address)


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """
    Check the shared bearer key the hostel backend sends on every call except
    the gateway webhook, which is authenticated by its signature instead.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY is not set; rejecting all API calls")
        raise HTTPException(status_code=500, detail="Server configuration error")

    presented = credentials.credentials
    if not secrets.compare_digest(presented.encode(), expected_key.encode()):
        logger.warning("Rejected API call with an invalid key")
        raise HTTPException(
            status_code=401,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return presented


async def get_student_id(x_student_id: Optional[str] = Header(None)) -> str:
    """Identity of the calling student, asserted by the upstream auth layer."""
    if not x_student_id:
        raise HTTPException(status_code=401, detail="Student identity required")
    return x_student_id


async def get_admin_id(x_admin_id: Optional[str] = Header(None)) -> str:
    """Identity of the calling administrator, asserted by the upstream auth layer."""
    if not x_admin_id:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return x_admin_id


async def get_caller_student_id(
    x_student_id: Optional[str] = Header(None),
    x_admin_id: Optional[str] = Header(None),
) -> Optional[str]:
    """Student scope for routes open to both roles; None for administrators."""
    if x_admin_id:
        return None
    if x_student_id:
        return x_student_id
    raise HTTPException(status_code=401, detail="Caller identity required")
