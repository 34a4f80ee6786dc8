"""
FastAPI dependencies shared by the route modules.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from boxoffice.bootstrap import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """
    Caller identity from the X-User-Id header.
    Authentication happens upstream (gateway); this service trusts the header.
    """
    if x_user_id is None or not x_user_id.isdigit() or int(x_user_id) <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid X-User-Id header",
        )
    return int(x_user_id)
