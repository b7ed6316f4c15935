from fastapi import Depends, Header
from starlette.requests import HTTPConnection

from streamhub.core.security import verify_admin_token
from streamhub.services.live_system import AppServices


def get_services(conn: HTTPConnection) -> AppServices:
    return conn.app.state.services


def require_admin(
    authorization: str | None = Header(default=None),
    services: AppServices = Depends(get_services),
) -> None:
    verify_admin_token(authorization, services.settings)
