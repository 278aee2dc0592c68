import hmac
from dataclasses import dataclass

from fastapi import Depends, Header, Request

from riskjobs.config.settings import LOCAL_ENVIRONMENTS, AuthMode, Settings
from riskjobs.v1.core.exceptions import UnauthorizedError


@dataclass
class Principal:
    """Represents the current authenticated user."""

    user_id: str
    email: str | None = None


def _app_settings(request: Request) -> Settings:
    return request.app.state.engine.settings


async def get_principal(
    request: Request,
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on the application's AUTH_MODE:
    - none: Returns the configured dev user
    - dev: Trusts the X-User-ID header set by the authenticating gateway
    """
    settings = _app_settings(request)

    if settings.auth_mode == AuthMode.NONE:
        return Principal(user_id=settings.dev_user_id)
    elif settings.auth_mode == AuthMode.DEV:
        if not x_user_id:
            raise UnauthorizedError("X-User-ID header is required in dev auth mode")
        return Principal(user_id=x_user_id)
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def verify_worker_token(
    request: Request,
    x_worker_token: str | None = Header(None, alias="X-Worker-Token"),
) -> None:
    """
    Guard the worker intake with the shared WORKER_TOKEN.

    Without a configured token the intake is only open in local environments.
    """
    settings = _app_settings(request)

    if settings.worker_token is None:
        if settings.environment in LOCAL_ENVIRONMENTS:
            return
        raise UnauthorizedError("Worker intake requires WORKER_TOKEN to be configured")

    if not x_worker_token or not hmac.compare_digest(
        x_worker_token, settings.worker_token
    ):
        raise UnauthorizedError("Invalid worker token")


# Convenience type aliases for dependency injection
PrincipalDep = Depends(get_principal)
WorkerTokenDep = Depends(verify_worker_token)
