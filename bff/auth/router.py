"""Auth endpoints."""

from fastapi import APIRouter, Depends, Request, Response, status

from bff.api.auth import current_user
from bff.api.deps import get_executor
from bff.auth.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RegisterCreatorRequest,
    RegisterRequest,
)
from bff.auth.service import AuthService
from bff.datastore.clients import RequestUser
from bff.services.errors import ServiceError
from bff.services.executor import CallExecutor

router = APIRouter(prefix="/v1/auth", tags=["auth"])


def get_auth_service(
    request: Request, executor: CallExecutor = Depends(get_executor)
) -> AuthService:
    client = getattr(request.app.state, "auth_client", None)
    if client is None:
        raise ServiceError("Supabase clients are not configured", "supabase")
    return AuthService(client, executor, getattr(request.app.state, "metrics", None))


@router.post("/register", response_model=LoginResponse | MessageResponse)
async def register(
    body: RegisterRequest, service: AuthService = Depends(get_auth_service)
) -> LoginResponse | MessageResponse:
    return await service.register(body.email, body.password)


@router.post("/register/creator", response_model=LoginResponse | MessageResponse)
async def register_creator(
    body: RegisterCreatorRequest, service: AuthService = Depends(get_auth_service)
) -> LoginResponse | MessageResponse:
    return await service.register_creator(body)


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest, service: AuthService = Depends(get_auth_service)
) -> LoginResponse:
    return await service.login(body.email, body.password)


@router.post("/refresh", response_model=LoginResponse)
async def refresh(
    body: RefreshRequest, service: AuthService = Depends(get_auth_service)
) -> LoginResponse:
    return await service.refresh(body.refresh_token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    user: RequestUser = Depends(current_user),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    await service.logout(user.jwt)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
