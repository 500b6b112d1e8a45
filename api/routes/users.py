"""
api/routes/users.py -- User lookup endpoint.

Routes:
  GET /users/{user_id} -- safe view of any user (requires session)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserResponse
from auth.guard import access_guard
from auth.service import AuthService

router = APIRouter(prefix="/users", dependencies=[Depends(access_guard)])


@router.get("/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int) -> UserResponse:
    service: AuthService = request.app.state.auth_service
    return UserResponse.from_safe_user(service.get_user(user_id))
