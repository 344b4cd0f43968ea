"""
TestHub - Admin API
User account administration for ROLE_ADMIN holders
"""

from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import AdminUserResponse, UpdateRolesRequest
from ..services.admin_service import admin_user_service

router = APIRouter(prefix="/admin/users", tags=["admin"])


@router.get("", response_model=List[AdminUserResponse])
def list_users(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return admin_user_service.list_users(db, current_user)


@router.post("/{user_id}/enable", status_code=status.HTTP_204_NO_CONTENT)
def enable_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    admin_user_service.enable_user(db, current_user, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{user_id}/disable", status_code=status.HTTP_204_NO_CONTENT)
def disable_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    admin_user_service.disable_user(db, current_user, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    admin_user_service.delete_user(db, current_user, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{user_id}/roles", status_code=status.HTTP_204_NO_CONTENT)
def update_roles(
    user_id: int,
    payload: UpdateRolesRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    admin_user_service.update_roles(db, current_user, user_id, payload.roles)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
