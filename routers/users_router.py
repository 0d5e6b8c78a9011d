from typing import Optional

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from sqlalchemy.orm import Session

import config
import local_storage
from auth import client_ip, get_admin_user, get_current_user
from database import get_db
from models import User
from routers.common import Pagination, paginated, success
from schemas import AccountDeletePayload, AdminUserUpdate, PasswordChange, ProfileUpdate
from services.user_service import UserService, format_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/")
def list_users(
    search: Optional[str] = Query(None),
    pagination: Pagination = Depends(),
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    users, total = UserService(db).list_users(search, pagination.page, pagination.per_page)
    return paginated([format_user(u) for u in users], total, pagination.page, pagination.per_page)


@router.get("/profile")
def get_profile(current_user: User = Depends(get_current_user)):
    return success(format_user(current_user))


@router.put("/profile")
def update_profile(payload: ProfileUpdate, current_user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    user = UserService(db).update_profile(current_user, name=payload.name, email=payload.email)
    return success(format_user(user), "Profile updated successfully")


@router.post("/profile/image")
async def upload_profile_image(image: UploadFile = File(...), current_user: User = Depends(get_current_user),
                               db: Session = Depends(get_db)):
    path = await local_storage.save_upload(image, "profiles", "Profile image",
                                           config.ALLOWED_IMAGE_TYPES, require_image=True)
    user = UserService(db).update_profile_image(current_user, path)
    return success(format_user(user), "Profile image updated")


@router.put("/password")
def change_password(payload: PasswordChange, current_user: User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    UserService(db).change_password(current_user, payload.current_password, payload.new_password,
                                    payload.confirm_password)
    return success(None, "Password changed successfully")


@router.delete("/profile")
def delete_account(payload: AccountDeletePayload, request: Request,
                   current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    UserService(db).delete_account(current_user, payload.confirm_email)
    request.session.clear()
    return success(None, "Your account has been deleted")


@router.get("/{user_id}")
def get_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if user_id != current_user.user_id and not current_user.is_admin:
        return success({"user_id": user_id, "name": UserService(db).get_user(user_id).name})
    return success(format_user(UserService(db).get_user(user_id)))


@router.put("/{user_id}")
def update_user(user_id: int, payload: AdminUserUpdate, request: Request,
                admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    user = UserService(db).admin_update_user(admin, user_id, client_ip(request),
                                             **payload.model_dump(exclude_unset=True))
    return success(format_user(user), "User updated successfully")


@router.delete("/{user_id}")
def delete_user(user_id: int, request: Request, admin: User = Depends(get_admin_user),
                db: Session = Depends(get_db)):
    UserService(db).admin_delete_user(admin, user_id, client_ip(request))
    return success(None, "User deleted successfully")
