from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from auth import client_ip, get_admin_user, get_current_user, get_optional_user
from database import get_db
from models import User
from routers.common import Pagination, paginated, success
from schemas import MenuItemPayload, MenuItemUpdate, StallCreate, StallUpdate
from services.review_service import ReviewService
from services.stall_service import StallService, format_menu_item, format_stall

router = APIRouter(prefix="/stalls", tags=["stalls"])


@router.get("/")
def list_stalls(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    pagination: Pagination = Depends(),
    db: Session = Depends(get_db),
):
    stalls, total = StallService(db).list_stalls(search, category, pagination.page, pagination.per_page)
    return paginated([format_stall(s) for s in stalls], total, pagination.page, pagination.per_page)


@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    return success(StallService(db).get_categories())


@router.get("/featured")
def featured_stalls(limit: int = Query(6, ge=1, le=24), db: Session = Depends(get_db)):
    return success([format_stall(s) for s in StallService(db).get_random_stalls(limit)])


@router.get("/{stall_id}")
def get_stall(stall_id: int, db: Session = Depends(get_db)):
    return success(format_stall(StallService(db).get_stall(stall_id)))


@router.get("/{stall_id}/menu")
def get_menu(stall_id: int, db: Session = Depends(get_db)):
    return success([format_menu_item(i) for i in StallService(db).get_menu(stall_id)])


@router.get("/{stall_id}/reviews")
def get_stall_reviews(
    stall_id: int,
    pagination: Pagination = Depends(),
    viewer: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    StallService(db).get_stall(stall_id)
    service = ReviewService(db)
    reviews, total = service.list_reviews(stall_id=stall_id, page=pagination.page, per_page=pagination.per_page)
    data = service.format_many(reviews, viewer.user_id if viewer else None)
    return paginated(data, total, pagination.page, pagination.per_page)


@router.post("/")
def create_stall(payload: StallCreate, request: Request, admin: User = Depends(get_admin_user),
                 db: Session = Depends(get_db)):
    stall = StallService(db).create_stall(admin, ip_address=client_ip(request), **payload.model_dump())
    return success(format_stall(stall), "Stall created successfully", status_code=201)


@router.put("/{stall_id}")
def update_stall(stall_id: int, payload: StallUpdate, request: Request,
                 current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    stall = StallService(db).update_stall(current_user, stall_id, client_ip(request),
                                          **payload.model_dump(exclude_unset=True))
    return success(format_stall(stall), "Stall updated successfully")


@router.delete("/{stall_id}")
def delete_stall(stall_id: int, request: Request, admin: User = Depends(get_admin_user),
                 db: Session = Depends(get_db)):
    StallService(db).delete_stall(admin, stall_id, client_ip(request))
    return success(None, "Stall deleted successfully")


@router.post("/{stall_id}/menu")
def add_menu_item(stall_id: int, payload: MenuItemPayload, current_user: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    item = StallService(db).add_menu_item(current_user, stall_id, payload.name, payload.price,
                                          payload.description, is_available=payload.is_available)
    return success(format_menu_item(item), "Menu item added", status_code=201)


@router.put("/{stall_id}/menu/{item_id}")
def update_menu_item(stall_id: int, item_id: int, payload: MenuItemUpdate,
                     current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    item = StallService(db).update_menu_item(current_user, stall_id, item_id,
                                             **payload.model_dump(exclude_unset=True))
    return success(format_menu_item(item), "Menu item updated")


@router.delete("/{stall_id}/menu/{item_id}")
def delete_menu_item(stall_id: int, item_id: int, current_user: User = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    StallService(db).delete_menu_item(current_user, stall_id, item_id)
    return success(None, "Menu item deleted")
