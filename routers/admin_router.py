from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from auth import client_ip, get_admin_user
from database import get_db
from models import User
from routers.common import Pagination, paginated, success
from schemas import ModerationPayload
from services.admin_log_service import AdminLogService, format_log
from services.dashboard_service import get_dashboard_stats
from services.report_service import ReviewReportService
from services.review_service import ReviewService, format_review
from services.user_service import UserService, format_user

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(get_admin_user)])


@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db)):
    return success(get_dashboard_stats(db))


@router.get("/logs")
def logs(entity: Optional[str] = Query(None), admin_id: Optional[int] = Query(None),
         pagination: Pagination = Depends(), db: Session = Depends(get_db)):
    entries, total = AdminLogService(db).get_logs(
        entity, admin_id, pagination.per_page, (pagination.page - 1) * pagination.per_page
    )
    return paginated([format_log(e) for e in entries], total, pagination.page, pagination.per_page)


@router.get("/reports")
def reports(db: Session = Depends(get_db)):
    return success(ReviewReportService(db).get_pending_reports())


@router.post("/reports/{review_id}/delete")
def delete_reported_review(review_id: int, payload: ModerationPayload, request: Request,
                           admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    ReviewReportService(db).delete_reported_review(admin, review_id, payload.reason, client_ip(request))
    return success(None, "Review has been deleted and user has been notified.")


@router.post("/reports/{review_id}/dismiss")
def dismiss_reports(review_id: int, request: Request, payload: Optional[ModerationPayload] = None,
                    admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    count = ReviewReportService(db).dismiss_reports(admin, review_id, payload.reason if payload else "",
                                                    client_ip(request))
    return success({"dismissed": count}, "Reports dismissed successfully.")


@router.post("/reviews/{review_id}/hide")
def hide_review(review_id: int, request: Request, payload: Optional[ModerationPayload] = None,
                admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    review = ReviewService(db).set_hidden(admin, review_id, True, payload.reason if payload else "",
                                          client_ip(request))
    return success(format_review(review), "Review hidden")


@router.post("/reviews/{review_id}/unhide")
def unhide_review(review_id: int, request: Request, payload: Optional[ModerationPayload] = None,
                  admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    review = ReviewService(db).set_hidden(admin, review_id, False, payload.reason if payload else "",
                                          client_ip(request))
    return success(format_review(review), "Review restored")


@router.post("/users/{user_id}/convert")
def convert_user(user_id: int, request: Request, admin: User = Depends(get_admin_user),
                 db: Session = Depends(get_db)):
    user = UserService(db).convert_to_admin(admin, user_id, client_ip(request))
    return success(format_user(user), f"{user.name} is now an admin")
