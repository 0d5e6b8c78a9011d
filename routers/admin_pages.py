import math
from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from sqlalchemy.orm import Session

from auth import client_ip, get_optional_user
from database import get_db
from errors import ServiceError, ValidationError
from models import User
from routers.templating import csrf_protect, login_redirect, redirect, render
from services.admin_log_service import AdminLogService, format_log
from services.application_service import ApplicationService, format_application
from services.change_request_service import AmendmentService, ClosureService, format_request
from services.dashboard_service import get_dashboard_stats
from services.report_service import ReviewReportService
from services.review_service import ReviewService
from services.user_service import UserService, format_user

router = APIRouter(prefix="/admin", tags=["pages"], include_in_schema=False)

TABS = ("pending-applications", "all-applications", "recent-reviews", "amendments", "closures", "users", "logs")
LOGS_PER_PAGE = 25


def _guard(request: Request, user: Optional[User]):
    if user is None:
        return login_redirect(request)
    if not user.is_admin:
        return redirect("/", "Access denied. Admin privileges required.", "error", request)
    return None


@router.get("")
def admin_panel(
    request: Request,
    tab: str = Query("pending-applications"),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    denied = _guard(request, user)
    if denied is not None:
        return denied
    if tab not in TABS:
        tab = "pending-applications"

    context = {"tab": tab, "stats": get_dashboard_stats(db), "status": status or "", "search": search or ""}
    applications = ApplicationService(db)
    if tab == "pending-applications":
        context["applications"] = [format_application(a) for a in applications.get_pending_applications()]
    elif tab == "all-applications":
        context["applications"] = [format_application(a) for a in applications.list_applications(user, status)]
    elif tab == "recent-reviews":
        reviews = ReviewService(db)
        recent, _ = reviews.list_reviews(include_hidden=True, per_page=50)
        context["reported"] = ReviewReportService(db).get_pending_reports()
        context["reviews"] = reviews.format_many(recent)
    elif tab == "amendments":
        context["requests"] = [format_request(r) for r in AmendmentService(db).list_requests(user, status)]
    elif tab == "closures":
        context["requests"] = [format_request(r) for r in ClosureService(db).list_requests(user, status)]
    elif tab == "users":
        users, total = UserService(db).list_users(search, page, 50)
        context.update(users=[format_user(u) for u in users], page=page,
                       total_pages=max(1, math.ceil(total / 50)))
    elif tab == "logs":
        entries, total = AdminLogService(db).get_logs(limit=LOGS_PER_PAGE, offset=(page - 1) * LOGS_PER_PAGE)
        context.update(logs=[format_log(e) for e in entries], page=page,
                       total_pages=max(1, math.ceil(total / LOGS_PER_PAGE)))
    return render(request, "admin_panel.html", user, **context)


@router.post("", dependencies=[Depends(csrf_protect)])
def admin_action(
    request: Request,
    action: str = Form(...),
    target_id: int = Form(...),
    notes: str = Form(""),
    tab: str = Form("pending-applications"),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    denied = _guard(request, user)
    if denied is not None:
        return denied

    ip = client_ip(request)
    handlers = {
        "approve": lambda: ApplicationService(db).approve_application(user, target_id, notes, ip),
        "decline": lambda: ApplicationService(db).decline_application(user, target_id, notes, ip),
        "archive": lambda: ApplicationService(db).archive_application(user, target_id, ip),
        "delete_review": lambda: ReviewReportService(db).delete_reported_review(user, target_id, notes, ip),
        "dismiss_reports": lambda: ReviewReportService(db).dismiss_reports(user, target_id, notes, ip),
        "hide_review": lambda: ReviewService(db).set_hidden(user, target_id, True, notes, ip),
        "unhide_review": lambda: ReviewService(db).set_hidden(user, target_id, False, notes, ip),
        "approve_amendment": lambda: AmendmentService(db).approve(user, target_id, notes, ip),
        "reject_amendment": lambda: AmendmentService(db).reject(user, target_id, notes, ip),
        "approve_closure": lambda: ClosureService(db).approve(user, target_id, notes, ip),
        "reject_closure": lambda: ClosureService(db).reject(user, target_id, notes, ip),
        "convert_user": lambda: UserService(db).convert_to_admin(user, target_id, ip),
        "delete_user": lambda: UserService(db).admin_delete_user(user, target_id, ip),
    }
    messages = {
        "approve": "Application approved successfully! Stall is now live.",
        "decline": "Application declined and applicant has been notified.",
        "archive": "Application archived successfully.",
        "delete_review": "Review has been deleted and user has been notified.",
        "dismiss_reports": "Reports dismissed successfully.",
        "hide_review": "Review hidden.",
        "unhide_review": "Review restored.",
        "approve_amendment": "Amendment approved and applied to the stall.",
        "reject_amendment": "Amendment rejected.",
        "approve_closure": "Closure approved. The stall is no longer listed.",
        "reject_closure": "Closure request rejected.",
        "convert_user": "User converted to admin.",
        "delete_user": "User deleted.",
    }

    back = f"/admin?tab={tab if tab in TABS else 'pending-applications'}"
    try:
        if action not in handlers:
            raise ValidationError("Unknown action")
        handlers[action]()
    except ServiceError as e:
        return redirect(back, f"Error: {e.message}", "error", request)
    return redirect(back, messages[action], "success", request)
