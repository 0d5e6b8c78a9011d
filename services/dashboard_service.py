from sqlalchemy.orm import Session

from models import STATUS_PENDING, Application, FoodStall, Review, User
from services.change_request_service import AmendmentService, ClosureService
from services.report_service import ReviewReportService


def get_dashboard_stats(db: Session) -> dict:
    return {
        "total_users": db.query(User).count(),
        "active_stalls": db.query(FoodStall).filter(FoodStall.is_active.is_(True)).count(),
        "total_reviews": db.query(Review).count(),
        "pending_applications": db.query(Application)
        .filter(Application.current_status_id == STATUS_PENDING)
        .count(),
        "pending_amendments": AmendmentService(db).pending_count(),
        "pending_closures": ClosureService(db).pending_count(),
        "pending_reports": ReviewReportService(db).pending_count(),
    }
