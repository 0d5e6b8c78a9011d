from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth import get_current_user, get_optional_user, get_verified_user
from database import get_db
from models import User
from routers.common import Pagination, paginated, success
from schemas import ReactionPayload, ReportPayload, ReviewCreate, ReviewUpdate
from services.report_service import ReviewReportService
from services.review_service import ReviewService

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.get("/")
def list_reviews(
    stall_id: Optional[int] = Query(None),
    user_id: Optional[int] = Query(None),
    pagination: Pagination = Depends(),
    viewer: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    service = ReviewService(db)
    # Authors and admins also see hidden reviews
    include_hidden = viewer is not None and (viewer.is_admin or (user_id is not None and user_id == viewer.user_id))
    reviews, total = service.list_reviews(stall_id, user_id, include_hidden, pagination.page, pagination.per_page)
    data = service.format_many(reviews, viewer.user_id if viewer else None)
    return paginated(data, total, pagination.page, pagination.per_page)


@router.post("/react")
def react(payload: ReactionPayload, current_user: User = Depends(get_current_user),
          db: Session = Depends(get_db)):
    result = ReviewService(db).react(current_user, payload.review_id, payload.reaction_type)
    return success(result, f"Reaction {result['action']}")


@router.post("/report")
def report(payload: ReportPayload, current_user: User = Depends(get_current_user),
           db: Session = Depends(get_db)):
    ReviewReportService(db).report_review(current_user, payload.review_id, payload.reason, payload.custom_reason)
    return success(None, "Thank you. Our moderators will review this report.", status_code=201)


@router.get("/{review_id}")
def get_review(review_id: int, viewer: Optional[User] = Depends(get_optional_user),
               db: Session = Depends(get_db)):
    service = ReviewService(db)
    review = service.get_review(review_id)
    return success(service.format_many([review], viewer.user_id if viewer else None)[0])


@router.post("/")
def create_review(payload: ReviewCreate, current_user: User = Depends(get_verified_user),
                  db: Session = Depends(get_db)):
    service = ReviewService(db)
    review = service.create_review(current_user, payload.stall_id, payload.rating, payload.comment,
                                   payload.title, payload.is_anonymous)
    return success(service.format_many([review], current_user.user_id)[0], "Review submitted successfully",
                   status_code=201)


@router.put("/{review_id}")
def update_review(review_id: int, payload: ReviewUpdate, current_user: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    service = ReviewService(db)
    review = service.update_review(current_user, review_id, **payload.model_dump(exclude_unset=True))
    return success(service.format_many([review], current_user.user_id)[0], "Review updated successfully")


@router.delete("/{review_id}")
def delete_review(review_id: int, current_user: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    ReviewService(db).delete_review(current_user, review_id)
    return success(None, "Review deleted successfully")
