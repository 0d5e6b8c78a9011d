"""Application level cascades.

Rows are removed children first so that every statement is valid with
foreign keys enforced. Nothing here commits; callers own the transaction.
Each helper returns the stored file paths that became orphaned so they can
be removed once the transaction has committed.
"""
from typing import List

from sqlalchemy.orm import Session

from models import (
    AmendmentRequest,
    Application,
    ApplicationReview,
    ClosureRequest,
    FoodStall,
    MenuItem,
    ResetToken,
    Review,
    ReviewModeration,
    ReviewReaction,
    ReviewReport,
    SessionToken,
    StallLocation,
    User,
)


def delete_reviews(db: Session, review_ids: List[int]) -> None:
    if not review_ids:
        return
    db.query(ReviewReaction).filter(ReviewReaction.review_id.in_(review_ids)).delete(synchronize_session=False)
    db.query(ReviewReport).filter(ReviewReport.review_id.in_(review_ids)).delete(synchronize_session=False)
    db.query(ReviewModeration).filter(ReviewModeration.review_id.in_(review_ids)).delete(synchronize_session=False)
    db.query(Review).filter(Review.review_id.in_(review_ids)).delete(synchronize_session=False)


def delete_applications(db: Session, applications: List[Application]) -> List[str]:
    if not applications:
        return []
    ids = [a.application_id for a in applications]
    paths = [p for a in applications for p in a.document_paths if p]
    db.query(ApplicationReview).filter(ApplicationReview.application_id.in_(ids)).delete(synchronize_session=False)
    db.query(Application).filter(Application.application_id.in_(ids)).delete(synchronize_session=False)
    return paths


def delete_stalls(db: Session, stall_ids: List[int]) -> List[str]:
    if not stall_ids:
        return []
    review_ids = [r for (r,) in db.query(Review.review_id).filter(Review.stall_id.in_(stall_ids))]
    delete_reviews(db, review_ids)

    paths = [p for (p,) in db.query(MenuItem.image_path).filter(MenuItem.stall_id.in_(stall_ids)) if p]
    paths += [p for (p,) in db.query(FoodStall.logo_path).filter(FoodStall.stall_id.in_(stall_ids)) if p]

    db.query(StallLocation).filter(StallLocation.stall_id.in_(stall_ids)).delete(synchronize_session=False)
    db.query(MenuItem).filter(MenuItem.stall_id.in_(stall_ids)).delete(synchronize_session=False)
    db.query(AmendmentRequest).filter(AmendmentRequest.stall_id.in_(stall_ids)).delete(synchronize_session=False)
    db.query(ClosureRequest).filter(ClosureRequest.stall_id.in_(stall_ids)).delete(synchronize_session=False)
    db.query(FoodStall).filter(FoodStall.stall_id.in_(stall_ids)).delete(synchronize_session=False)
    return paths


def delete_user_content(db: Session, user: User) -> List[str]:
    """Remove every row that references `user`, then the user itself"""
    user_id = user.user_id

    # Activity on other people's reviews
    db.query(ReviewReaction).filter(ReviewReaction.user_id == user_id).delete(synchronize_session=False)
    db.query(ReviewReport).filter(ReviewReport.reporter_id == user_id).delete(synchronize_session=False)

    review_ids = [r for (r,) in db.query(Review.review_id).filter(Review.user_id == user_id)]
    delete_reviews(db, review_ids)

    applications = db.query(Application).filter(Application.user_id == user_id).all()
    paths = delete_applications(db, applications)

    db.query(AmendmentRequest).filter(AmendmentRequest.user_id == user_id).delete(synchronize_session=False)
    db.query(ClosureRequest).filter(ClosureRequest.user_id == user_id).delete(synchronize_session=False)

    stall_ids = [s for (s,) in db.query(FoodStall.stall_id).filter(FoodStall.owner_id == user_id)]
    paths += delete_stalls(db, stall_ids)

    db.query(SessionToken).filter(SessionToken.user_id == user_id).delete(synchronize_session=False)
    db.query(ResetToken).filter(ResetToken.user_id == user_id).delete(synchronize_session=False)

    if user.profile_image:
        paths.append(user.profile_image)
    db.query(User).filter(User.user_id == user_id).delete(synchronize_session=False)
    return paths
