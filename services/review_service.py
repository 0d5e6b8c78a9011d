import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

import config
from errors import NotFoundError, PermissionDeniedError, ValidationError
from models import FoodStall, Review, ReviewModeration, ReviewReaction, User
from services import cleanup
from services.admin_log_service import AdminLogService

logger = logging.getLogger(__name__)

REACTION_TYPES = ("like", "dislike")


def format_review(review: Review, counts: Optional[Dict[str, int]] = None,
                  user_reaction: Optional[str] = None) -> dict:
    counts = counts or {}
    author = "Anonymous" if review.is_anonymous else (review.user.name if review.user else "Unknown")
    return {
        "review_id": review.review_id,
        "stall_id": review.stall_id,
        "stall_name": review.stall.name if review.stall else None,
        "user_id": review.user_id,
        "author": author,
        "rating": review.rating,
        "title": review.title,
        "comment": review.comment,
        "is_anonymous": review.is_anonymous,
        "is_hidden": review.is_hidden,
        "likes": counts.get("like", 0),
        "dislikes": counts.get("dislike", 0),
        "user_reaction": user_reaction,
        "created_at": review.created_at.isoformat() if review.created_at else None,
        "updated_at": review.updated_at.isoformat() if review.updated_at else None,
    }


class ReviewService:
    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(Review).options(joinedload(Review.user), joinedload(Review.stall))

    def get_review(self, review_id: int) -> Review:
        review = self._query().filter(Review.review_id == review_id).first()
        if review is None:
            raise NotFoundError("Review not found")
        return review

    def list_reviews(self, stall_id: Optional[int] = None, user_id: Optional[int] = None,
                     include_hidden: bool = False, page: int = 1,
                     per_page: int = config.ITEMS_PER_PAGE) -> Tuple[List[Review], int]:
        query = self.db.query(Review)
        if stall_id is not None:
            query = query.filter(Review.stall_id == stall_id)
        if user_id is not None:
            query = query.filter(Review.user_id == user_id)
        if not include_hidden:
            query = query.filter(Review.is_hidden.is_(False))
        total = query.count()
        reviews = (
            query.options(joinedload(Review.user), joinedload(Review.stall))
            .order_by(Review.created_at.desc(), Review.review_id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return reviews, total

    def recent_reviews(self, limit: int = 6) -> List[Review]:
        return (
            self._query()
            .join(FoodStall, FoodStall.stall_id == Review.stall_id)
            .filter(Review.is_hidden.is_(False), FoodStall.is_active.is_(True))
            .order_by(Review.created_at.desc(), Review.review_id.desc())
            .limit(limit)
            .all()
        )

    def get_user_review(self, user_id: int, stall_id: int) -> Optional[Review]:
        return (
            self.db.query(Review)
            .filter(Review.user_id == user_id, Review.stall_id == stall_id)
            .first()
        )

    def recalculate_stall_rating(self, stall_id: int) -> None:
        """Refresh the stall's cached rating from its visible reviews; no commit"""
        self.db.flush()
        average, count = (
            self.db.query(func.avg(Review.rating), func.count(Review.review_id))
            .filter(Review.stall_id == stall_id, Review.is_hidden.is_(False))
            .one()
        )
        stall = self.db.query(FoodStall).filter(FoodStall.stall_id == stall_id).first()
        if stall is not None:
            stall.average_rating = round(float(average or 0), 2)
            stall.total_reviews = count or 0

    def _validate(self, rating, comment):
        errors = []
        if rating is not None and not 1 <= int(rating) <= 5:
            errors.append("Rating must be between 1 and 5")
        if comment is not None and len(comment.strip()) > 2000:
            errors.append("Review must be 2000 characters or less")
        if errors:
            raise ValidationError(errors)

    def create_review(self, user: User, stall_id: int, rating: int, comment: str = "",
                      title: Optional[str] = None, is_anonymous: bool = False) -> Review:
        stall = self.db.query(FoodStall).filter(FoodStall.stall_id == stall_id).first()
        if stall is None or not stall.is_active:
            raise NotFoundError("Stall not found")
        self._validate(rating, comment)
        if self.get_user_review(user.user_id, stall_id):
            raise ValidationError("You have already reviewed this stall")

        try:
            review = Review(
                stall_id=stall_id,
                user_id=user.user_id,
                rating=int(rating),
                title=(title or "").strip() or None,
                comment=(comment or "").strip(),
                is_anonymous=bool(is_anonymous),
            )
            self.db.add(review)
            self.recalculate_stall_rating(stall_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Creating review for stall %s failed", stall_id)
            raise
        return self.get_review(review.review_id)

    def update_review(self, user: User, review_id: int, **changes) -> Review:
        review = self.get_review(review_id)
        if review.user_id != user.user_id:
            raise PermissionDeniedError("You can only edit your own reviews")
        self._validate(changes.get("rating"), changes.get("comment"))

        try:
            if changes.get("rating") is not None:
                review.rating = int(changes["rating"])
            if changes.get("title") is not None:
                review.title = changes["title"].strip() or None
            if changes.get("comment") is not None:
                review.comment = changes["comment"].strip()
            if changes.get("is_anonymous") is not None:
                review.is_anonymous = bool(changes["is_anonymous"])
            self.recalculate_stall_rating(review.stall_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self.get_review(review_id)

    def delete_review(self, user: User, review_id: int) -> None:
        review = self.get_review(review_id)
        if review.user_id != user.user_id and not user.is_admin:
            raise PermissionDeniedError("You can only delete your own reviews")

        stall_id = review.stall_id
        try:
            cleanup.delete_reviews(self.db, [review_id])
            self.recalculate_stall_rating(stall_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Deleting review %s failed", review_id)
            raise

    # Reactions

    def react(self, user: User, review_id: int, reaction_type: str) -> dict:
        """Like/dislike a review; repeating a reaction removes it"""
        if reaction_type not in REACTION_TYPES:
            raise ValidationError("Invalid reaction type")
        review = self.get_review(review_id)

        existing = (
            self.db.query(ReviewReaction)
            .filter(ReviewReaction.review_id == review.review_id, ReviewReaction.user_id == user.user_id)
            .first()
        )
        if existing is None:
            self.db.add(ReviewReaction(review_id=review.review_id, user_id=user.user_id,
                                       reaction_type=reaction_type))
            action, current = "added", reaction_type
        elif existing.reaction_type == reaction_type:
            self.db.delete(existing)
            action, current = "removed", None
        else:
            existing.reaction_type = reaction_type
            action, current = "switched", reaction_type
        self.db.commit()

        counts = self.reaction_counts([review.review_id]).get(review.review_id, {})
        return {
            "action": action,
            "user_reaction": current,
            "likes": counts.get("like", 0),
            "dislikes": counts.get("dislike", 0),
        }

    def reaction_counts(self, review_ids: Iterable[int]) -> Dict[int, Dict[str, int]]:
        review_ids = list(review_ids)
        counts: Dict[int, Dict[str, int]] = {}
        if not review_ids:
            return counts
        rows = (
            self.db.query(ReviewReaction.review_id, ReviewReaction.reaction_type, func.count())
            .filter(ReviewReaction.review_id.in_(review_ids))
            .group_by(ReviewReaction.review_id, ReviewReaction.reaction_type)
        )
        for review_id, reaction_type, count in rows:
            counts.setdefault(review_id, {})[reaction_type] = count
        return counts

    def user_reactions(self, user_id: Optional[int], review_ids: Iterable[int]) -> Dict[int, str]:
        review_ids = list(review_ids)
        if not user_id or not review_ids:
            return {}
        rows = (
            self.db.query(ReviewReaction.review_id, ReviewReaction.reaction_type)
            .filter(ReviewReaction.user_id == user_id, ReviewReaction.review_id.in_(review_ids))
        )
        return {review_id: reaction_type for review_id, reaction_type in rows}

    def format_many(self, reviews: List[Review], viewer_id: Optional[int] = None) -> List[dict]:
        ids = [r.review_id for r in reviews]
        counts = self.reaction_counts(ids)
        mine = self.user_reactions(viewer_id, ids)
        return [format_review(r, counts.get(r.review_id), mine.get(r.review_id)) for r in reviews]

    # Moderation

    def set_hidden(self, admin: User, review_id: int, hidden: bool, reason: str = "",
                   ip_address: Optional[str] = None) -> Review:
        review = self.get_review(review_id)
        if review.is_hidden == hidden:
            raise ValidationError("Review is already hidden" if hidden else "Review is not hidden")
        try:
            review.is_hidden = hidden
            self.db.add(ReviewModeration(review_id=review.review_id, moderator_id=admin.user_id,
                                         reason=reason or None, is_hidden=hidden))
            self.recalculate_stall_rating(review.stall_id)
            AdminLogService(self.db).log_review_visibility(admin.user_id, review.review_id, hidden,
                                                           reason or None, ip_address)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self.get_review(review_id)
