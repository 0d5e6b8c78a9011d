import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from email_service import email_service, notify
from errors import NotFoundError, ValidationError
from models import Review, ReviewModeration, ReviewReaction, ReviewReport, User
from services.admin_log_service import AdminLogService
from services.review_service import ReviewService

logger = logging.getLogger(__name__)

REPORT_REASONS = ("spam", "offensive", "inappropriate", "misleading", "other")


class ReviewReportService:
    def __init__(self, db: Session):
        self.db = db
        self.reviews = ReviewService(db)

    def report_review(self, reporter: User, review_id: int, reason: str,
                      custom_reason: Optional[str] = None) -> ReviewReport:
        review = self.reviews.get_review(review_id)
        if review.user_id == reporter.user_id:
            raise ValidationError("You cannot report your own review")
        if reason not in REPORT_REASONS:
            raise ValidationError("Please choose a valid report reason")
        custom_reason = (custom_reason or "").strip() or None
        if reason == "other" and not custom_reason:
            raise ValidationError("Please describe why you are reporting this review")

        report = (
            self.db.query(ReviewReport)
            .filter(ReviewReport.review_id == review_id, ReviewReport.reporter_id == reporter.user_id)
            .first()
        )
        if report is not None and report.status == "pending":
            raise ValidationError("You have already reported this review")

        if report is None:
            report = ReviewReport(review_id=review_id, reporter_id=reporter.user_id)
            self.db.add(report)
        # A handled report from the same user is reopened
        report.status = "pending"
        report.report_reason = reason
        report.custom_reason = custom_reason
        report.reviewed_by = None
        report.review_notes = None
        report.reviewed_at = None
        report.created_at = datetime.now()
        self.db.commit()
        return report

    def pending_count(self) -> int:
        return self.db.query(ReviewReport).filter(ReviewReport.status == "pending").count()

    def get_pending_reports(self) -> List[dict]:
        """Pending reports grouped by the review they target"""
        reports = (
            self.db.query(ReviewReport)
            .options(joinedload(ReviewReport.reporter))
            .filter(ReviewReport.status == "pending")
            .order_by(ReviewReport.created_at.desc())
            .all()
        )
        grouped = {}
        for report in reports:
            grouped.setdefault(report.review_id, []).append(report)
        if not grouped:
            return []

        reviews = {
            r.review_id: r
            for r in self.db.query(Review)
            .options(joinedload(Review.user), joinedload(Review.stall))
            .filter(Review.review_id.in_(list(grouped)))
        }
        result = []
        for review_id, items in grouped.items():
            review = reviews.get(review_id)
            if review is None:
                continue
            result.append({
                "review_id": review.review_id,
                "rating": review.rating,
                "title": review.title,
                "comment": review.comment,
                "is_hidden": review.is_hidden,
                "reviewer_id": review.user_id,
                "reviewer_name": review.user.name if review.user else None,
                "reviewer_email": review.user.email if review.user else None,
                "stall_id": review.stall_id,
                "stall_name": review.stall.name if review.stall else None,
                "report_count": len(items),
                "latest_report": items[0].created_at.isoformat() if items[0].created_at else None,
                "reports": [
                    {
                        "report_id": item.report_id,
                        "reporter_name": item.reporter.name if item.reporter else None,
                        "reason": item.report_reason,
                        "custom_reason": item.custom_reason,
                        "created_at": item.created_at.isoformat() if item.created_at else None,
                    }
                    for item in items
                ],
            })
        result.sort(key=lambda r: r["report_count"], reverse=True)
        return result

    def _close_reports(self, review_id: int, admin_id: int, status: str, notes: str) -> int:
        return (
            self.db.query(ReviewReport)
            .filter(ReviewReport.review_id == review_id, ReviewReport.status == "pending")
            .update({
                ReviewReport.status: status,
                ReviewReport.reviewed_by: admin_id,
                ReviewReport.review_notes: notes,
                ReviewReport.reviewed_at: datetime.now(),
            }, synchronize_session=False)
        )

    def delete_reported_review(self, admin: User, review_id: int, reason: str,
                               ip_address: Optional[str] = None) -> None:
        """Remove a review after moderation; its reports are kept as 'reviewed'"""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Please provide a reason for deleting the review")

        review = self.reviews.get_review(review_id)
        author_email = review.user.email if review.user else None
        author_name = review.user.name if review.user else ""
        stall_name = review.stall.name if review.stall else ""
        stall_id, rating = review.stall_id, review.rating

        try:
            self._close_reports(review_id, admin.user_id, "reviewed", reason)
            self.db.add(ReviewModeration(review_id=review_id, moderator_id=admin.user_id,
                                         reason=reason, is_hidden=True))
            self.db.query(ReviewReaction).filter(ReviewReaction.review_id == review_id).delete(
                synchronize_session=False)
            self.db.query(Review).filter(Review.review_id == review_id).delete(synchronize_session=False)
            self.reviews.recalculate_stall_rating(stall_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Deleting reported review %s failed", review_id)
            raise

        AdminLogService(self.db).log_review_deletion(admin.user_id, review_id, stall_name, reason, ip_address)
        self.db.commit()

        if author_email:
            notify(email_service.send_review_removed_email, author_email, author_name,
                   stall_name, rating, reason)

    def dismiss_reports(self, admin: User, review_id: int, notes: str = "",
                        ip_address: Optional[str] = None) -> int:
        notes = (notes or "").strip() or "No violation found"
        dismissed = self._close_reports(review_id, admin.user_id, "dismissed", notes)
        if not dismissed:
            self.db.rollback()
            raise NotFoundError("No pending reports for this review")
        AdminLogService(self.db).log_report_dismissal(admin.user_id, review_id, notes, ip_address)
        self.db.commit()
        return dismissed
