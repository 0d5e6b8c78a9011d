"""Owner requests against an approved stall that need an admin decision.

Amendments change one of the stall fields owners cannot edit directly;
closures deactivate the stall. Both share the pending -> approved/declined
lifecycle of stall applications.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from email_service import email_service, notify
from errors import NotFoundError, PermissionDeniedError, ValidationError
from models import (
    STATUS_APPROVED,
    STATUS_DECLINED,
    STATUS_NAMES,
    STATUS_PENDING,
    AmendmentRequest,
    ClosureRequest,
    FoodStall,
    StallLocation,
    User,
)
from services.admin_log_service import AdminLogService

logger = logging.getLogger(__name__)

AMENDABLE_FIELDS = {
    "name": "Stall name",
    "description": "Description",
    "food_categories": "Food categories",
    "address": "Address",
}

STATUS_IDS = {name: status_id for status_id, name in STATUS_NAMES.items()}
STATUS_IDS["rejected"] = STATUS_DECLINED


def split_categories(value: str) -> List[str]:
    return [c.strip() for c in value.split(",") if c.strip()]


class ChangeRequestService:
    model = None
    id_attr = ""
    kind = ""

    def __init__(self, db: Session):
        self.db = db
        self.logs = AdminLogService(db)

    @property
    def id_column(self):
        return getattr(self.model, self.id_attr)

    def _query(self):
        return self.db.query(self.model).options(joinedload(self.model.stall).joinedload(FoodStall.owner))

    def get_request(self, request_id: int):
        request = self._query().filter(self.id_column == request_id).first()
        if request is None:
            raise NotFoundError(f"{self.kind.title()} request not found")
        return request

    def get_for_user(self, user: User, request_id: int):
        request = self.get_request(request_id)
        if request.user_id != user.user_id and not user.is_admin:
            raise PermissionDeniedError(f"You do not have access to this {self.kind} request")
        return request

    def list_requests(self, user: User, status: Optional[str] = None,
                      stall_id: Optional[int] = None) -> list:
        query = self._query()
        if not user.is_admin:
            query = query.filter(self.model.user_id == user.user_id)
        if stall_id is not None:
            query = query.filter(self.model.stall_id == stall_id)
        if status:
            if status not in STATUS_IDS:
                raise ValidationError(f"Unknown status '{status}'")
            query = query.filter(self.model.current_status_id == STATUS_IDS[status])
        return query.order_by(self.model.created_at.desc(), self.id_column.desc()).all()

    def pending_count(self) -> int:
        return self.db.query(self.model).filter(self.model.current_status_id == STATUS_PENDING).count()

    def _owned_active_stall(self, user: User, stall_id: int) -> FoodStall:
        stall = self.db.query(FoodStall).filter(FoodStall.stall_id == stall_id).first()
        if stall is None or not stall.is_active:
            raise NotFoundError("Stall not found")
        if stall.owner_id != user.user_id:
            raise PermissionDeniedError("You do not own this stall")
        return stall

    def _pending(self, request):
        if request.current_status_id != STATUS_PENDING:
            raise ValidationError(f"This {self.kind} request has already been reviewed")

    def _close(self, request, admin: User, status_id: int, notes: str) -> None:
        request.current_status_id = status_id
        request.reviewed_by = admin.user_id
        request.review_notes = notes or None
        request.reviewed_at = datetime.now()

    def _apply(self, request) -> None:
        raise NotImplementedError

    def approve(self, admin: User, request_id: int, notes: str = "", ip_address: Optional[str] = None):
        request = self.get_request(request_id)
        self._pending(request)
        try:
            self._apply(request)
            self._close(request, admin, STATUS_APPROVED, notes)
            self.logs.log_request_decision(admin.user_id, self.kind, request_id, True, notes or None, ip_address)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Approving %s request %s failed", self.kind, request_id)
            raise
        self._notify(request, True, notes)
        return self.get_request(request_id)

    def reject(self, admin: User, request_id: int, notes: str, ip_address: Optional[str] = None):
        notes = (notes or "").strip()
        if not notes:
            raise ValidationError("Please provide a reason for rejecting the request")
        request = self.get_request(request_id)
        self._pending(request)
        self._close(request, admin, STATUS_DECLINED, notes)
        self.logs.log_request_decision(admin.user_id, self.kind, request_id, False, notes, ip_address)
        self.db.commit()
        self._notify(request, False, notes)
        return self.get_request(request_id)

    def _notify(self, request, approved: bool, notes: str) -> None:
        stall = request.stall
        owner = stall.owner if stall else None
        if owner is not None:
            notify(email_service.send_request_decision_email, owner.email, owner.name, self.kind,
                   stall.name, approved, notes)


class AmendmentService(ChangeRequestService):
    model = AmendmentRequest
    id_attr = "amendment_id"
    kind = "amendment"

    @staticmethod
    def current_value(stall: FoodStall, field_name: str) -> Optional[str]:
        if field_name == "food_categories":
            return ", ".join(stall.food_categories or [])
        if field_name == "address":
            return stall.location.address if stall.location else None
        return getattr(stall, field_name)

    def create(self, user: User, stall_id: int, field_name: str, new_value: str,
               reason: str = "") -> AmendmentRequest:
        stall = self._owned_active_stall(user, stall_id)
        if field_name not in AMENDABLE_FIELDS:
            raise ValidationError("This field cannot be amended")
        new_value = (new_value or "").strip()

        errors = []
        if not new_value:
            errors.append("New value is required")
        elif field_name == "name" and len(new_value) < 2:
            errors.append("Stall name must be at least 2 characters")
        elif field_name == "description" and len(new_value) < 5:
            errors.append("Description must be at least 5 characters")
        elif field_name == "food_categories" and not split_categories(new_value):
            errors.append("Please provide at least one food category")
        if new_value and new_value == (self.current_value(stall, field_name) or ""):
            errors.append(f"{AMENDABLE_FIELDS[field_name]} is already set to that value")
        duplicate = (
            self.db.query(AmendmentRequest)
            .filter(AmendmentRequest.stall_id == stall.stall_id,
                    AmendmentRequest.field_name == field_name,
                    AmendmentRequest.current_status_id == STATUS_PENDING)
            .first()
        )
        if duplicate:
            errors.append(f"There is already a pending amendment for {AMENDABLE_FIELDS[field_name].lower()}")
        if errors:
            raise ValidationError(errors)

        amendment = AmendmentRequest(
            stall_id=stall.stall_id,
            user_id=user.user_id,
            field_name=field_name,
            old_value=self.current_value(stall, field_name),
            new_value=new_value,
            reason=(reason or "").strip() or None,
            current_status_id=STATUS_PENDING,
        )
        self.db.add(amendment)
        self.db.commit()
        return self.get_request(amendment.amendment_id)

    def _apply(self, amendment: AmendmentRequest) -> None:
        stall = amendment.stall
        if amendment.field_name == "food_categories":
            stall.food_categories = split_categories(amendment.new_value)
        elif amendment.field_name == "address":
            if stall.location is None:
                self.db.add(StallLocation(stall_id=stall.stall_id, address=amendment.new_value))
            else:
                stall.location.address = amendment.new_value
        else:
            setattr(stall, amendment.field_name, amendment.new_value)


class ClosureService(ChangeRequestService):
    model = ClosureRequest
    id_attr = "closure_id"
    kind = "closure"

    def create(self, user: User, stall_id: int, reason: str) -> ClosureRequest:
        stall = self._owned_active_stall(user, stall_id)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Please tell us why you want to close the stall")
        pending = (
            self.db.query(ClosureRequest)
            .filter(ClosureRequest.stall_id == stall.stall_id,
                    ClosureRequest.current_status_id == STATUS_PENDING)
            .first()
        )
        if pending:
            raise ValidationError("A closure request for this stall is already pending")

        closure = ClosureRequest(
            stall_id=stall.stall_id,
            user_id=user.user_id,
            reason=reason,
            current_status_id=STATUS_PENDING,
        )
        self.db.add(closure)
        self.db.commit()
        return self.get_request(closure.closure_id)

    def _apply(self, closure: ClosureRequest) -> None:
        closure.stall.is_active = False


def format_request(request) -> dict:
    stall = request.stall
    data = {
        "stall_id": request.stall_id,
        "stall_name": stall.name if stall else None,
        "user_id": request.user_id,
        "owner_name": stall.owner.name if stall and stall.owner else None,
        "reason": request.reason,
        "status": "rejected" if request.current_status_id == STATUS_DECLINED
        else STATUS_NAMES.get(request.current_status_id),
        "review_notes": request.review_notes,
        "reviewed_at": request.reviewed_at.isoformat() if request.reviewed_at else None,
        "created_at": request.created_at.isoformat() if request.created_at else None,
    }
    if isinstance(request, AmendmentRequest):
        data.update({
            "amendment_id": request.amendment_id,
            "field_name": request.field_name,
            "old_value": request.old_value,
            "new_value": request.new_value,
        })
    else:
        data["closure_id"] = request.closure_id
    return data
