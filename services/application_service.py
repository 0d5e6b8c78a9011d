import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import UploadFile
from sqlalchemy.orm import Session, joinedload

import config
import local_storage
from email_service import email_service, notify
from errors import NotFoundError, PermissionDeniedError, ValidationError
from models import (
    STATUS_APPROVED,
    STATUS_ARCHIVED,
    STATUS_NAMES,
    STATUS_PENDING,
    TYPE_OWNER,
    Application,
    ApplicationReview,
    FoodStall,
    StallLocation,
    User,
)
from services.admin_log_service import AdminLogService

logger = logging.getLogger(__name__)

# form field -> (column, label, allowed types, must be an image)
DOCUMENT_FIELDS = {
    "bir_registration": ("bir_registration_path", "BIR Registration", config.ALLOWED_DOCUMENT_TYPES, False),
    "business_permit": ("business_permit_path", "Business Permit", config.ALLOWED_DOCUMENT_TYPES, False),
    "dti_sec": ("dti_sec_path", "DTI/SEC Registration", config.ALLOWED_DOCUMENT_TYPES, False),
    "stall_logo": ("stall_logo_path", "Stall Logo", config.ALLOWED_IMAGE_TYPES, True),
}

STATUS_IDS = {name: status_id for status_id, name in STATUS_NAMES.items()}


def format_application(application: Application, include_documents: bool = True) -> dict:
    data = {
        "application_id": application.application_id,
        "user_id": application.user_id,
        "applicant_name": application.user.name if application.user else None,
        "applicant_email": application.user.email if application.user else None,
        "stall_name": application.stall_name,
        "stall_description": application.stall_description,
        "location": application.location,
        "map_x": application.map_x,
        "map_y": application.map_y,
        "food_categories": list(application.food_categories or []),
        "status": STATUS_NAMES.get(application.current_status_id),
        "created_at": application.created_at.isoformat() if application.created_at else None,
        "updated_at": application.updated_at.isoformat() if application.updated_at else None,
    }
    if include_documents:
        data["documents"] = {
            field: local_storage.upload_url(getattr(application, column))
            for field, (column, _, _, _) in DOCUMENT_FIELDS.items()
        }
    return data


def validate_application_fields(stall_name: Optional[str], description: Optional[str],
                                location: Optional[str], categories: Optional[List[str]]) -> List[str]:
    errors = []
    if len((stall_name or "").strip()) < 2:
        errors.append("Stall name must be at least 2 characters")
    if len((description or "").strip()) < 5:
        errors.append("Description must be at least 5 characters")
    if not (location or "").strip():
        errors.append("Location is required")
    if not [c for c in (categories or []) if c.strip()]:
        errors.append("Please select at least one food category")
    return errors


class ApplicationService:
    """Stall registration applications and the admin review workflow"""

    def __init__(self, db: Session):
        self.db = db
        self.logs = AdminLogService(db)

    def get_application(self, application_id: int) -> Application:
        application = (
            self.db.query(Application)
            .options(joinedload(Application.user))
            .filter(Application.application_id == application_id)
            .first()
        )
        if application is None:
            raise NotFoundError("Application not found")
        return application

    def get_for_user(self, user: User, application_id: int) -> Application:
        application = self.get_application(application_id)
        if application.user_id != user.user_id and not user.is_admin:
            raise PermissionDeniedError("You do not have access to this application")
        return application

    def list_applications(self, user: User, status: Optional[str] = None) -> List[Application]:
        query = self.db.query(Application).options(joinedload(Application.user))
        if not user.is_admin:
            query = query.filter(Application.user_id == user.user_id)
        if status:
            if status not in STATUS_IDS:
                raise ValidationError(f"Unknown status '{status}'")
            query = query.filter(Application.current_status_id == STATUS_IDS[status])
        return query.order_by(Application.created_at.desc(), Application.application_id.desc()).all()

    def get_pending_applications(self) -> List[Application]:
        return (
            self.db.query(Application)
            .options(joinedload(Application.user))
            .filter(Application.current_status_id == STATUS_PENDING)
            .order_by(Application.created_at.asc())
            .all()
        )

    def get_pending_for_user(self, user_id: int) -> Optional[Application]:
        return (
            self.db.query(Application)
            .filter(Application.user_id == user_id, Application.current_status_id == STATUS_PENDING)
            .first()
        )

    # Submission

    async def submit_application(self, user: User, stall_name: str, description: str, location: str,
                                 categories: List[str], documents: Dict[str, Optional[UploadFile]],
                                 map_x: Optional[float] = None, map_y: Optional[float] = None) -> Application:
        if user.type_name != TYPE_OWNER:
            raise PermissionDeniedError("Only food stall owners can register a stall")
        if self.get_pending_for_user(user.user_id):
            raise ValidationError("You already have a pending application. Please wait for it to be reviewed.")

        categories = [c.strip() for c in categories or [] if c.strip()]
        errors = validate_application_fields(stall_name, description, location, categories)
        for field, (_, label, _, _) in DOCUMENT_FIELDS.items():
            if not local_storage.has_file(documents.get(field)):
                errors.append(f"{label} is required")
        if errors:
            raise ValidationError(errors)

        saved = {}
        try:
            for field, (column, label, allowed, require_image) in DOCUMENT_FIELDS.items():
                saved[column] = await local_storage.save_upload(
                    documents[field], f"applications/{user.user_id}", label, allowed, require_image
                )

            application = Application(
                user_id=user.user_id,
                stall_name=stall_name.strip(),
                stall_description=description.strip(),
                location=location.strip(),
                map_x=map_x,
                map_y=map_y,
                food_categories=categories,
                current_status_id=STATUS_PENDING,
                **saved,
            )
            self.db.add(application)
            self.db.commit()
        except Exception:
            self.db.rollback()
            local_storage.remove_files(saved.values())
            raise

        self.db.refresh(application)
        logger.info("Application %s submitted by user %s", application.application_id, user.user_id)
        return application

    def update_application(self, user: User, application_id: int, **changes) -> Application:
        application = self.get_application(application_id)
        if application.user_id != user.user_id:
            raise PermissionDeniedError("You can only edit your own applications")
        if application.current_status_id != STATUS_PENDING:
            raise ValidationError("Only pending applications can be edited")

        merged = {
            "stall_name": application.stall_name,
            "stall_description": application.stall_description,
            "location": application.location,
            "food_categories": application.food_categories,
        }
        merged.update({k: v for k, v in changes.items() if v is not None and k in merged})
        errors = validate_application_fields(merged["stall_name"], merged["stall_description"],
                                             merged["location"], merged["food_categories"])
        if errors:
            raise ValidationError(errors)

        for field, value in merged.items():
            setattr(application, field, value.strip() if isinstance(value, str) else list(value))
        for field in ("map_x", "map_y"):
            if changes.get(field) is not None:
                setattr(application, field, changes[field])
        self.db.commit()
        self.db.refresh(application)
        return application

    # Review workflow

    def _create_stall(self, application: Application) -> FoodStall:
        stall = FoodStall(
            owner_id=application.user_id,
            name=application.stall_name,
            description=application.stall_description,
            logo_path=application.stall_logo_path,
            food_categories=list(application.food_categories or []),
            is_active=True,
        )
        self.db.add(stall)
        self.db.flush()
        return stall

    def _create_location(self, stall: FoodStall, application: Application) -> None:
        self.db.add(StallLocation(
            stall_id=stall.stall_id,
            address=application.location,
            latitude=application.map_x,
            longitude=application.map_y,
        ))

    def _record_review(self, application: Application, admin: User, status_id: int, notes: str) -> None:
        self.db.add(ApplicationReview(
            application_id=application.application_id,
            reviewer_id=admin.user_id,
            status_id=status_id,
            notes=notes or None,
        ))

    def _set_status(self, application: Application, status_id: int) -> None:
        application.current_status_id = status_id

    def _touch_user(self, user_id: int) -> None:
        self.db.query(User).filter(User.user_id == user_id).update(
            {User.updated_at: datetime.now()}, synchronize_session=False
        )

    def approve_application(self, admin: User, application_id: int, notes: str = "",
                            ip_address: Optional[str] = None) -> FoodStall:
        """Create the stall described by a pending application.

        Stall, location, review record, status and applicant timestamp are
        written in one transaction; any failure leaves none of them behind.
        The audit log and the applicant's email follow the commit.
        """
        application = self.get_application(application_id)
        if application.current_status_id != STATUS_PENDING:
            raise ValidationError("Only pending applications can be approved")

        try:
            stall = self._create_stall(application)
            if application.location:
                self._create_location(stall, application)
            self._record_review(application, admin, STATUS_APPROVED, notes)
            self._set_status(application, STATUS_APPROVED)
            self._touch_user(application.user_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Approving application %s failed", application_id)
            raise

        self.logs.log_application_approval(admin.user_id, application.application_id,
                                           application.stall_name, notes, ip_address)
        self.db.commit()

        applicant = application.user
        if applicant is not None:
            notify(email_service.send_application_approval_email, applicant.email, applicant.name,
                   application.stall_name, notes)
        self.db.refresh(stall)
        return stall

    def decline_application(self, admin: User, application_id: int, notes: str = "",
                            ip_address: Optional[str] = None) -> None:
        """Delete an application together with its uploaded documents.

        Files are moved aside before the row is deleted and only purged once
        the transaction commits, so a failure restores both.
        """
        notes = (notes or "").strip()
        if not notes:
            raise ValidationError("Please provide a reason for declining the application")
        application = self.get_application(application_id)
        if application.current_status_id == STATUS_APPROVED:
            raise ValidationError("Approved applications cannot be declined")

        applicant = application.user
        applicant_email = applicant.email if applicant else None
        applicant_name = applicant.name if applicant else ""
        stall_name = application.stall_name

        staged = local_storage.stage_removal(application.document_paths)
        try:
            self.db.query(ApplicationReview).filter(
                ApplicationReview.application_id == application_id
            ).delete(synchronize_session=False)
            self.db.delete(application)
            self.db.flush()
            self.logs.log_application_decline(admin.user_id, application_id, stall_name, notes, ip_address)
            self.db.commit()
        except Exception:
            self.db.rollback()
            local_storage.restore_staged(staged)
            logger.exception("Declining application %s failed", application_id)
            raise

        local_storage.purge_staged(staged)
        if applicant_email:
            notify(email_service.send_application_decline_email, applicant_email, applicant_name,
                   stall_name, notes)

    def archive_application(self, admin: User, application_id: int,
                            ip_address: Optional[str] = None) -> Application:
        application = self.get_application(application_id)
        if application.current_status_id == STATUS_ARCHIVED:
            raise ValidationError("Application is already archived")
        self._set_status(application, STATUS_ARCHIVED)
        self.logs.log_application_archive(admin.user_id, application.application_id,
                                          application.stall_name, ip_address)
        self.db.commit()
        self.db.refresh(application)
        return application
