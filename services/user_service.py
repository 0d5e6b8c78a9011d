import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

import config
import local_storage
from auth import generate_token, generate_verification_token, get_password_hash, validate_password, verify_password
from email_service import email_service, notify
from errors import AuthenticationError, NotFoundError, PermissionDeniedError, ServiceError, ValidationError
from models import (
    TYPE_ADMIN,
    TYPE_ENTHUSIAST,
    TYPE_OWNER,
    Application,
    FoodStall,
    ResetToken,
    Review,
    User,
    UserType,
)
from services import cleanup
from services.admin_log_service import AdminLogService
from services.review_service import ReviewService

logger = logging.getLogger(__name__)

ACCOUNT_TYPES = {
    "enthusiast": TYPE_ENTHUSIAST,
    "owner": TYPE_OWNER,
}


def is_valid_email(email: str) -> bool:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def get_user_type(db: Session, type_name: str) -> UserType:
    user_type = db.query(UserType).filter(UserType.type_name == type_name).first()
    if user_type is None:
        raise ServiceError(f"User type '{type_name}' is not configured")
    return user_type


def format_user(user: User) -> dict:
    return {
        "user_id": user.user_id,
        "name": user.name,
        "email": user.email,
        "user_type": user.type_name,
        "is_active": user.is_active,
        "is_verified": user.is_verified,
        "profile_image": local_storage.upload_url(user.profile_image),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> User:
        user = self.db.query(User).filter(User.user_id == user_id).first()
        if user is None:
            raise NotFoundError("User not found")
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()

    def list_users(self, search: Optional[str] = None, page: int = 1,
                   per_page: int = config.ITEMS_PER_PAGE) -> Tuple[List[User], int]:
        query = self.db.query(User)
        if search:
            term = f"%{search.strip()}%"
            query = query.filter(or_(User.name.ilike(term), User.email.ilike(term)))
        total = query.count()
        users = (
            query.order_by(User.created_at.desc(), User.user_id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return users, total

    # Registration and authentication

    def register(self, name: str, email: str, password: str, confirm_password: str,
                 account_type: str = "enthusiast", terms_agreed: bool = False) -> User:
        name = (name or "").strip()
        email = (email or "").strip().lower()

        errors = []
        if len(name) < 2:
            errors.append("Name must be at least 2 characters")
        if not email:
            errors.append("Email is required")
        elif not is_valid_email(email):
            errors.append("Invalid email format")
        errors.extend(validate_password(password or ""))
        if password != confirm_password:
            errors.append("Passwords do not match")
        if account_type not in ACCOUNT_TYPES:
            errors.append("Please choose a valid account type")
        if not terms_agreed:
            errors.append("You must agree to the Terms and Conditions")
        if name and self.db.query(User).filter(User.name == name).first():
            errors.append("That name is already taken")
        if email and self.get_by_email(email):
            errors.append("Email already registered")
        if errors:
            raise ValidationError(errors)

        user = User(
            name=name,
            email=email,
            hashed_password=get_password_hash(password),
            user_type_id=get_user_type(self.db, ACCOUNT_TYPES[account_type]).user_type_id,
            is_active=True,
            is_verified=False,
            verification_token=generate_verification_token(),
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("Registered user %s (%s)", user.user_id, user.type_name)

        notify(email_service.send_verification_email, user.email, user.name, user.verification_token)
        return user

    def verify_email(self, token: str) -> User:
        user = self.db.query(User).filter(User.verification_token == token).first() if token else None
        if user is None:
            raise NotFoundError("Invalid verification token")
        user.is_verified = True
        user.verification_token = None
        self.db.commit()
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.get_by_email(email or "")
        if user is None or not verify_password(password or "", user.hashed_password):
            raise AuthenticationError("Invalid email or password")
        if not user.is_active:
            raise AuthenticationError("Your account has been deactivated. Please contact support.")
        return user

    def request_password_reset(self, email: str, ip_address: Optional[str] = None,
                               user_agent: Optional[str] = None) -> None:
        """Create a reset token and mail it; unknown emails are ignored silently"""
        user = self.get_by_email(email or "")
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive email")
            return

        token = generate_token(64)
        self.db.add(ResetToken(
            user_id=user.user_id,
            token=token,
            expires_at=datetime.now() + timedelta(hours=config.RESET_TOKEN_HOURS),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:255],
        ))
        self.db.commit()

        reset_link = f"{config.BASE_URL}/reset-password?token={token}"
        notify(email_service.send_password_reset_email, user.email, user.name, reset_link)

    def get_valid_reset_token(self, token: str) -> ResetToken:
        reset = (
            self.db.query(ResetToken)
            .filter(ResetToken.token == token, ResetToken.used.is_(False))
            .first()
        ) if token else None
        if reset is None or reset.expires_at < datetime.now():
            raise ValidationError("Invalid or expired reset link. Please request a new one.")
        return reset

    def reset_password(self, token: str, password: str, confirm_password: str) -> User:
        reset = self.get_valid_reset_token(token)

        errors = validate_password(password or "")
        if password != confirm_password:
            errors.append("Passwords do not match")
        if errors:
            raise ValidationError(errors)

        user = self.get_user(reset.user_id)
        try:
            user.hashed_password = get_password_hash(password)
            reset.used = True
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Password reset failed for user %s", user.user_id)
            raise
        return user

    # Profile

    def update_profile(self, user: User, name: Optional[str] = None, email: Optional[str] = None) -> User:
        errors = []
        if name is not None:
            name = name.strip()
            if len(name) < 2:
                errors.append("Name must be at least 2 characters")
            elif self.db.query(User).filter(User.name == name, User.user_id != user.user_id).first():
                errors.append("That name is already taken")
        email_changed = False
        if email is not None:
            email = email.strip().lower()
            existing = self.get_by_email(email)
            if not is_valid_email(email):
                errors.append("Invalid email format")
            elif existing is not None and existing.user_id != user.user_id:
                errors.append("Email already registered")
            email_changed = email != user.email
        if errors:
            raise ValidationError(errors)

        if name is not None:
            user.name = name
        if email_changed:
            user.email = email
            user.is_verified = False
            user.verification_token = generate_verification_token()
        self.db.commit()
        self.db.refresh(user)

        if email_changed:
            notify(email_service.send_verification_email, user.email, user.name, user.verification_token)
        return user

    def update_profile_image(self, user: User, relative_path: str) -> User:
        old_path = user.profile_image
        user.profile_image = relative_path
        self.db.commit()
        if old_path:
            local_storage.delete_file(old_path)
        return user

    def change_password(self, user: User, current_password: str, new_password: str,
                        confirm_password: str) -> None:
        if not verify_password(current_password or "", user.hashed_password):
            raise ValidationError("Current password is incorrect")
        errors = validate_password(new_password or "")
        if new_password != confirm_password:
            errors.append("Passwords do not match")
        if errors:
            raise ValidationError(errors)
        user.hashed_password = get_password_hash(new_password)
        self.db.commit()

    def admin_update_user(self, admin: User, user_id: int, ip_address: Optional[str] = None,
                          **changes) -> User:
        user = self.get_user(user_id)
        if user.user_id == admin.user_id and changes.get("is_active") is False:
            raise ValidationError("You cannot deactivate your own account")

        name, email = changes.pop("name", None), changes.pop("email", None)
        if name is not None or email is not None:
            self.update_profile(user, name=name, email=email)
        for field in ("is_active", "is_verified"):
            if changes.get(field) is not None:
                setattr(user, field, changes[field])

        AdminLogService(self.db).log_action(admin.user_id, "user", user.user_id, "update",
                                            f"Updated account {user.email}", ip_address)
        self.db.commit()
        self.db.refresh(user)
        return user

    # Deletion and conversion

    def delete_account(self, user: User, confirm_email: Optional[str] = None) -> None:
        """Self-service deletion; the typed email must match the account"""
        if confirm_email is not None and confirm_email.strip().lower() != user.email.lower():
            raise ValidationError("Email confirmation does not match your account email")
        self._delete_user(user)

    def admin_delete_user(self, admin: User, user_id: int, ip_address: Optional[str] = None) -> None:
        user = self.get_user(user_id)
        if user.user_id == admin.user_id:
            raise ValidationError("Use the account page to delete your own account")
        email = user.email
        self._delete_user(user)
        AdminLogService(self.db).log_user_deletion(admin.user_id, user_id, email, ip_address)
        self.db.commit()

    def _delete_user(self, user: User) -> None:
        if user.is_admin and AdminLogService(self.db).has_logs(user.user_id):
            raise PermissionDeniedError(
                "Admin accounts with recorded admin activity cannot be deleted"
            )

        user_id = user.user_id
        reviewed = [s for (s,) in self.db.query(Review.stall_id).filter(Review.user_id == user_id).distinct()]
        try:
            paths = cleanup.delete_user_content(self.db, user)
            reviews = ReviewService(self.db)
            for stall_id in reviewed:
                reviews.recalculate_stall_rating(stall_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Account deletion failed for user %s", user_id)
            raise

        local_storage.remove_files(paths)
        logger.info("Deleted account %s", user_id)

    def convert_to_admin(self, admin: User, user_id: int, ip_address: Optional[str] = None) -> User:
        """Promote a user, dropping the stalls and applications they owned"""
        user = self.get_user(user_id)
        if user.is_admin:
            raise ValidationError("User is already an admin")

        try:
            stall_ids = [s for (s,) in self.db.query(FoodStall.stall_id).filter(FoodStall.owner_id == user.user_id)]
            paths = cleanup.delete_stalls(self.db, stall_ids)
            applications = self.db.query(Application).filter(Application.user_id == user.user_id).all()
            paths += cleanup.delete_applications(self.db, applications)

            user.user_type_id = get_user_type(self.db, TYPE_ADMIN).user_type_id
            AdminLogService(self.db).log_user_conversion(admin.user_id, user.user_id, user.name,
                                                         user.email, ip_address)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Converting user %s to admin failed", user_id)
            raise

        self.db.expire(user)
        local_storage.remove_files(paths)
        return user
