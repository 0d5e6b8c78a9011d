from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base

# approval_statuses ids, seeded by migrate_db.py
STATUS_PENDING = 1
STATUS_APPROVED = 2
STATUS_ARCHIVED = 3
STATUS_DECLINED = 4

STATUS_NAMES = {
    STATUS_PENDING: "pending",
    STATUS_APPROVED: "approved",
    STATUS_ARCHIVED: "archived",
    STATUS_DECLINED: "declined",
}

# user_types names
TYPE_ENTHUSIAST = "food_enthusiast"
TYPE_OWNER = "food_stall_owner"
TYPE_ADMIN = "admin"


class UserType(Base):
    __tablename__ = "user_types"

    user_type_id = Column(Integer, primary_key=True)
    type_name = Column(String(50), unique=True, nullable=False)
    description = Column(String(255))


class User(Base):
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    user_type_id = Column(Integer, ForeignKey("user_types.user_type_id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String(64), unique=True, nullable=True)
    profile_image = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    user_type = relationship("UserType", lazy="joined")
    stalls = relationship("FoodStall", back_populates="owner")
    reviews = relationship("Review", back_populates="user")

    @property
    def type_name(self):
        return self.user_type.type_name if self.user_type else None

    @property
    def is_admin(self):
        return self.type_name == TYPE_ADMIN


class FoodStall(Base):
    __tablename__ = "food_stalls"

    stall_id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    name = Column(String(150), index=True, nullable=False)
    description = Column(Text)
    logo_path = Column(String(255))
    food_categories = Column(JSON, default=list)
    hours = Column(String(100))
    average_rating = Column(Float, default=0)
    total_reviews = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    owner = relationship("User", back_populates="stalls")
    location = relationship("StallLocation", uselist=False, back_populates="stall")
    menu_items = relationship("MenuItem", back_populates="stall", order_by="MenuItem.created_at.desc()")
    reviews = relationship("Review", back_populates="stall")


class StallLocation(Base):
    __tablename__ = "stall_locations"

    location_id = Column(Integer, primary_key=True)
    stall_id = Column(Integer, ForeignKey("food_stalls.stall_id"), nullable=False)
    address = Column(String(255))
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    stall = relationship("FoodStall", back_populates="location")


class MenuItem(Base):
    __tablename__ = "menu_items"

    item_id = Column(Integer, primary_key=True)
    stall_id = Column(Integer, ForeignKey("food_stalls.stall_id"), nullable=False)
    name = Column(String(150), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    image_path = Column(String(255))
    is_available = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    stall = relationship("FoodStall", back_populates="menu_items")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("user_id", "stall_id", name="uq_review_user_stall"),)

    review_id = Column(Integer, primary_key=True, index=True)
    stall_id = Column(Integer, ForeignKey("food_stalls.stall_id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    rating = Column(Integer, nullable=False)
    title = Column(String(150))
    comment = Column(Text)
    is_anonymous = Column(Boolean, default=False, nullable=False)
    is_hidden = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    user = relationship("User", back_populates="reviews")
    stall = relationship("FoodStall", back_populates="reviews")


class ReviewReaction(Base):
    __tablename__ = "review_reactions"
    __table_args__ = (UniqueConstraint("review_id", "user_id", name="uq_reaction_review_user"),)

    reaction_id = Column(Integer, primary_key=True)
    review_id = Column(Integer, ForeignKey("reviews.review_id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    reaction_type = Column(String(10), nullable=False)  # 'like' / 'dislike'
    created_at = Column(DateTime, default=datetime.now)


class ReviewReport(Base):
    __tablename__ = "review_reports"

    report_id = Column(Integer, primary_key=True)
    # no FK: handled reports are kept after the review is removed
    review_id = Column(Integer, nullable=False, index=True)
    reporter_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    report_reason = Column(String(50), nullable=False)
    custom_reason = Column(Text)
    status = Column(String(20), default="pending", nullable=False)  # pending / reviewed / dismissed
    reviewed_by = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    review_notes = Column(Text)
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)

    reporter = relationship("User", foreign_keys=[reporter_id])


class ReviewModeration(Base):
    __tablename__ = "review_moderations"

    moderation_id = Column(Integer, primary_key=True)
    # no FK: the row outlives the review it records
    review_id = Column(Integer, nullable=False, index=True)
    moderator_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    reason = Column(Text)
    is_hidden = Column(Boolean, default=True, nullable=False)
    moderated_at = Column(DateTime, default=datetime.now)


class ApprovalStatus(Base):
    __tablename__ = "approval_statuses"

    status_id = Column(Integer, primary_key=True)
    status_name = Column(String(20), unique=True, nullable=False)
    description = Column(String(255))


class Application(Base):
    __tablename__ = "applications"

    application_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    stall_name = Column(String(150), nullable=False)
    stall_description = Column(Text)
    location = Column(String(255))
    map_x = Column(Float, nullable=True)
    map_y = Column(Float, nullable=True)
    food_categories = Column(JSON, default=list)
    bir_registration_path = Column(String(255))
    business_permit_path = Column(String(255))
    dti_sec_path = Column(String(255))
    stall_logo_path = Column(String(255))
    current_status_id = Column(Integer, ForeignKey("approval_statuses.status_id"), nullable=False,
                               default=STATUS_PENDING)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    user = relationship("User")
    status = relationship("ApprovalStatus", lazy="joined")

    @property
    def document_paths(self):
        return [
            self.bir_registration_path,
            self.business_permit_path,
            self.dti_sec_path,
            self.stall_logo_path,
        ]


class ApplicationReview(Base):
    __tablename__ = "application_reviews"

    review_id = Column(Integer, primary_key=True)
    application_id = Column(Integer, ForeignKey("applications.application_id"), nullable=False)
    reviewer_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    status_id = Column(Integer, ForeignKey("approval_statuses.status_id"), nullable=False)
    notes = Column(Text)
    reviewed_at = Column(DateTime, default=datetime.now)


class AmendmentRequest(Base):
    __tablename__ = "amendment_requests"

    amendment_id = Column(Integer, primary_key=True)
    stall_id = Column(Integer, ForeignKey("food_stalls.stall_id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    field_name = Column(String(50), nullable=False)
    old_value = Column(Text)
    new_value = Column(Text, nullable=False)
    reason = Column(Text)
    current_status_id = Column(Integer, ForeignKey("approval_statuses.status_id"), nullable=False,
                               default=STATUS_PENDING)
    reviewed_by = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    review_notes = Column(Text)
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)

    stall = relationship("FoodStall")
    status = relationship("ApprovalStatus", lazy="joined")


class ClosureRequest(Base):
    __tablename__ = "closure_requests"

    closure_id = Column(Integer, primary_key=True)
    stall_id = Column(Integer, ForeignKey("food_stalls.stall_id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    reason = Column(Text)
    current_status_id = Column(Integer, ForeignKey("approval_statuses.status_id"), nullable=False,
                               default=STATUS_PENDING)
    reviewed_by = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    review_notes = Column(Text)
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)

    stall = relationship("FoodStall")
    status = relationship("ApprovalStatus", lazy="joined")


class AdminLog(Base):
    __tablename__ = "admin_logs"

    log_id = Column(Integer, primary_key=True)
    admin_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    entity = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)
    action = Column(String(50), nullable=False)
    details = Column(Text)
    ip_address = Column(String(45))
    created_at = Column(DateTime, default=datetime.now, index=True)

    admin = relationship("User")


class SessionToken(Base):
    __tablename__ = "session_tokens"

    token_id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    token = Column(String(128), unique=True, nullable=False)
    ip_address = Column(String(45))
    user_agent = Column(String(255))
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class ResetToken(Base):
    __tablename__ = "reset_tokens"

    token_id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    token = Column(String(128), unique=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    ip_address = Column(String(45))
    user_agent = Column(String(255))
    created_at = Column(DateTime, default=datetime.now)
