import logging

from sqlalchemy.orm import Session

import config
from database import Base, SessionLocal, engine
from models import STATUS_NAMES, TYPE_ADMIN, TYPE_ENTHUSIAST, TYPE_OWNER, ApprovalStatus, User, UserType

logger = logging.getLogger(__name__)

USER_TYPES = {
    TYPE_ENTHUSIAST: "Browses stalls and writes reviews",
    TYPE_OWNER: "Registers and manages food stalls",
    TYPE_ADMIN: "Reviews applications and moderates content",
}

STATUS_DESCRIPTIONS = {
    "pending": "Waiting for admin review",
    "approved": "Approved by an admin",
    "archived": "Hidden from the pending queue",
    "declined": "Rejected by an admin",
}


def seed_lookup_tables(db: Session) -> None:
    """Insert the user types and approval statuses if they are missing"""
    existing_types = {name for (name,) in db.query(UserType.type_name)}
    for name, description in USER_TYPES.items():
        if name not in existing_types:
            db.add(UserType(type_name=name, description=description))
            logger.info("Added user type %s", name)

    existing_statuses = {status_id for (status_id,) in db.query(ApprovalStatus.status_id)}
    for status_id, name in STATUS_NAMES.items():
        if status_id not in existing_statuses:
            db.add(ApprovalStatus(status_id=status_id, status_name=name,
                                  description=STATUS_DESCRIPTIONS[name]))
            logger.info("Added approval status %s", name)
    db.commit()


def promote_admins(db: Session, emails: str = config.ADMINS) -> int:
    """Give admin rights to the registered users listed in ADMINS"""
    wanted = {e.strip().lower() for e in emails.split(",") if e.strip()}
    if not wanted:
        return 0

    admin_type = db.query(UserType).filter(UserType.type_name == TYPE_ADMIN).one()
    promoted = 0
    for user in db.query(User).filter(User.email.in_(wanted)):
        if user.user_type_id != admin_type.user_type_id:
            user.user_type_id = admin_type.user_type_id
            promoted += 1
            logger.info("Promoted %s to admin", user.email)
    db.commit()
    return promoted


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_lookup_tables(db)
        promote_admins(db)
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL)
    init_db()
    print("Database migration completed!")
