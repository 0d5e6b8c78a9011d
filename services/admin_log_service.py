import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from models import AdminLog

logger = logging.getLogger(__name__)


class AdminLogService:
    """Audit trail of admin actions.

    `log_action` only adds the row to the session; the caller decides whether
    it joins an open transaction or is committed on its own.
    """

    def __init__(self, db: Session):
        self.db = db

    def log_action(self, admin_id: int, entity: str, entity_id: Optional[int], action: str,
                   details: Optional[str] = None, ip_address: Optional[str] = None) -> AdminLog:
        entry = AdminLog(
            admin_id=admin_id,
            entity=entity,
            entity_id=entity_id,
            action=action,
            details=details,
            ip_address=ip_address,
        )
        self.db.add(entry)
        logger.info("Admin %s: %s %s #%s", admin_id, action, entity, entity_id)
        return entry

    def log_application_approval(self, admin_id, application_id, stall_name, notes=None, ip_address=None):
        details = f"Approved stall application for '{stall_name}'"
        if notes:
            details += f". Notes: {notes}"
        return self.log_action(admin_id, "application", application_id, "approve", details, ip_address)

    def log_application_decline(self, admin_id, application_id, stall_name, notes=None, ip_address=None):
        details = f"Declined stall application for '{stall_name}'"
        if notes:
            details += f". Reason: {notes}"
        return self.log_action(admin_id, "application", application_id, "decline", details, ip_address)

    def log_application_archive(self, admin_id, application_id, stall_name, ip_address=None):
        return self.log_action(admin_id, "application", application_id, "archive",
                               f"Archived stall application for '{stall_name}'", ip_address)

    def log_review_deletion(self, admin_id, review_id, stall_name, reason=None, ip_address=None):
        details = f"Deleted review for '{stall_name}'"
        if reason:
            details += f". Reason: {reason}"
        return self.log_action(admin_id, "review", review_id, "delete", details, ip_address)

    def log_report_dismissal(self, admin_id, review_id, notes=None, ip_address=None):
        return self.log_action(admin_id, "review", review_id, "dismiss_reports", notes, ip_address)

    def log_review_visibility(self, admin_id, review_id, hidden: bool, reason=None, ip_address=None):
        return self.log_action(admin_id, "review", review_id, "hide" if hidden else "unhide", reason, ip_address)

    def log_user_conversion(self, admin_id, user_id, user_name, user_email, ip_address=None):
        return self.log_action(admin_id, "user", user_id, "convert_to_admin",
                               f"Converted {user_name} ({user_email}) to admin", ip_address)

    def log_user_deletion(self, admin_id, user_id, user_email, ip_address=None):
        return self.log_action(admin_id, "user", user_id, "delete", f"Deleted account {user_email}", ip_address)

    def log_request_decision(self, admin_id, entity, entity_id, approved: bool, notes=None, ip_address=None):
        return self.log_action(admin_id, entity, entity_id, "approve" if approved else "reject", notes, ip_address)

    def log_stall_change(self, admin_id, stall_id, action, details=None, ip_address=None):
        return self.log_action(admin_id, "stall", stall_id, action, details, ip_address)

    def get_logs(self, entity: Optional[str] = None, admin_id: Optional[int] = None,
                 limit: int = 50, offset: int = 0) -> Tuple[List[AdminLog], int]:
        query = self.db.query(AdminLog)
        if entity:
            query = query.filter(AdminLog.entity == entity)
        if admin_id:
            query = query.filter(AdminLog.admin_id == admin_id)
        total = query.count()
        logs = (
            query.options(joinedload(AdminLog.admin))
            .order_by(AdminLog.created_at.desc(), AdminLog.log_id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return logs, total

    def has_logs(self, admin_id: int) -> bool:
        return self.db.query(AdminLog.log_id).filter(AdminLog.admin_id == admin_id).first() is not None


def format_log(entry: AdminLog) -> dict:
    return {
        "log_id": entry.log_id,
        "admin_id": entry.admin_id,
        "admin_name": entry.admin.name if entry.admin else None,
        "entity": entry.entity,
        "entity_id": entry.entity_id,
        "action": entry.action,
        "details": entry.details,
        "ip_address": entry.ip_address,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
