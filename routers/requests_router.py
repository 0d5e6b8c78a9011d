from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from auth import client_ip, get_admin_user, get_current_user
from database import get_db
from models import User
from routers.common import success
from schemas import AmendmentCreate, ClosureCreate, DecisionPayload, RejectPayload
from services.change_request_service import AmendmentService, ClosureService, format_request

amendments_router = APIRouter(prefix="/amendments", tags=["amendments"])
closures_router = APIRouter(prefix="/closures", tags=["closures"])


def _add_decision_routes(router: APIRouter, service_class, label: str):
    """List/get/approve/reject are identical for both request kinds"""

    @router.get("/")
    def list_requests(status: Optional[str] = Query(None), stall_id: Optional[int] = Query(None),
                      current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
        requests = service_class(db).list_requests(current_user, status, stall_id)
        return success([format_request(r) for r in requests])

    @router.get("/{request_id}")
    def get_request(request_id: int, current_user: User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
        return success(format_request(service_class(db).get_for_user(current_user, request_id)))

    @router.post("/{request_id}/approve")
    def approve_request(request_id: int, request: Request, payload: Optional[DecisionPayload] = None,
                        admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
        notes = payload.notes if payload else ""
        result = service_class(db).approve(admin, request_id, notes, client_ip(request))
        return success(format_request(result), f"{label} approved")

    @router.post("/{request_id}/reject")
    def reject_request(request_id: int, payload: RejectPayload, request: Request,
                       admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
        result = service_class(db).reject(admin, request_id, payload.reason, client_ip(request))
        return success(format_request(result), f"{label} rejected")


@amendments_router.post("/")
def create_amendment(payload: AmendmentCreate, current_user: User = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    amendment = AmendmentService(db).create(current_user, payload.stall_id, payload.field_name,
                                            payload.new_value, payload.reason)
    return success(format_request(amendment), "Amendment request submitted for review", status_code=201)


@closures_router.post("/")
def create_closure(payload: ClosureCreate, current_user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    closure = ClosureService(db).create(current_user, payload.stall_id, payload.reason)
    return success(format_request(closure), "Closure request submitted for review", status_code=201)


_add_decision_routes(amendments_router, AmendmentService, "Amendment")
_add_decision_routes(closures_router, ClosureService, "Closure request")
