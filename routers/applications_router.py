from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.orm import Session

from auth import client_ip, get_admin_user, get_current_user
from database import get_db
from models import User
from routers.common import success
from schemas import ApplicationUpdate, DecisionPayload, RejectPayload
from services.application_service import ApplicationService, format_application
from services.stall_service import format_stall

router = APIRouter(prefix="/applications", tags=["applications"])


@router.get("/")
def list_applications(status: Optional[str] = Query(None), current_user: User = Depends(get_current_user),
                      db: Session = Depends(get_db)):
    applications = ApplicationService(db).list_applications(current_user, status)
    return success([format_application(a) for a in applications])


@router.get("/{application_id}")
def get_application(application_id: int, current_user: User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    return success(format_application(ApplicationService(db).get_for_user(current_user, application_id)))


@router.post("/")
async def submit_application(
    stall_name: str = Form(""),
    stall_description: str = Form(""),
    location: str = Form(""),
    map_x: Optional[float] = Form(None),
    map_y: Optional[float] = Form(None),
    food_categories: List[str] = Form([]),
    bir_registration: Optional[UploadFile] = File(None),
    business_permit: Optional[UploadFile] = File(None),
    dti_sec: Optional[UploadFile] = File(None),
    stall_logo: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    application = await ApplicationService(db).submit_application(
        current_user,
        stall_name,
        stall_description,
        location,
        food_categories,
        {
            "bir_registration": bir_registration,
            "business_permit": business_permit,
            "dti_sec": dti_sec,
            "stall_logo": stall_logo,
        },
        map_x=map_x,
        map_y=map_y,
    )
    return success(format_application(application), "Application submitted successfully", status_code=201)


@router.put("/{application_id}")
def update_application(application_id: int, payload: ApplicationUpdate,
                       current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    application = ApplicationService(db).update_application(current_user, application_id,
                                                            **payload.model_dump(exclude_unset=True))
    return success(format_application(application), "Application updated successfully")


@router.post("/{application_id}/approve")
def approve_application(application_id: int, request: Request, payload: Optional[DecisionPayload] = None,
                        admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    notes = payload.notes if payload else ""
    stall = ApplicationService(db).approve_application(admin, application_id, notes, client_ip(request))
    return success(format_stall(stall), "Application approved successfully! Stall is now live.")


@router.post("/{application_id}/reject")
def reject_application(application_id: int, payload: RejectPayload, request: Request,
                       admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    ApplicationService(db).decline_application(admin, application_id, payload.reason, client_ip(request))
    return success(None, "Application declined and applicant has been notified.")


@router.post("/{application_id}/archive")
def archive_application(application_id: int, request: Request, admin: User = Depends(get_admin_user),
                        db: Session = Depends(get_db)):
    application = ApplicationService(db).archive_application(admin, application_id, client_ip(request))
    return success(format_application(application), "Application archived successfully.")
