from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.orm import Session

import config
import local_storage
from auth import get_optional_user
from database import get_db
from errors import ServiceError, ValidationError
from models import STATUS_PENDING, TYPE_OWNER, User
from routers.templating import csrf_protect, login_redirect, redirect, render
from services.admin_log_service import AdminLogService
from services.application_service import ApplicationService, format_application
from services.change_request_service import AMENDABLE_FIELDS, AmendmentService, ClosureService, format_request
from services.review_service import ReviewService
from services.stall_service import CATEGORIES, StallService, format_menu_item, format_stall
from services.user_service import UserService

router = APIRouter(tags=["pages"], include_in_schema=False)


@router.get("/my-account")
def my_account(request: Request, user: Optional[User] = Depends(get_optional_user),
               db: Session = Depends(get_db)):
    if user is None:
        return login_redirect(request)
    return render(
        request,
        "my_account.html",
        user,
        can_delete=not (user.is_admin and AdminLogService(db).has_logs(user.user_id)),
    )


@router.post("/my-account", dependencies=[Depends(csrf_protect)])
async def my_account_action(
    request: Request,
    action: str = Form(...),
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    current_password: str = Form(""),
    new_password: str = Form(""),
    confirm_password: str = Form(""),
    confirm_email: str = Form(""),
    profile_image: Optional[UploadFile] = File(None),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if user is None:
        return login_redirect(request)
    service = UserService(db)
    saved_image = None
    try:
        if action == "update_profile":
            if local_storage.has_file(profile_image):
                saved_image = await local_storage.save_upload(profile_image, "profiles", "Profile image",
                                                              config.ALLOWED_IMAGE_TYPES, require_image=True)
            service.update_profile(user, name=name, email=email)
            if saved_image:
                service.update_profile_image(user, saved_image)
            request.session["user_name"] = user.name
            message = "Profile updated successfully."
        elif action == "change_password":
            service.change_password(user, current_password, new_password, confirm_password)
            message = "Password changed successfully."
        elif action == "delete_account":
            service.delete_account(user, confirm_email)
            request.session.clear()
            return redirect("/", "Your account has been deleted.", "success", request)
        else:
            raise ValidationError("Unknown action")
    except ServiceError as e:
        if saved_image:
            local_storage.remove_files([saved_image])
        return redirect("/my-account", e.message, "error", request)
    return redirect("/my-account", message, "success", request)


@router.get("/my-reviews")
def my_reviews(request: Request, user: Optional[User] = Depends(get_optional_user),
               db: Session = Depends(get_db)):
    if user is None:
        return login_redirect(request)
    service = ReviewService(db)
    reviews, _ = service.list_reviews(user_id=user.user_id, include_hidden=True, per_page=100)
    return render(request, "my_reviews.html", user, reviews=service.format_many(reviews, user.user_id))


# Stall registration

@router.get("/register-stall")
def register_stall_page(request: Request, user: Optional[User] = Depends(get_optional_user),
                        db: Session = Depends(get_db)):
    if user is None:
        return login_redirect(request)
    if user.type_name != TYPE_OWNER:
        return redirect("/", "Only food stall owner accounts can register a stall.", "error", request)
    if ApplicationService(db).get_pending_for_user(user.user_id):
        return redirect("/registration-pending")
    return render(request, "register_stall.html", user, categories=CATEGORIES, form={})


@router.post("/register-stall", dependencies=[Depends(csrf_protect)])
async def register_stall_submit(
    request: Request,
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
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if user is None:
        return login_redirect(request)
    try:
        await ApplicationService(db).submit_application(
            user,
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
    except ServiceError as e:
        form = {
            "stall_name": stall_name,
            "stall_description": stall_description,
            "location": location,
            "food_categories": food_categories,
        }
        return render(request, "register_stall.html", user, status_code=e.status_code,
                      errors=e.errors or [e.message], categories=CATEGORIES, form=form)
    return redirect("/registration-pending", "Your application has been submitted!", "success", request)


@router.get("/registration-pending")
def registration_pending(request: Request, user: Optional[User] = Depends(get_optional_user),
                         db: Session = Depends(get_db)):
    if user is None:
        return login_redirect(request)
    applications = ApplicationService(db).list_applications(user)
    return render(
        request,
        "registration_pending.html",
        user,
        applications=[format_application(a, include_documents=False) for a in applications],
        has_pending=any(a.current_status_id == STATUS_PENDING for a in applications),
    )


# Stall management

@router.get("/manage-stall")
def manage_stall(request: Request, tab: str = Query("stall-info"),
                 user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
    if user is None:
        return login_redirect(request)
    stall = StallService(db).get_owner_stall(user.user_id)
    if stall is None:
        return redirect("/", "You don't have an approved stall yet. Please register your stall or wait for "
                             "approval.", "error", request)
    return render(
        request,
        "manage_stall.html",
        user,
        tab=tab,
        stall=format_stall(stall),
        menu=[format_menu_item(i) for i in stall.menu_items],
        amendable_fields=AMENDABLE_FIELDS,
        amendments=[format_request(r) for r in AmendmentService(db).list_requests(user, stall_id=stall.stall_id)],
        closures=[format_request(r) for r in ClosureService(db).list_requests(user, stall_id=stall.stall_id)],
    )


@router.post("/manage-stall", dependencies=[Depends(csrf_protect)])
async def manage_stall_action(
    request: Request,
    action: str = Form(...),
    stall_id: int = Form(...),
    hours: str = Form(""),
    item_id: Optional[int] = Form(None),
    item_name: str = Form(""),
    item_description: str = Form(""),
    item_price: Optional[str] = Form(None),
    is_available: bool = Form(False),
    item_image: Optional[UploadFile] = File(None),
    new_logo: Optional[UploadFile] = File(None),
    field_name: str = Form(""),
    new_value: str = Form(""),
    reason: str = Form(""),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if user is None:
        return login_redirect(request)
    service = StallService(db)
    tab = "stall-info"
    saved_image = None
    try:
        if action == "update_stall_info":
            service.update_hours(user, stall_id, hours)
            if local_storage.has_file(new_logo):
                service.get_owned_stall(user, stall_id)
                path = await local_storage.save_upload(new_logo, "stalls", "Logo",
                                                       config.ALLOWED_IMAGE_TYPES, require_image=True)
                service.update_logo(user, stall_id, path)
            message = "Stall information updated successfully!"
        elif action in ("add_menu_item", "update_menu_item"):
            tab = "menu"
            service.get_owned_stall(user, stall_id)
            if local_storage.has_file(item_image):
                saved_image = await local_storage.save_upload(item_image, f"menu/{stall_id}", "Item image",
                                                              config.ALLOWED_IMAGE_TYPES, require_image=True)
            if action == "add_menu_item":
                service.add_menu_item(user, stall_id, item_name, item_price, item_description,
                                      image_path=saved_image, is_available=is_available)
                message = "Menu item added successfully!"
            else:
                service.update_menu_item(user, stall_id, item_id or 0, image_path=saved_image,
                                         name=item_name, price=item_price, description=item_description,
                                         is_available=is_available)
                message = "Menu item updated successfully!"
        elif action == "delete_menu_item":
            tab = "menu"
            service.delete_menu_item(user, stall_id, item_id or 0)
            message = "Menu item deleted."
        elif action == "request_amendment":
            tab = "requests"
            AmendmentService(db).create(user, stall_id, field_name, new_value, reason)
            message = "Amendment request submitted. An administrator will review it shortly."
        elif action == "request_closure":
            tab = "requests"
            ClosureService(db).create(user, stall_id, reason)
            message = "Closure request submitted. An administrator will review it shortly."
        else:
            raise ValidationError("Unknown action")
    except ServiceError as e:
        if saved_image:
            local_storage.remove_files([saved_image])
        return redirect(f"/manage-stall?tab={tab}", e.message, "error", request)
    return redirect(f"/manage-stall?tab={tab}", message, "success", request)
