import math
from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from sqlalchemy.orm import Session

import config
from auth import client_ip, get_optional_user, login_user, logout_user
from database import get_db
from errors import NotFoundError, ServiceError, ValidationError
from models import User
from routers.templating import csrf_protect, login_redirect, redirect, render
from services.review_service import ReviewService
from services.stall_service import CATEGORIES, StallService, format_menu_item, format_stall
from services.user_service import UserService

router = APIRouter(tags=["pages"], include_in_schema=False)


@router.get("/")
def home(request: Request, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
    stalls = StallService(db)
    reviews = ReviewService(db)
    return render(
        request,
        "index.html",
        user,
        featured=[format_stall(s) for s in stalls.get_random_stalls(6)],
        recent_reviews=reviews.format_many(reviews.recent_reviews(6)),
        categories=CATEGORIES,
    )


@router.get("/stalls")
def stalls_page(
    request: Request,
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    service = StallService(db)
    items, total = service.list_stalls(search, category, page, config.ITEMS_PER_PAGE)
    return render(
        request,
        "stalls.html",
        user,
        stalls=[format_stall(s) for s in items],
        categories=service.get_categories() or CATEGORIES,
        search=search or "",
        category=category or "",
        page=page,
        total=total,
        total_pages=max(1, math.ceil(total / config.ITEMS_PER_PAGE)),
    )


@router.get("/stalls/{stall_id}")
def stall_detail(stall_id: int, request: Request, user: Optional[User] = Depends(get_optional_user),
                 db: Session = Depends(get_db)):
    stall = StallService(db).get_stall(stall_id)
    reviews = ReviewService(db)
    items, _ = reviews.list_reviews(stall_id=stall_id, per_page=100)
    own_review = reviews.get_user_review(user.user_id, stall_id) if user else None
    return render(
        request,
        "stall_detail.html",
        user,
        stall=format_stall(stall),
        menu=[format_menu_item(i) for i in stall.menu_items if i.is_available],
        reviews=reviews.format_many(items, user.user_id if user else None),
        own_review=own_review,
        is_owner=user is not None and user.user_id == stall.owner_id,
    )


@router.post("/stalls/{stall_id}/review", dependencies=[Depends(csrf_protect)])
def stall_review_action(
    stall_id: int,
    request: Request,
    action: str = Form(...),
    rating: Optional[int] = Form(None),
    title: str = Form(""),
    comment: str = Form(""),
    is_anonymous: bool = Form(False),
    review_id: Optional[int] = Form(None),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if user is None:
        return login_redirect(request)
    back = f"/stalls/{stall_id}#reviews"
    service = ReviewService(db)
    try:
        if action == "submit_review":
            if not user.is_verified:
                return redirect(back, "Please verify your email before writing reviews.", "error", request)
            service.create_review(user, stall_id, rating or 0, comment, title, is_anonymous)
            message = "Thank you for your review!"
        elif action == "update_review" and review_id:
            service.update_review(user, review_id, rating=rating, title=title, comment=comment,
                                  is_anonymous=is_anonymous)
            message = "Your review has been updated."
        elif action == "delete_review" and review_id:
            service.delete_review(user, review_id)
            message = "Your review has been deleted."
        else:
            raise ValidationError("Unknown action")
    except ServiceError as e:
        return redirect(back, e.message, "error", request)
    return redirect(back, message, "success", request)


@router.get("/map")
def map_page(request: Request, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
    stalls, _ = StallService(db).list_stalls(per_page=1000)
    return render(request, "map.html", user, stalls=[format_stall(s) for s in stalls])


@router.get("/about")
def about_page(request: Request, user: Optional[User] = Depends(get_optional_user)):
    return render(request, "about.html", user)


@router.get("/terms")
def terms_page(request: Request, user: Optional[User] = Depends(get_optional_user)):
    return render(request, "terms.html", user)


# Authentication pages

@router.get("/login")
def login_page(request: Request, user: Optional[User] = Depends(get_optional_user)):
    if user is not None:
        return redirect("/")
    return render(request, "login.html", user, email="")


@router.post("/login", dependencies=[Depends(csrf_protect)])
def login_submit(request: Request, email: str = Form(""), password: str = Form(""),
                 db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(email, password)
    except ServiceError as e:
        return render(request, "login.html", None, status_code=e.status_code, errors=[e.message], email=email)
    login_user(request, db, user)
    destination = "/admin" if user.is_admin else "/"
    return redirect(destination, f"Welcome back, {user.name}!", "success", request)


@router.post("/logout", dependencies=[Depends(csrf_protect)])
def logout(request: Request, db: Session = Depends(get_db)):
    logout_user(request, db)
    return redirect("/", "You have been logged out.", "success", request)


@router.get("/signup")
def signup_page(request: Request, user: Optional[User] = Depends(get_optional_user)):
    if user is not None:
        return redirect("/")
    return render(request, "signup.html", user, form={})


@router.post("/signup", dependencies=[Depends(csrf_protect)])
def signup_submit(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    account_type: str = Form("enthusiast"),
    terms_agreed: bool = Form(False),
    db: Session = Depends(get_db),
):
    try:
        UserService(db).register(name, email, password, confirm_password, account_type, terms_agreed)
    except ValidationError as e:
        form = {"name": name, "email": email, "account_type": account_type}
        return render(request, "signup.html", None, status_code=400, errors=e.errors, form=form)
    return redirect("/login", "Account created! Please check your email to verify your account.",
                    "success", request)


@router.get("/verify-email")
def verify_email(request: Request, token: str = Query(""), db: Session = Depends(get_db)):
    try:
        UserService(db).verify_email(token)
    except NotFoundError:
        return redirect("/login", "That verification link is invalid or has already been used.", "error", request)
    return redirect("/login", "Your email has been verified. You can now write reviews.", "success", request)


@router.get("/forgot-password")
def forgot_password_page(request: Request, user: Optional[User] = Depends(get_optional_user)):
    return render(request, "forgot_password.html", user)


@router.post("/forgot-password", dependencies=[Depends(csrf_protect)])
def forgot_password_submit(request: Request, email: str = Form(""), db: Session = Depends(get_db)):
    UserService(db).request_password_reset(email, client_ip(request), request.headers.get("user-agent"))
    return redirect("/login", "If an account exists with that email, a password reset link has been sent.",
                    "success", request)


@router.get("/reset-password")
def reset_password_page(request: Request, token: str = Query(""), db: Session = Depends(get_db)):
    try:
        UserService(db).get_valid_reset_token(token)
    except ValidationError as e:
        return redirect("/forgot-password", e.message, "error", request)
    return render(request, "reset_password.html", None, token=token)


@router.post("/reset-password", dependencies=[Depends(csrf_protect)])
def reset_password_submit(request: Request, token: str = Form(""), password: str = Form(""),
                          confirm_password: str = Form(""), db: Session = Depends(get_db)):
    try:
        UserService(db).reset_password(token, password, confirm_password)
    except ValidationError as e:
        return render(request, "reset_password.html", None, status_code=400, token=token, errors=e.errors)
    return redirect("/login", "Your password has been reset. You can now log in.", "success", request)
