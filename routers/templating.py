from datetime import datetime
from typing import Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

import config
import local_storage
from auth import get_csrf_token, pop_flash, set_flash, verify_csrf_token
from models import User

templates = Jinja2Templates(directory=str(config.TEMPLATES_DIR))
templates.env.globals.update(
    app_name=config.APP_NAME,
    app_description=config.APP_DESCRIPTION,
    upload_url=local_storage.upload_url,
    current_year=lambda: datetime.now().year,
)


def render(request: Request, name: str, user: Optional[User] = None, status_code: int = 200, **context):
    context.update({
        "user": user,
        "csrf_token": get_csrf_token(request),
        "flash": pop_flash(request),
    })
    return templates.TemplateResponse(request, name, context, status_code=status_code)


def redirect(url: str, message: Optional[str] = None, type: str = "info",
             request: Optional[Request] = None) -> RedirectResponse:
    if message and request is not None:
        set_flash(request, message, type)
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


def login_redirect(request: Request) -> RedirectResponse:
    return redirect("/login", "Please log in to continue.", "error", request)


async def csrf_protect(request: Request):
    """Reject state-changing form posts whose token does not match the session"""
    form = await request.form()
    if not verify_csrf_token(request, form.get("csrf_token")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid security token. Please refresh the page and try again.",
        )
