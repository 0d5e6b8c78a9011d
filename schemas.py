from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class RegisterPayload(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str
    confirm_password: str
    account_type: Literal["enthusiast", "owner"] = "enthusiast"
    terms_agreed: bool = False


class VerifyEmailPayload(BaseModel):
    token: str


class ForgotPasswordPayload(BaseModel):
    email: EmailStr


class ResetPasswordPayload(BaseModel):
    token: str
    password: str
    confirm_password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


class AccountDeletePayload(BaseModel):
    confirm_email: str


class AdminUserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None


class UserResponse(BaseModel):
    user_id: int
    name: str
    email: str
    type_name: Optional[str] = None
    is_active: bool
    is_verified: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class StallCreate(BaseModel):
    owner_id: int
    name: str = Field(min_length=2, max_length=150)
    description: str = ""
    food_categories: List[str] = []
    hours: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class StallUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=150)
    description: Optional[str] = None
    food_categories: Optional[List[str]] = None
    hours: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class MenuItemPayload(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    description: Optional[str] = None
    price: float = Field(ge=0, allow_inf_nan=False)
    is_available: bool = True


class MenuItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    is_available: Optional[bool] = None


class ReviewCreate(BaseModel):
    stall_id: int
    rating: int = Field(ge=1, le=5)
    title: Optional[str] = Field(default=None, max_length=150)
    comment: str = ""
    is_anonymous: bool = False


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    title: Optional[str] = Field(default=None, max_length=150)
    comment: Optional[str] = None
    is_anonymous: Optional[bool] = None


class ReactionPayload(BaseModel):
    review_id: int
    reaction_type: Literal["like", "dislike"]


class ReportPayload(BaseModel):
    review_id: int
    reason: Literal["spam", "offensive", "inappropriate", "misleading", "other"]
    custom_reason: Optional[str] = None


class DecisionPayload(BaseModel):
    notes: str = ""


class RejectPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str = Field(min_length=1)


class ModerationPayload(BaseModel):
    reason: str = ""


class ApplicationUpdate(BaseModel):
    stall_name: Optional[str] = None
    stall_description: Optional[str] = None
    location: Optional[str] = None
    map_x: Optional[float] = None
    map_y: Optional[float] = None
    food_categories: Optional[List[str]] = None


class AmendmentCreate(BaseModel):
    stall_id: int
    field_name: Literal["name", "description", "food_categories", "address"]
    new_value: str = Field(min_length=1)
    reason: str = ""


class ClosureCreate(BaseModel):
    stall_id: int
    reason: str = Field(min_length=1)
