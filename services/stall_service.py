import logging
import math
import random
import re
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

import config
import local_storage
from errors import NotFoundError, PermissionDeniedError, ValidationError
from models import TYPE_OWNER, FoodStall, MenuItem, StallLocation, User
from services import cleanup
from services.admin_log_service import AdminLogService

logger = logging.getLogger(__name__)

# Canonical category names shown in filters
CATEGORIES = ["Beverages", "Street Food", "Rice Meals", "Fast Food", "Snacks", "Pastries", "Others"]

# Singular spellings stored by older forms
_CATEGORY_ALIASES = {
    "beverage": "beverages",
    "snack": "snacks",
    "pastry": "pastries",
    "other": "others",
    "ricemeal": "ricemeals",
}

OWNER_EDITABLE_FIELDS = {"hours"}


def normalize_category(value: str) -> str:
    """'Street Food', 'street_food' and 'streetfood' all normalize to 'streetfood'"""
    key = re.sub(r"[\s_\-]+", "", (value or "").lower())
    return _CATEGORY_ALIASES.get(key, key)


def stall_has_category(stall: FoodStall, category: str) -> bool:
    wanted = normalize_category(category)
    return any(normalize_category(c) == wanted for c in (stall.food_categories or []))


def format_stall(stall: FoodStall) -> dict:
    location = stall.location
    return {
        "stall_id": stall.stall_id,
        "owner_id": stall.owner_id,
        "name": stall.name,
        "description": stall.description,
        "logo": local_storage.upload_url(stall.logo_path),
        "categories": list(stall.food_categories or []),
        "hours": stall.hours,
        "average_rating": round(stall.average_rating or 0, 1),
        "total_reviews": stall.total_reviews or 0,
        "address": location.address if location else None,
        "latitude": location.latitude if location else None,
        "longitude": location.longitude if location else None,
        "is_active": stall.is_active,
    }


def format_menu_item(item: MenuItem) -> dict:
    return {
        "item_id": item.item_id,
        "stall_id": item.stall_id,
        "name": item.name,
        "description": item.description,
        "price": float(item.price),
        "image": local_storage.upload_url(item.image_path),
        "is_available": item.is_available,
    }


class StallService:
    def __init__(self, db: Session):
        self.db = db

    def _active_query(self):
        return (
            self.db.query(FoodStall)
            .options(joinedload(FoodStall.location))
            .filter(FoodStall.is_active.is_(True))
        )

    def list_stalls(self, search: Optional[str] = None, category: Optional[str] = None,
                    page: int = 1, per_page: int = config.ITEMS_PER_PAGE) -> Tuple[List[FoodStall], int]:
        query = self._active_query()
        if search:
            term = f"%{search.strip()}%"
            query = query.filter(or_(FoodStall.name.ilike(term), FoodStall.description.ilike(term)))
        stalls = query.order_by(FoodStall.name).all()

        # JSON category lists are matched here so every stored spelling is found
        if category:
            stalls = [s for s in stalls if stall_has_category(s, category)]

        total = len(stalls)
        start = (page - 1) * per_page
        return stalls[start:start + per_page], total

    def get_random_stalls(self, limit: int = 6) -> List[FoodStall]:
        stalls = self._active_query().all()
        return random.sample(stalls, min(limit, len(stalls)))

    def get_categories(self) -> List[str]:
        seen = {}
        for (categories,) in self.db.query(FoodStall.food_categories).filter(FoodStall.is_active.is_(True)):
            for category in categories or []:
                seen.setdefault(normalize_category(category), category)
        return sorted(seen.values())

    def get_stall(self, stall_id: int, include_inactive: bool = False) -> FoodStall:
        query = self.db.query(FoodStall).options(joinedload(FoodStall.location))
        stall = query.filter(FoodStall.stall_id == stall_id).first()
        if stall is None or (not stall.is_active and not include_inactive):
            raise NotFoundError("Stall not found")
        return stall

    def get_owner_stall(self, owner_id: int) -> Optional[FoodStall]:
        return (
            self._active_query()
            .filter(FoodStall.owner_id == owner_id)
            .order_by(FoodStall.created_at.desc())
            .first()
        )

    def get_owned_stall(self, user: User, stall_id: int) -> FoodStall:
        stall = self.get_stall(stall_id, include_inactive=True)
        if stall.owner_id != user.user_id:
            raise PermissionDeniedError("You do not own this stall")
        return stall

    def get_menu(self, stall_id: int, available_only: bool = False) -> List[MenuItem]:
        stall = self.get_stall(stall_id)
        items = stall.menu_items
        if available_only:
            items = [i for i in items if i.is_available]
        return items

    # Owner management

    def update_hours(self, user: User, stall_id: int, hours: Optional[str]) -> FoodStall:
        stall = self.get_owned_stall(user, stall_id)
        stall.hours = (hours or "").strip() or None
        self.db.commit()
        self.db.refresh(stall)
        return stall

    def update_logo(self, user: User, stall_id: int, relative_path: str) -> FoodStall:
        stall = self.get_owned_stall(user, stall_id)
        old_path = stall.logo_path
        stall.logo_path = relative_path
        self.db.commit()
        if old_path and old_path != relative_path:
            local_storage.delete_file(old_path)
        return stall

    def add_menu_item(self, user: User, stall_id: int, name: str, price, description: Optional[str] = None,
                      image_path: Optional[str] = None, is_available: bool = True) -> MenuItem:
        stall = self.get_owned_stall(user, stall_id)
        price = self._validate_item(name, price)
        item = MenuItem(
            stall_id=stall.stall_id,
            name=name.strip(),
            description=(description or "").strip() or None,
            price=price,
            image_path=image_path,
            is_available=is_available,
        )
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def get_menu_item(self, user: User, stall_id: int, item_id: int) -> MenuItem:
        stall = self.get_owned_stall(user, stall_id)
        item = (
            self.db.query(MenuItem)
            .filter(MenuItem.item_id == item_id, MenuItem.stall_id == stall.stall_id)
            .first()
        )
        if item is None:
            raise NotFoundError("Menu item not found")
        return item

    def update_menu_item(self, user: User, stall_id: int, item_id: int, image_path: Optional[str] = None,
                         **changes) -> MenuItem:
        item = self.get_menu_item(user, stall_id, item_id)
        name = changes.get("name")
        price = changes.get("price")
        price = self._validate_item(name if name is not None else item.name,
                                    price if price is not None else item.price)

        if name is not None:
            item.name = name.strip()
        item.price = price
        if changes.get("description") is not None:
            item.description = changes["description"].strip() or None
        if changes.get("is_available") is not None:
            item.is_available = changes["is_available"]

        old_image = None
        if image_path:
            old_image, item.image_path = item.image_path, image_path
        self.db.commit()
        self.db.refresh(item)
        if old_image:
            local_storage.delete_file(old_image)
        return item

    def delete_menu_item(self, user: User, stall_id: int, item_id: int) -> None:
        item = self.get_menu_item(user, stall_id, item_id)
        image_path = item.image_path
        self.db.delete(item)
        self.db.commit()
        local_storage.delete_file(image_path)

    @staticmethod
    def _validate_item(name: Optional[str], price):
        errors = []
        if not (name or "").strip():
            errors.append("Item name is required")
        try:
            price = float(price)
        except (TypeError, ValueError):
            price = None
        if price is None or not math.isfinite(price):
            errors.append("Price must be a number")
        elif price < 0:
            errors.append("Price cannot be negative")
        else:
            price = round(price, 2)
        if errors:
            raise ValidationError(errors)
        return price

    # Admin management

    def create_stall(self, admin: User, owner_id: int, name: str, description: str = "",
                     food_categories: Optional[List[str]] = None, hours: Optional[str] = None,
                     address: Optional[str] = None, latitude: Optional[float] = None,
                     longitude: Optional[float] = None, ip_address: Optional[str] = None) -> FoodStall:
        owner = self.db.query(User).filter(User.user_id == owner_id).first()
        if owner is None:
            raise NotFoundError("Owner not found")
        if owner.type_name != TYPE_OWNER:
            raise ValidationError("Stalls can only be assigned to food stall owner accounts")
        if len((name or "").strip()) < 2:
            raise ValidationError("Stall name must be at least 2 characters")

        try:
            stall = FoodStall(
                owner_id=owner.user_id,
                name=name.strip(),
                description=description,
                food_categories=list(food_categories or []),
                hours=hours,
            )
            self.db.add(stall)
            self.db.flush()
            if address:
                self.db.add(StallLocation(stall_id=stall.stall_id, address=address,
                                          latitude=latitude, longitude=longitude))
            AdminLogService(self.db).log_stall_change(admin.user_id, stall.stall_id, "create",
                                                      f"Created stall '{stall.name}'", ip_address)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(stall)
        return stall

    def update_stall(self, user: User, stall_id: int, ip_address: Optional[str] = None, **changes) -> FoodStall:
        """Admins may change any field; owners only the ones not covered by amendments"""
        changes = {k: v for k, v in changes.items() if v is not None}
        if not user.is_admin:
            restricted = set(changes) - OWNER_EDITABLE_FIELDS
            if restricted:
                raise ValidationError(
                    "Changes to name, description, categories or address require an amendment request"
                )
            return self.update_hours(user, stall_id, changes.get("hours"))

        stall = self.get_stall(stall_id, include_inactive=True)
        if "name" in changes and len(changes["name"].strip()) < 2:
            raise ValidationError("Stall name must be at least 2 characters")
        for field in ("name", "description", "food_categories", "hours"):
            if field in changes:
                setattr(stall, field, changes[field])
        if {"address", "latitude", "longitude"} & set(changes):
            location = stall.location
            if location is None:
                location = StallLocation(stall_id=stall.stall_id)
                self.db.add(location)
            for field in ("address", "latitude", "longitude"):
                if field in changes:
                    setattr(location, field, changes[field])

        AdminLogService(self.db).log_stall_change(user.user_id, stall.stall_id, "update",
                                                  ", ".join(sorted(changes)), ip_address)
        self.db.commit()
        self.db.refresh(stall)
        return stall

    def delete_stall(self, admin: User, stall_id: int, ip_address: Optional[str] = None) -> None:
        stall = self.get_stall(stall_id, include_inactive=True)
        name = stall.name
        try:
            paths = cleanup.delete_stalls(self.db, [stall.stall_id])
            AdminLogService(self.db).log_stall_change(admin.user_id, stall_id, "delete",
                                                      f"Deleted stall '{name}'", ip_address)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Deleting stall %s failed", stall_id)
            raise
        local_storage.remove_files(paths)
