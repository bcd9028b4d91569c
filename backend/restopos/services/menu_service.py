"""Menu catalogue: categories and menu items."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from restopos.core.exceptions import ConflictError, NotFoundError, ValidationError
from restopos.core.rbac import Capabilities, Permission
from restopos.models.menu import Category, MenuItem
from restopos.models.order import OrderItem
from restopos.services.media_service import MediaService

logger = logging.getLogger(__name__)

MENU_IMAGE_FOLDER = "menu-items"


class CategoryService:
    """Service for menu categories."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, category_id: int, include_deleted: bool = False) -> Category:
        category = self.db.get(Category, category_id)
        if category is None or (category.is_deleted and not include_deleted):
            raise NotFoundError("Category", category_id)
        return category

    def list(self, active_only: bool = True) -> List[Category]:
        query = self.db.query(Category).filter(Category.not_deleted())
        if active_only:
            query = query.filter(Category.is_active.is_(True))
        return query.order_by(Category.name).all()

    def _ensure_name_free(self, name: str, exclude_id: Optional[int] = None) -> None:
        query = self.db.query(Category.id).filter(
            func.lower(Category.name) == name.strip().lower(),
            Category.not_deleted(),
        )
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"Category '{name}' already exists")

    def create(self, caps: Capabilities, name: str, description: Optional[str] = None) -> Category:
        caps.require(Permission.MENU_MANAGE)
        self._ensure_name_free(name)
        category = Category(name=name.strip(), description=description, is_active=True)
        self.db.add(category)
        self.db.commit()
        self.db.refresh(category)
        return category

    def update(
        self,
        caps: Capabilities,
        category_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Category:
        caps.require(Permission.MENU_MANAGE)
        category = self.get(category_id)
        if name is not None and name.strip().lower() != category.name.lower():
            self._ensure_name_free(name, exclude_id=category.id)
            category.name = name.strip()
        if description is not None:
            category.description = description
        if is_active is not None:
            category.is_active = is_active
        self.db.commit()
        self.db.refresh(category)
        return category

    def soft_delete(self, caps: Capabilities, category_id: int) -> Category:
        caps.require(Permission.MENU_MANAGE)
        category = self.get(category_id)
        category.soft_delete()
        category.is_active = False
        self.db.commit()
        self.db.refresh(category)
        return category

    def delete(self, caps: Capabilities, category_id: int) -> None:
        caps.require(Permission.MENU_MANAGE)
        category = self.get(category_id, include_deleted=True)
        if self.db.query(MenuItem.id).filter(MenuItem.category_id == category.id).first():
            raise ConflictError(
                f"Category '{category.name}' still has menu items; move or delete them first"
            )
        self.db.delete(category)
        self.db.commit()


class MenuItemService:
    """Service for menu items."""

    def __init__(self, db: Session, media: Optional[MediaService] = None):
        self.db = db
        self.media = media

    def get(self, item_id: int) -> MenuItem:
        item = self.db.get(MenuItem, item_id)
        if item is None:
            raise NotFoundError("Menu item", item_id)
        return item

    def list(
        self,
        search: Optional[str] = None,
        category_id: Optional[int] = None,
        is_available: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[MenuItem], int]:
        query = self.db.query(MenuItem)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(MenuItem.name.ilike(pattern), MenuItem.description.ilike(pattern)))
        if category_id is not None:
            query = query.filter(MenuItem.category_id == category_id)
        if is_available is not None:
            query = query.filter(MenuItem.is_available.is_(is_available))
        total = query.count()
        items = query.order_by(MenuItem.name, MenuItem.id).offset(skip).limit(limit).all()
        return items, total

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        category = self.db.get(Category, category_id)
        if category is None or category.is_deleted:
            raise ValidationError(f"Category {category_id} does not exist")

    def create(
        self,
        caps: Capabilities,
        name: str,
        price: Decimal,
        category_id: Optional[int] = None,
        description: Optional[str] = None,
        is_available: bool = True,
    ) -> MenuItem:
        caps.require(Permission.MENU_MANAGE)
        self._check_category(category_id)
        item = MenuItem(
            name=name,
            price=price,
            category_id=category_id,
            description=description,
            is_available=is_available,
        )
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def update(self, caps: Capabilities, item_id: int, **changes: Any) -> MenuItem:
        caps.require(Permission.MENU_MANAGE)
        item = self.get(item_id)
        if "category_id" in changes:
            self._check_category(changes["category_id"])
        for field in ("name", "description", "price", "category_id", "is_available"):
            if field in changes:
                setattr(item, field, changes[field])
        self.db.commit()
        self.db.refresh(item)
        return item

    def set_availability(self, caps: Capabilities, item_id: int, is_available: bool) -> MenuItem:
        caps.require(Permission.MENU_MANAGE)
        item = self.get(item_id)
        item.is_available = is_available
        self.db.commit()
        self.db.refresh(item)
        logger.info(f"Menu item {item.id} availability -> {is_available}")
        return item

    def delete(self, caps: Capabilities, item_id: int) -> None:
        caps.require(Permission.MENU_MANAGE)
        item = self.get(item_id)
        if self.db.query(OrderItem.id).filter(OrderItem.menu_item_id == item.id).first():
            raise ConflictError(
                f"Menu item '{item.name}' appears on orders; mark it unavailable instead"
            )
        public_id = item.image_public_id
        self.db.delete(item)
        self.db.commit()
        if public_id and self.media is not None:
            self.media.delete(public_id)

    def upload_image(self, caps: Capabilities, item_id: int, content: bytes, filename: str) -> MenuItem:
        caps.require(Permission.MENU_MANAGE)
        item = self.get(item_id)
        media = self.media or MediaService()
        uploaded = media.upload(content, filename, folder=MENU_IMAGE_FOLDER)
        previous = item.image_public_id
        item.image_url = uploaded["url"]
        item.image_public_id = uploaded["public_id"]
        self.db.commit()
        self.db.refresh(item)
        if previous and previous != item.image_public_id:
            media.delete(previous)
        return item

    def delete_image(self, caps: Capabilities, item_id: int) -> MenuItem:
        caps.require(Permission.MENU_MANAGE)
        item = self.get(item_id)
        if not item.image_public_id:
            raise NotFoundError("Image", message=f"Menu item {item.id} has no image")
        (self.media or MediaService()).delete(item.image_public_id)
        item.image_url = None
        item.image_public_id = None
        self.db.commit()
        self.db.refresh(item)
        return item

    def customer_menu(self) -> List[Dict[str, Any]]:
        """Available items grouped by active category, for the guest menu."""
        categories = (
            self.db.query(Category)
            .options(selectinload(Category.items))
            .filter(Category.not_deleted(), Category.is_active.is_(True))
            .order_by(Category.name)
            .all()
        )
        menu = []
        for category in categories:
            items = sorted((i for i in category.items if i.is_available), key=lambda i: i.name)
            if not items:
                continue
            menu.append({
                "id": category.id,
                "name": category.name,
                "description": category.description,
                "items": [serialize_menu_item(i) for i in items],
            })
        return menu


def serialize_menu_item(item: MenuItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "price": str(item.price),
        "category_id": item.category_id,
        "is_available": item.is_available,
        "image_url": item.image_url,
    }
