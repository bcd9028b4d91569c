"""Menu category routes."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from restopos.core.rbac import Permission, StaffCapabilities, require_permission
from restopos.core.validators import PositiveIntId
from restopos.db.session import DbSession
from restopos.models.menu import Category
from restopos.schemas.menu import CategoryCreate, CategoryUpdate
from restopos.services.menu_service import CategoryService

router = APIRouter()


def _category_to_dict(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "description": category.description,
        "is_active": category.is_active,
    }


@router.get("/", dependencies=[Depends(require_permission(Permission.MENU_VIEW))])
def list_categories(db: DbSession, active_only: bool = True):
    return [_category_to_dict(c) for c in CategoryService(db).list(active_only=active_only)]


@router.get("/{category_id}", dependencies=[Depends(require_permission(Permission.MENU_VIEW))])
def get_category(category_id: PositiveIntId, db: DbSession):
    return _category_to_dict(CategoryService(db).get(category_id))


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_category(body: CategoryCreate, caps: StaffCapabilities, db: DbSession):
    return _category_to_dict(CategoryService(db).create(caps, body.name, body.description))


@router.patch("/{category_id}")
def update_category(category_id: PositiveIntId, body: CategoryUpdate, caps: StaffCapabilities, db: DbSession):
    category = CategoryService(db).update(caps, category_id, **body.model_dump(exclude_unset=True))
    return _category_to_dict(category)


@router.post("/{category_id}/deactivate")
def deactivate_category(category_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return _category_to_dict(CategoryService(db).soft_delete(caps, category_id))


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(category_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    CategoryService(db).delete(caps, category_id)
