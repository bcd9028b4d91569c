"""Menu item routes, including image upload."""

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile, status

from restopos.core.rbac import Permission, StaffCapabilities, require_permission
from restopos.core.responses import paginated_response
from restopos.core.validators import LimitQuery, PositiveIntId, SkipQuery
from restopos.db.session import DbSession
from restopos.schemas.menu import AvailabilityUpdate, MenuItemCreate, MenuItemUpdate
from restopos.services.media_service import MAX_IMAGE_BYTES, MediaService
from restopos.services.menu_service import MenuItemService, serialize_menu_item

router = APIRouter()


def get_media_service() -> MediaService:
    return MediaService()


@router.get("/", dependencies=[Depends(require_permission(Permission.MENU_VIEW))])
def list_menu_items(
    db: DbSession,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    is_available: Optional[bool] = None,
    skip: SkipQuery = 0,
    limit: LimitQuery = 50,
):
    items, total = MenuItemService(db).list(
        search=search, category_id=category_id, is_available=is_available, skip=skip, limit=limit,
    )
    return paginated_response([serialize_menu_item(i) for i in items], total, skip, limit)


@router.get("/{item_id}", dependencies=[Depends(require_permission(Permission.MENU_VIEW))])
def get_menu_item(item_id: PositiveIntId, db: DbSession):
    return serialize_menu_item(MenuItemService(db).get(item_id))


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_menu_item(body: MenuItemCreate, caps: StaffCapabilities, db: DbSession):
    item = MenuItemService(db).create(
        caps,
        name=body.name,
        price=body.price,
        category_id=body.category_id,
        description=body.description,
        is_available=body.is_available,
    )
    return serialize_menu_item(item)


@router.patch("/{item_id}")
def update_menu_item(item_id: PositiveIntId, body: MenuItemUpdate, caps: StaffCapabilities, db: DbSession):
    item = MenuItemService(db).update(caps, item_id, **body.model_dump(exclude_unset=True))
    return serialize_menu_item(item)


@router.patch("/{item_id}/availability")
def set_availability(item_id: PositiveIntId, body: AvailabilityUpdate, caps: StaffCapabilities, db: DbSession):
    return serialize_menu_item(MenuItemService(db).set_availability(caps, item_id, body.is_available))


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_menu_item(
    item_id: PositiveIntId,
    caps: StaffCapabilities,
    db: DbSession,
    media: MediaService = Depends(get_media_service),
):
    MenuItemService(db, media=media).delete(caps, item_id)


@router.post("/{item_id}/image")
def upload_image(
    item_id: PositiveIntId,
    caps: StaffCapabilities,
    db: DbSession,
    file: UploadFile = File(...),
    media: MediaService = Depends(get_media_service),
):
    content = file.file.read(MAX_IMAGE_BYTES + 1)
    item = MenuItemService(db, media=media).upload_image(caps, item_id, content, file.filename or "")
    return serialize_menu_item(item)


@router.delete("/{item_id}/image")
def delete_image(
    item_id: PositiveIntId,
    caps: StaffCapabilities,
    db: DbSession,
    media: MediaService = Depends(get_media_service),
):
    return serialize_menu_item(MenuItemService(db, media=media).delete_image(caps, item_id))
