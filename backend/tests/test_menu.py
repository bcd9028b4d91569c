"""Tests for the menu catalogue and menu images."""

import pytest
from decimal import Decimal

from minio.error import S3Error

from restopos.api.routes.menu_items import get_media_service
from restopos.core.exceptions import ServiceUnavailableError, ValidationError
from restopos.main import app
from restopos.services.media_service import MAX_IMAGE_BYTES, MediaService


class FakeMinio:
    """Records put/remove calls instead of talking to a bucket."""

    def __init__(self, fail: bool = False):
        self.objects = {}
        self.deleted = []
        self.fail = fail

    def put_object(self, bucket_name, object_name, data, length, content_type="application/octet-stream"):
        if self.fail:
            raise S3Error(code="InternalError", message="boom", resource=object_name,
                          request_id="req-1", host_id="host-1", response=None)
        self.objects[object_name] = {"bucket": bucket_name, "body": data.read(length), "content_type": content_type}

    def remove_object(self, bucket_name, object_name):
        self.deleted.append(object_name)
        self.objects.pop(object_name, None)


# ============== Categories ==============

class TestCategories:
    def test_create_and_list(self, client, manager_headers, waiter_headers):
        res = client.post("/api/v1/categories/", headers=manager_headers,
                          json={"name": "Desserts", "description": "Sweet things"})
        assert res.status_code == 201
        assert res.json()["is_active"] is True
        names = [c["name"] for c in client.get("/api/v1/categories/", headers=waiter_headers).json()]
        assert names == ["Desserts"]

    def test_duplicate_name(self, client, manager_headers, menu):
        res = client.post("/api/v1/categories/", headers=manager_headers, json={"name": "mains"})
        assert res.status_code == 409

    def test_waiter_cannot_manage(self, client, waiter_headers):
        assert client.post("/api/v1/categories/", headers=waiter_headers, json={"name": "Soups"}).status_code == 403

    def test_update(self, client, manager_headers, menu):
        res = client.patch(f"/api/v1/categories/{menu['drinks'].id}", headers=manager_headers,
                           json={"name": "Beverages", "is_active": False})
        assert res.status_code == 200
        assert res.json()["name"] == "Beverages"
        active = client.get("/api/v1/categories/", headers=manager_headers).json()
        assert [c["name"] for c in active] == ["Mains"]
        everything = client.get("/api/v1/categories/?active_only=false", headers=manager_headers).json()
        assert len(everything) == 2

    def test_soft_delete_hides_category(self, client, manager_headers, menu):
        category_id = menu["drinks"].id
        res = client.post(f"/api/v1/categories/{category_id}/deactivate", headers=manager_headers)
        assert res.status_code == 200
        assert res.json()["is_active"] is False
        assert client.get(f"/api/v1/categories/{category_id}", headers=manager_headers).status_code == 404

    def test_delete_blocked_by_items(self, client, manager_headers, menu):
        res = client.delete(f"/api/v1/categories/{menu['drinks'].id}", headers=manager_headers)
        assert res.status_code == 409

    def test_delete_empty_category(self, client, manager_headers):
        category = client.post("/api/v1/categories/", headers=manager_headers, json={"name": "Specials"}).json()
        assert client.delete(f"/api/v1/categories/{category['id']}", headers=manager_headers).status_code == 204
        assert client.get(f"/api/v1/categories/{category['id']}", headers=manager_headers).status_code == 404


# ============== Menu items ==============

class TestMenuItems:
    def test_create(self, client, manager_headers, menu):
        res = client.post("/api/v1/menu-items/", headers=manager_headers, json={
            "name": "Bun Cha", "price": "12.50", "category_id": menu["mains"].id, "description": "Grilled pork",
        })
        assert res.status_code == 201, res.text
        data = res.json()
        assert Decimal(data["price"]) == Decimal("12.50")
        assert data["is_available"] is True
        assert data["image_url"] is None

    def test_negative_price(self, client, manager_headers):
        res = client.post("/api/v1/menu-items/", headers=manager_headers, json={"name": "Freebie", "price": "-1"})
        assert res.status_code == 422

    def test_unknown_category(self, client, manager_headers):
        res = client.post("/api/v1/menu-items/", headers=manager_headers,
                          json={"name": "Banh Mi", "price": "4.00", "category_id": 9999})
        assert res.status_code == 422

    def test_list_and_filters(self, client, waiter_headers, menu):
        res = client.get("/api/v1/menu-items/", headers=waiter_headers).json()
        assert res["total"] == 3
        assert [i["name"] for i in res["items"]] == ["Iced Tea", "Pho Bo", "Seasonal Special"]
        res = client.get("/api/v1/menu-items/?is_available=false", headers=waiter_headers).json()
        assert [i["name"] for i in res["items"]] == ["Seasonal Special"]
        res = client.get("/api/v1/menu-items/?search=pho", headers=waiter_headers).json()
        assert res["total"] == 1
        res = client.get(f"/api/v1/menu-items/?category_id={menu['drinks'].id}", headers=waiter_headers).json()
        assert [i["name"] for i in res["items"]] == ["Iced Tea"]

    def test_update_price(self, client, manager_headers, menu):
        res = client.patch(f"/api/v1/menu-items/{menu['pho'].id}", headers=manager_headers, json={"price": "11.00"})
        assert res.status_code == 200
        assert Decimal(res.json()["price"]) == Decimal("11.00")

    def test_toggle_availability(self, client, manager_headers, menu):
        res = client.patch(f"/api/v1/menu-items/{menu['special'].id}/availability", headers=manager_headers,
                           json={"is_available": True})
        assert res.status_code == 200
        assert res.json()["is_available"] is True

    def test_delete_unused_item(self, client, manager_headers, menu):
        assert client.delete(f"/api/v1/menu-items/{menu['special'].id}", headers=manager_headers).status_code == 204
        assert client.get(f"/api/v1/menu-items/{menu['special'].id}", headers=manager_headers).status_code == 404

    def test_delete_blocked_by_orders(self, client, manager_headers, menu, open_session):
        client.post("/api/v1/customer/orders", headers=open_session["guest_headers"],
                    json={"items": [{"menu_item_id": menu["pho"].id}]})
        res = client.delete(f"/api/v1/menu-items/{menu['pho'].id}", headers=manager_headers)
        assert res.status_code == 409
        assert "mark it unavailable" in res.json()["detail"]

    def test_kitchen_can_view_not_manage(self, client, kitchen_headers, menu):
        assert client.get(f"/api/v1/menu-items/{menu['pho'].id}", headers=kitchen_headers).status_code == 200
        res = client.patch(f"/api/v1/menu-items/{menu['pho'].id}/availability", headers=kitchen_headers,
                           json={"is_available": False})
        assert res.status_code == 403


class TestCustomerMenu:
    def test_grouped_by_category(self, client, menu, open_session):
        res = client.get("/api/v1/customer/menu", headers=open_session["guest_headers"])
        assert res.status_code == 200
        groups = {g["name"]: [i["name"] for i in g["items"]] for g in res.json()}
        assert groups == {"Drinks": ["Iced Tea"], "Mains": ["Pho Bo"]}

    def test_inactive_category_hidden(self, client, db_session, menu, open_session):
        menu["drinks"].is_active = False
        db_session.commit()
        res = client.get("/api/v1/customer/menu", headers=open_session["guest_headers"])
        assert [g["name"] for g in res.json()] == ["Mains"]

    def test_requires_session(self, client, menu):
        assert client.get("/api/v1/customer/menu").status_code == 401


# ============== Images ==============

class TestMenuImages:
    @pytest.fixture
    def storage(self):
        fake = FakeMinio()
        media = MediaService(client=fake, bucket="menu-bucket", public_url="https://cdn.phohouse.vn/")
        app.dependency_overrides[get_media_service] = lambda: media
        return fake

    def _upload(self, client, headers, item_id, name="pho.jpg", content=b"\xff\xd8\xff jpeg"):
        return client.post(f"/api/v1/menu-items/{item_id}/image", headers=headers,
                           files={"file": (name, content, "image/jpeg")})

    def test_upload(self, client, manager_headers, menu, storage):
        res = self._upload(client, manager_headers, menu["pho"].id)
        assert res.status_code == 200, res.text
        url = res.json()["image_url"]
        assert url.startswith("https://cdn.phohouse.vn/menu-items/")
        [key] = storage.objects
        assert url.endswith(key)
        assert storage.objects[key]["content_type"] == "image/jpeg"

    def test_replacing_image_deletes_old_object(self, client, manager_headers, menu, storage):
        self._upload(client, manager_headers, menu["pho"].id)
        [first_key] = storage.objects
        self._upload(client, manager_headers, menu["pho"].id, name="pho2.png")
        assert storage.deleted == [first_key]
        assert len(storage.objects) == 1

    def test_delete_image(self, client, manager_headers, menu, storage):
        self._upload(client, manager_headers, menu["pho"].id)
        res = client.delete(f"/api/v1/menu-items/{menu['pho'].id}/image", headers=manager_headers)
        assert res.status_code == 200
        assert res.json()["image_url"] is None
        assert storage.objects == {}
        res = client.delete(f"/api/v1/menu-items/{menu['pho'].id}/image", headers=manager_headers)
        assert res.status_code == 404

    def test_deleting_item_removes_image(self, client, manager_headers, menu, storage):
        self._upload(client, manager_headers, menu["special"].id)
        assert client.delete(f"/api/v1/menu-items/{menu['special'].id}", headers=manager_headers).status_code == 204
        assert storage.objects == {}

    def test_rejects_non_image(self, client, manager_headers, menu, storage):
        res = self._upload(client, manager_headers, menu["pho"].id, name="menu.pdf")
        assert res.status_code == 422
        assert storage.objects == {}

    def test_storage_not_configured(self, client, manager_headers, menu):
        res = self._upload(client, manager_headers, menu["pho"].id)
        assert res.status_code == 503
        assert res.json()["code"] == "service_unavailable"


class TestMediaService:
    def test_requires_bucket(self):
        with pytest.raises(ServiceUnavailableError):
            MediaService(client=FakeMinio(), bucket="").upload(b"img", "a.png")

    @pytest.mark.parametrize("name,content", [
        ("notes.txt", b"hello"),
        ("empty.png", b""),
        ("huge.jpg", b"x" * (MAX_IMAGE_BYTES + 1)),
    ])
    def test_rejects_bad_uploads(self, name, content):
        media = MediaService(client=FakeMinio(), bucket="b", public_url="https://cdn")
        with pytest.raises(ValidationError):
            media.upload(content, name)

    def test_key_layout(self):
        fake = FakeMinio()
        media = MediaService(client=fake, bucket="b", public_url="https://cdn")
        uploaded = media.upload(b"img", "Photo.WEBP", folder="menu-items")
        assert uploaded["public_id"].startswith("menu-items/")
        assert uploaded["public_id"].endswith(".webp")
        assert uploaded["url"] == f"https://cdn/{uploaded['public_id']}"
        assert fake.objects[uploaded["public_id"]]["bucket"] == "b"

    def test_storage_errors_surface_as_unavailable(self):
        media = MediaService(client=FakeMinio(fail=True), bucket="b", public_url="https://cdn")
        with pytest.raises(ServiceUnavailableError):
            media.upload(b"img", "a.png")
