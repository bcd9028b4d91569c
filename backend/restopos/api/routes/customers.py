"""Customer routes."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status

from restopos.core.rbac import Permission, StaffCapabilities, require_permission
from restopos.core.responses import paginated_response
from restopos.core.validators import LimitQuery, PositiveIntId, SkipQuery
from restopos.db.session import DbSession
from restopos.models.customer import Customer
from restopos.schemas.customer import CustomerCreate, CustomerUpdate
from restopos.services.customer_service import CustomerService

router = APIRouter()


def _customer_to_dict(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "name": customer.name,
        "phone": customer.phone,
        "email": customer.email,
        "is_active": not customer.is_deleted,
        "created_at": customer.created_at.isoformat() if customer.created_at else None,
    }


@router.get("/", dependencies=[Depends(require_permission(Permission.CUSTOMER_VIEW))])
def list_customers(
    db: DbSession,
    search: Optional[str] = None,
    include_deleted: bool = False,
    skip: SkipQuery = 0,
    limit: LimitQuery = 50,
):
    items, total = CustomerService(db).list(search=search, include_deleted=include_deleted, skip=skip, limit=limit)
    return paginated_response([_customer_to_dict(c) for c in items], total, skip, limit)


@router.get("/{customer_id}", dependencies=[Depends(require_permission(Permission.CUSTOMER_VIEW))])
def get_customer(customer_id: PositiveIntId, db: DbSession):
    return _customer_to_dict(CustomerService(db).get(customer_id))


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_customer(body: CustomerCreate, caps: StaffCapabilities, db: DbSession):
    return _customer_to_dict(CustomerService(db).create(caps, body.name, body.phone, body.email))


@router.patch("/{customer_id}")
def update_customer(customer_id: PositiveIntId, body: CustomerUpdate, caps: StaffCapabilities, db: DbSession):
    customer = CustomerService(db).update(caps, customer_id, **body.model_dump(exclude_unset=True))
    return _customer_to_dict(customer)


@router.post("/{customer_id}/deactivate")
def deactivate_customer(customer_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return _customer_to_dict(CustomerService(db).soft_delete(caps, customer_id))


@router.post("/{customer_id}/restore")
def restore_customer(customer_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return _customer_to_dict(CustomerService(db).restore(caps, customer_id))


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(customer_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    CustomerService(db).delete(caps, customer_id)
