"""Customer records."""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from restopos.core.exceptions import ConflictError, NotFoundError
from restopos.core.rbac import Capabilities, Permission
from restopos.models.customer import Customer
from restopos.models.reservation import Reservation

logger = logging.getLogger(__name__)


class CustomerService:
    """Service for customers."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, customer_id: int, include_deleted: bool = False) -> Customer:
        customer = self.db.get(Customer, customer_id)
        if customer is None or (customer.is_deleted and not include_deleted):
            raise NotFoundError("Customer", customer_id)
        return customer

    def list(
        self,
        search: Optional[str] = None,
        include_deleted: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Customer], int]:
        query = self.db.query(Customer)
        if not include_deleted:
            query = query.filter(Customer.not_deleted())
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    Customer.name.ilike(pattern),
                    Customer.phone.ilike(pattern),
                    Customer.email.ilike(pattern),
                )
            )
        total = query.count()
        items = query.order_by(Customer.name, Customer.id).offset(skip).limit(limit).all()
        return items, total

    def _ensure_phone_free(self, phone: str, exclude_id: Optional[int] = None) -> None:
        query = self.db.query(Customer.id).filter(Customer.phone == phone)
        if exclude_id is not None:
            query = query.filter(Customer.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"A customer with phone {phone} already exists")

    def create(self, caps: Capabilities, name: str, phone: str, email: Optional[str] = None) -> Customer:
        caps.require(Permission.CUSTOMER_MANAGE)
        self._ensure_phone_free(phone)
        customer = Customer(name=name, phone=phone, email=email)
        self.db.add(customer)
        self.db.commit()
        self.db.refresh(customer)
        return customer

    def update(
        self,
        caps: Capabilities,
        customer_id: int,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Customer:
        caps.require(Permission.CUSTOMER_MANAGE)
        customer = self.get(customer_id)
        if phone is not None and phone != customer.phone:
            self._ensure_phone_free(phone, exclude_id=customer.id)
            customer.phone = phone
        if name is not None:
            customer.name = name
        if email is not None:
            customer.email = email
        self.db.commit()
        self.db.refresh(customer)
        return customer

    def soft_delete(self, caps: Capabilities, customer_id: int) -> Customer:
        caps.require(Permission.CUSTOMER_MANAGE)
        customer = self.get(customer_id)
        customer.soft_delete()
        self.db.commit()
        self.db.refresh(customer)
        return customer

    def restore(self, caps: Capabilities, customer_id: int) -> Customer:
        caps.require(Permission.CUSTOMER_MANAGE)
        customer = self.get(customer_id, include_deleted=True)
        customer.restore()
        self.db.commit()
        self.db.refresh(customer)
        return customer

    def delete(self, caps: Capabilities, customer_id: int) -> None:
        caps.require(Permission.CUSTOMER_MANAGE)
        customer = self.get(customer_id, include_deleted=True)
        if self.db.query(Reservation.id).filter(Reservation.customer_id == customer.id).first():
            raise ConflictError("Customer has reservations; deactivate instead of deleting")
        self.db.delete(customer)
        self.db.commit()

    def find_or_create(self, name: str, phone: str, email: Optional[str] = None) -> Customer:
        """Look a customer up by phone, creating the record on first contact.

        Flushes but does not commit; the caller's transaction owns the row.
        """
        customer = self.db.query(Customer).filter(Customer.phone == phone).first()
        if customer is None:
            customer = Customer(name=name, phone=phone, email=email)
            self.db.add(customer)
            self.db.flush()
            logger.info(f"Created customer {customer.id} for phone {phone}")
        elif customer.is_deleted:
            customer.restore()
        return customer
