"""Customer CRM: customers are users with role CUSTOMER."""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func, or_, cast, String
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.dates import utc_now
from atelier.core.exceptions import NotFoundError, BusinessRuleError, ConflictError
from atelier.models.custom_order import CustomOrder, CustomOrderPayment, Measurement
from atelier.models.order import Order, PaymentStatus
from atelier.models.payment import Payment
from atelier.models.user import User, UserRole, CustomerNote
from atelier.services.custom_order_service import CustomOrderService
from atelier.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class CustomerService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_customer(self, customer_id: uuid.UUID) -> User:
        customer = await self.db.get(User, customer_id)
        if customer is None or customer.role != UserRole.CUSTOMER.value:
            raise NotFoundError("Customer not found")
        return customer

    async def _check_unique(self, phone: Optional[str], email: Optional[str], exclude_id: Optional[uuid.UUID] = None) -> None:
        if phone:
            query = select(User.id).where(User.phone == phone)
            if exclude_id:
                query = query.where(User.id != exclude_id)
            if await self.db.scalar(query):
                raise ConflictError("A customer with this phone number already exists")
        if email:
            query = select(User.id).where(User.email == email.lower())
            if exclude_id:
                query = query.where(User.id != exclude_id)
            if await self.db.scalar(query):
                raise ConflictError("A user with this email already exists")

    async def list_customers(
        self,
        search: Optional[str] = None,
        tag: Optional[str] = None,
        source: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> dict:
        conditions = [User.role == UserRole.CUSTOMER.value]
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(
                User.name.ilike(pattern),
                User.phone.ilike(pattern),
                User.email.ilike(pattern),
            ))
        if tag:
            conditions.append(cast(User.tags, String).ilike(f'%"{tag}"%'))
        if source:
            conditions.append(User.customer_source == source.upper())

        total = await self.db.scalar(select(func.count(User.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(User)
            .where(*conditions)
            .order_by(User.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return {
            "items": list(result.scalars().all()),
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
        }

    async def create_customer(self, data: dict) -> User:
        """
        Create a customer without password.

        Raises:
            BusinessRuleError: name or phone missing
            ConflictError: phone or email already used
        """
        data = dict(data)
        if not data.get("name") or not data.get("phone"):
            raise BusinessRuleError("Name and phone are required")
        if data.get("email"):
            data["email"] = data["email"].lower()
        if data.get("customer_source"):
            data["customer_source"] = data["customer_source"].upper()
        await self._check_unique(data["phone"], data.get("email"))

        customer = User(**data, role=UserRole.CUSTOMER.value, password_hash=None)
        self.db.add(customer)
        await self.db.flush()
        logger.info(f"Customer {customer.name} ({customer.phone}) created")
        return customer

    async def update_customer(self, customer_id: uuid.UUID, changes: dict) -> User:
        customer = await self.get_customer(customer_id)
        changes = dict(changes)
        if changes.get("email"):
            changes["email"] = changes["email"].lower()
        if changes.get("customer_source"):
            changes["customer_source"] = changes["customer_source"].upper()
        await self._check_unique(
            changes.get("phone") if changes.get("phone") != customer.phone else None,
            changes.get("email") if changes.get("email") != customer.email else None,
            exclude_id=customer.id,
        )
        for field, value in changes.items():
            setattr(customer, field, value)
        await self.db.flush()
        return customer

    async def delete_customer(self, customer_id: uuid.UUID) -> None:
        """Deactivate; orders and custom orders keep referencing the customer."""
        customer = await self.get_customer(customer_id)
        customer.is_active = False
        await self.db.flush()

    async def customer_detail(self, customer_id: uuid.UUID) -> dict:
        customer = await self.get_customer(customer_id)

        orders_count = await self.db.scalar(select(func.count(Order.id)).where(Order.user_id == customer.id)) or 0
        custom_orders_count = await self.db.scalar(
            select(func.count(CustomOrder.id)).where(CustomOrder.customer_id == customer.id)
        ) or 0
        last_order_date = await self.db.scalar(select(func.max(Order.created_at)).where(Order.user_id == customer.id))

        return {
            "customer": customer,
            "orders_count": orders_count,
            "custom_orders_count": custom_orders_count,
            "total_spent": await self.total_spent(customer.id),
            "last_order_date": last_order_date,
            "latest_measurement": await CustomOrderService(self.db).latest_measurement(customer.id),
        }

    async def total_spent(self, customer_id: uuid.UUID) -> Decimal:
        orders_paid = await self.db.scalar(
            select(func.coalesce(func.sum(Payment.amount), 0))
            .join(Order, Order.id == Payment.order_id)
            .where(Order.user_id == customer_id, Payment.status == PaymentStatus.COMPLETED.value)
        )
        custom_paid = await self.db.scalar(
            select(func.coalesce(func.sum(CustomOrderPayment.amount), 0))
            .join(CustomOrder, CustomOrder.id == CustomOrderPayment.custom_order_id)
            .where(CustomOrder.customer_id == customer_id)
        )
        return Decimal(str(orders_paid or 0)) + Decimal(str(custom_paid or 0))

    async def customer_stats(self) -> dict:
        is_customer = User.role == UserRole.CUSTOMER.value
        now = utc_now()
        month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)

        total = await self.db.scalar(select(func.count(User.id)).where(is_customer)) or 0
        new_this_month = await self.db.scalar(
            select(func.count(User.id)).where(is_customer, User.created_at >= month_start)
        ) or 0
        rows = await self.db.execute(
            select(User.customer_source, func.count(User.id)).where(is_customer).group_by(User.customer_source)
        )
        return {
            "total": total,
            "new_this_month": new_this_month,
            "by_source": {(source or "UNKNOWN"): count for source, count in rows.all()},
        }

    # ==================== Measurements ====================

    async def list_measurements(self, customer_id: uuid.UUID) -> List[Measurement]:
        await self.get_customer(customer_id)
        return await CustomOrderService(self.db).list_measurements(customer_id)

    async def add_measurement(self, customer_id: uuid.UUID, data: dict, name: Optional[str] = None,
                              notes: Optional[str] = None, user: Optional[User] = None) -> Measurement:
        await self.get_customer(customer_id)
        return await CustomOrderService(self.db).add_measurement(customer_id, data, name, notes, user)

    async def latest_measurement(self, customer_id: uuid.UUID) -> Measurement:
        await self.get_customer(customer_id)
        measurement = await CustomOrderService(self.db).latest_measurement(customer_id)
        if measurement is None:
            raise NotFoundError("No measurements for this customer")
        return measurement

    # ==================== Notes ====================

    async def list_notes(self, customer_id: uuid.UUID) -> List[CustomerNote]:
        await self.get_customer(customer_id)
        result = await self.db.execute(
            select(CustomerNote)
            .where(CustomerNote.customer_id == customer_id)
            .order_by(CustomerNote.created_at.desc())
        )
        return list(result.scalars().all())

    async def add_note(self, customer_id: uuid.UUID, content: str, user: Optional[User] = None) -> CustomerNote:
        await self.get_customer(customer_id)
        if not content or not content.strip():
            raise BusinessRuleError("Note content is required")
        note = CustomerNote(
            customer_id=customer_id,
            content=content.strip(),
            author_id=user.id if user else None,
            author_name=user.name if user else None,
        )
        self.db.add(note)
        await self.db.flush()
        return note

    # ==================== Messaging ====================

    async def send_message(self, customer_id: uuid.UUID, channel: str, message: str) -> dict:
        customer = await self.get_customer(customer_id)
        phone = customer.whatsapp_number or customer.phone
        if not phone:
            raise BusinessRuleError("Customer has no phone number")
        return await NotificationService(self.db).send_manual(
            channel,
            phone,
            message,
            user_id=customer.id,
            name=customer.name,
        )
