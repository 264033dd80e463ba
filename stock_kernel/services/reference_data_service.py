"""
ReferenceDataService -- warehouses, products and customers.

Responsibility:
    CRUD for the reference entities every stock document points at, and the
    ``require_active_*`` guards the document services call before they
    accept a warehouse, product or customer.

Invariants enforced:
    - Customer debt is never written here.  ``current_debt`` moves only
      through SalesOrderService.
    - Only ACTIVE entities pass the ``require_active_*`` guards.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import validate_quantity
from stock_kernel.exceptions import (
    CustomerNotFoundError,
    InactiveEntityError,
    ProductNotFoundError,
    ValidationError,
    WarehouseNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.customer import Customer, CustomerStatus
from stock_kernel.models.product import Product, ProductStatus
from stock_kernel.models.warehouse import Warehouse, WarehouseStatus, WarehouseType
from stock_kernel.services.base import BaseService

logger = get_logger("services.reference_data")


@dataclass(frozen=True)
class WarehouseInfo:
    id: UUID
    warehouse_code: str
    name: str
    warehouse_type: str
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == WarehouseStatus.ACTIVE


@dataclass(frozen=True)
class ProductInfo:
    id: UUID
    sku: str
    name: str
    unit: str
    status: str
    tax_rate: Decimal
    purchase_price: Decimal
    selling_price: Decimal
    min_stock_level: Decimal | int

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE


@dataclass(frozen=True)
class CustomerInfo:
    """
    Immutable view of a customer.

    current_debt is a snapshot; re-read after order or payment operations.
    """

    id: UUID
    customer_code: str
    name: str
    status: str
    credit_limit: Decimal
    current_debt: Decimal
    debt_updated_at: datetime | None

    @property
    def is_active(self) -> bool:
        return self.status == CustomerStatus.ACTIVE

    @property
    def available_credit(self) -> Decimal:
        return max(self.credit_limit - self.current_debt, Decimal("0"))


class ReferenceDataService(BaseService[Warehouse]):
    """Reference data management.  Public methods return Info DTOs."""

    # ------------------------------------------------------------------
    # DTO conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _warehouse_dto(w: Warehouse) -> WarehouseInfo:
        return WarehouseInfo(
            id=w.id,
            warehouse_code=w.warehouse_code,
            name=w.name,
            warehouse_type=WarehouseType(w.warehouse_type).value,
            status=WarehouseStatus(w.status).value,
        )

    @staticmethod
    def _product_dto(p: Product) -> ProductInfo:
        return ProductInfo(
            id=p.id,
            sku=p.sku,
            name=p.name,
            unit=p.unit,
            status=ProductStatus(p.status).value,
            tax_rate=p.tax_rate,
            purchase_price=p.purchase_price,
            selling_price=p.selling_price,
            min_stock_level=p.min_stock_level,
        )

    @staticmethod
    def _customer_dto(c: Customer) -> CustomerInfo:
        return CustomerInfo(
            id=c.id,
            customer_code=c.customer_code,
            name=c.name,
            status=CustomerStatus(c.status).value,
            credit_limit=c.credit_limit,
            current_debt=c.current_debt,
            debt_updated_at=c.debt_updated_at,
        )

    # ------------------------------------------------------------------
    # Lookups (ORM, for peer services)
    # ------------------------------------------------------------------

    def _get_warehouse(self, warehouse_id: UUID) -> Warehouse:
        warehouse = self.session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise WarehouseNotFoundError(warehouse_id)
        return warehouse

    def _get_product(self, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def _get_customer(self, customer_id: UUID, refresh: bool = False) -> Customer:
        if refresh:
            customer = self.session.execute(
                select(Customer)
                .where(Customer.id == customer_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        else:
            customer = self.session.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    def require_active_warehouse(self, warehouse_id: UUID) -> Warehouse:
        warehouse = self._get_warehouse(warehouse_id)
        if not warehouse.is_active:
            raise InactiveEntityError("Warehouse", warehouse_id, WarehouseStatus(warehouse.status).value)
        return warehouse

    def require_active_product(self, product_id: UUID) -> Product:
        product = self._get_product(product_id)
        if not product.is_active:
            raise InactiveEntityError("Product", product_id, ProductStatus(product.status).value)
        return product

    def require_active_customer(self, customer_id: UUID) -> Customer:
        customer = self._get_customer(customer_id, refresh=True)
        if not customer.is_active:
            raise InactiveEntityError("Customer", customer_id, CustomerStatus(customer.status).value)
        return customer

    # ------------------------------------------------------------------
    # Warehouses
    # ------------------------------------------------------------------

    def create_warehouse(
        self,
        warehouse_code: str,
        name: str,
        actor_id: UUID,
        warehouse_type: WarehouseType = WarehouseType.MAIN,
        address: str | None = None,
    ) -> WarehouseInfo:
        warehouse = Warehouse(
            warehouse_code=warehouse_code,
            name=name,
            warehouse_type=warehouse_type,
            address=address,
            status=WarehouseStatus.ACTIVE,
            created_by_id=actor_id,
        )
        self.session.add(warehouse)
        self.session.flush()
        logger.info(
            "warehouse_created",
            extra={"warehouse_id": str(warehouse.id), "warehouse_code": warehouse_code},
        )
        return self._warehouse_dto(warehouse)

    def get_warehouse(self, warehouse_id: UUID) -> WarehouseInfo:
        return self._warehouse_dto(self._get_warehouse(warehouse_id))

    def list_warehouses(self, active_only: bool = True) -> list[WarehouseInfo]:
        stmt = select(Warehouse)
        if active_only:
            stmt = stmt.where(Warehouse.status == WarehouseStatus.ACTIVE)
        stmt = stmt.order_by(Warehouse.warehouse_code)
        return [self._warehouse_dto(w) for w in self.session.execute(stmt).scalars()]

    def set_warehouse_status(
        self, warehouse_id: UUID, status: WarehouseStatus, actor_id: UUID
    ) -> WarehouseInfo:
        warehouse = self._get_warehouse(warehouse_id)
        warehouse.status = status
        warehouse.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "warehouse_status_changed",
            extra={"warehouse_id": str(warehouse_id), "status": WarehouseStatus(status).value},
        )
        return self._warehouse_dto(warehouse)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def create_product(
        self,
        sku: str,
        name: str,
        actor_id: UUID,
        unit: str = "pcs",
        tax_rate: Decimal = Decimal("0"),
        purchase_price: Decimal = Decimal("0"),
        selling_price: Decimal = Decimal("0"),
        min_stock_level: Decimal | int = 0,
    ) -> ProductInfo:
        if not Decimal("0") <= tax_rate <= Decimal("100"):
            raise ValidationError("tax_rate must be between 0 and 100")
        validate_quantity(min_stock_level)
        if min_stock_level < 0:
            raise ValidationError("min_stock_level cannot be negative")

        product = Product(
            sku=sku,
            name=name,
            unit=unit,
            status=ProductStatus.ACTIVE,
            tax_rate=tax_rate,
            purchase_price=purchase_price,
            selling_price=selling_price,
            min_stock_level=min_stock_level,
            created_by_id=actor_id,
        )
        self.session.add(product)
        self.session.flush()
        logger.info(
            "product_created",
            extra={"product_id": str(product.id), "sku": sku},
        )
        return self._product_dto(product)

    def get_product(self, product_id: UUID) -> ProductInfo:
        return self._product_dto(self._get_product(product_id))

    def set_product_status(
        self, product_id: UUID, status: ProductStatus, actor_id: UUID
    ) -> ProductInfo:
        product = self._get_product(product_id)
        product.status = status
        product.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "product_status_changed",
            extra={"product_id": str(product_id), "status": ProductStatus(status).value},
        )
        return self._product_dto(product)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def create_customer(
        self,
        customer_code: str,
        name: str,
        actor_id: UUID,
        credit_limit: Decimal = Decimal("0"),
        phone: str | None = None,
        email: str | None = None,
    ) -> CustomerInfo:
        if credit_limit < 0:
            raise ValidationError("credit_limit cannot be negative")

        customer = Customer(
            customer_code=customer_code,
            name=name,
            phone=phone,
            email=email,
            status=CustomerStatus.ACTIVE,
            credit_limit=credit_limit,
            current_debt=Decimal("0"),
            created_by_id=actor_id,
        )
        self.session.add(customer)
        self.session.flush()
        logger.info(
            "customer_created",
            extra={"customer_id": str(customer.id), "customer_code": customer_code},
        )
        return self._customer_dto(customer)

    def get_customer(self, customer_id: UUID) -> CustomerInfo:
        return self._customer_dto(self._get_customer(customer_id, refresh=True))

    def set_customer_status(
        self, customer_id: UUID, status: CustomerStatus, actor_id: UUID
    ) -> CustomerInfo:
        customer = self._get_customer(customer_id)
        customer.status = status
        customer.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "customer_status_changed",
            extra={"customer_id": str(customer_id), "status": CustomerStatus(status).value},
        )
        return self._customer_dto(customer)

    def set_credit_limit(
        self, customer_id: UUID, credit_limit: Decimal, actor_id: UUID
    ) -> CustomerInfo:
        if credit_limit < 0:
            raise ValidationError("credit_limit cannot be negative")
        customer = self._get_customer(customer_id)
        customer.credit_limit = credit_limit
        customer.updated_by_id = actor_id
        self.session.flush()
        return self._customer_dto(customer)
