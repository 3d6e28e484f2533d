from sqlalchemy.orm import Session

from stock_ledger.models.product import Product, Supplier
from stock_ledger.schemas.product import ProductCreate, SupplierCreate
from stock_ledger.services.exceptions import LedgerValidationError, ProductNotFoundError


def create_product(db: Session, data: ProductCreate) -> Product:
    if get_product_by_sku(db, data.sku):
        raise LedgerValidationError("sku", f"Product with SKU {data.sku} already exists")
    product = Product(
        sku=data.sku,
        name=data.name,
        category=data.category,
        unit=data.unit,
        minimum_stock=data.minimum_stock,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def get_product(db: Session, product_id: str) -> Product | None:
    return db.query(Product).filter(Product.id == product_id).first()


def require_product(db: Session, product_id: str) -> Product:
    product = get_product(db, product_id)
    if not product:
        raise ProductNotFoundError(product_id)
    return product


def get_product_by_sku(db: Session, sku: str) -> Product | None:
    return db.query(Product).filter(Product.sku == sku).first()


def list_products(db: Session, skip: int = 0, limit: int = 100, category: str | None = None) -> list[Product]:
    q = db.query(Product)
    if category:
        q = q.filter(Product.category == category)
    return q.order_by(Product.name).offset(skip).limit(limit).all()


def create_supplier(db: Session, data: SupplierCreate) -> Supplier:
    supplier = Supplier(name=data.name)
    db.add(supplier)
    db.commit()
    db.refresh(supplier)
    return supplier


def get_supplier(db: Session, supplier_id: str) -> Supplier | None:
    return db.query(Supplier).filter(Supplier.id == supplier_id).first()
