from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stock_ledger.database import get_db
from stock_ledger.schemas.product import SupplierCreate, SupplierOut
from stock_ledger.services import registry

router = APIRouter(prefix="/suppliers", tags=["Suppliers"])


@router.post("", response_model=SupplierOut, status_code=201)
def create_supplier(data: SupplierCreate, db: Session = Depends(get_db)):
    return registry.create_supplier(db, data)


@router.get("/{supplier_id}", response_model=SupplierOut)
def get_supplier(supplier_id: str, db: Session = Depends(get_db)):
    supplier = registry.get_supplier(db, supplier_id)
    if not supplier:
        raise HTTPException(404, "Supplier not found")
    return supplier
