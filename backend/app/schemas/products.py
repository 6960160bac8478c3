from datetime import datetime

from pydantic import BaseModel, Field


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str | None = Field(default=None, max_length=120)
    description: str | None = None
    price: float = Field(default=0, ge=0)
    stock: int = Field(default=0, ge=0)


class ProductRead(BaseModel):
    id: int
    name: str
    category: str | None = None
    price: float
    stock: int  # écrit uniquement par l'inventory ledger
    created_at: datetime

    class Config:
        from_attributes = True


class RestockCreate(BaseModel):
    quantity: int = Field(gt=0)
