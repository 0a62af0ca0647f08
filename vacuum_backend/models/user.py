"""
Customer account model.
"""
from pydantic import BaseModel, Field
from decimal import Decimal
import uuid


class User(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str
    name: str = ""
    account_balance: Decimal = Field(Decimal("0"), ge=0)


class CreateUserRequest(BaseModel):
    email: str = Field(..., min_length=3, examples=["cliente@example.com"])
    name: str = ""
    initial_balance: Decimal = Field(Decimal("0"), ge=0)


class CreditRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
