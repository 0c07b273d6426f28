from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

PaymentMethod = Literal["mtn", "orange", "card"]


class PaymentDetails(BaseModel):
  method: PaymentMethod
  phone: Optional[str] = None
  cardNumber: Optional[str] = None
  cardName: Optional[str] = None
  cardExpiry: Optional[str] = None
  cardCvv: Optional[str] = None


class InquiryCreate(BaseModel):
  propertyId: str
  name: str
  email: EmailStr
  phone: str
  message: Optional[str] = None
  inquiryType: str = "general"


class PurchaseCreate(BaseModel):
  propertyId: str
  transactionType: Literal["sale", "rent"]
  amount: Optional[int] = Field(None, gt=0)
  buyerName: Optional[str] = None
  buyerEmail: Optional[EmailStr] = None
  buyerPhone: Optional[str] = None
  payment: PaymentDetails


class StatusUpdate(BaseModel):
  status: Literal["completed", "failed"]


class TransactionOut(BaseModel):
  model_config = ConfigDict(extra="allow")

  id: str
  type: str
  amount: float = 0
  status: str = "pending"
  propertyId: Optional[str] = None
  propertyName: Optional[str] = None
  landlordId: Optional[str] = None
  tenantId: Optional[str] = None
  timestamp: Optional[int] = None
  createdAt: Optional[int] = None
  embedded: bool = False


class TransactionSummary(BaseModel):
  total: int
  completed: int
  pending: int
  failed: int
  platformFees: int
  completedAmount: float
