from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .transaction import PaymentDetails

PropertyType = Literal["house", "apartment", "land", "villa", "commercial"]
ListingType = Literal["sale", "rent", "pledge"]


class PropertyCreate(BaseModel):
  id: Optional[str] = None
  # Checked by the store so a missing value is a ValidationFailed, not a 422.
  name: Optional[str] = None
  city: Optional[str] = None
  price: Optional[int] = Field(None, ge=0)
  propertyType: PropertyType = "house"
  listingType: ListingType = "sale"
  description: Optional[str] = None
  bedrooms: float = Field(0, ge=0)
  bathrooms: float = Field(0, ge=0)
  area: float = Field(0, ge=0)
  sizeUnit: str = "sqm"
  mainImage: Optional[str] = None
  landTitle: Optional[str] = None
  payment: Optional[PaymentDetails] = None
  submitForVerification: bool = True


class PropertyUpdate(BaseModel):
  name: Optional[str] = None
  city: Optional[str] = None
  price: Optional[int] = Field(None, ge=0)
  propertyType: Optional[PropertyType] = None
  listingType: Optional[ListingType] = None
  description: Optional[str] = None
  bedrooms: Optional[float] = Field(None, ge=0)
  bathrooms: Optional[float] = Field(None, ge=0)
  area: Optional[float] = Field(None, ge=0)
  sizeUnit: Optional[str] = None
  mainImage: Optional[str] = None
  landTitle: Optional[str] = None
  status: Optional[str] = None


class PropertyOut(BaseModel):
  model_config = ConfigDict(extra="allow")

  id: str
  name: Optional[str] = None
  city: Optional[str] = None
  location: Optional[str] = None
  price: Optional[int] = None
  propertyType: Optional[str] = None
  listingType: Optional[str] = None
  description: Optional[str] = None
  bedrooms: float = 0
  bathrooms: float = 0
  area: float = 0
  sizeUnit: Optional[str] = None
  mainImage: Optional[str] = None
  landTitle: Optional[str] = None
  landlordId: Optional[str] = None
  landlordName: Optional[str] = None
  status: str = "listed"
  createdAt: Optional[int] = None
  updatedAt: Optional[int] = None
  isVerified: bool = False
  verificationRequested: bool = False
  verificationStatus: str = "none"
  governmentRequested: bool = False
  governmentApproved: bool = False
  governmentRejected: bool = False
