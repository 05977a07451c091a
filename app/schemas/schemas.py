from __future__ import annotations
from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator, model_validator
from datetime import datetime, date, timezone
from typing import Annotated, Optional, List, Literal, Any, Dict

from app.utils.validators import validate_cpf, validate_phone


def to_naive_utc(value):
    """Aware datetimes are converted to UTC and stored without tzinfo"""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def check_phone(value):
    if value is not None and value != "" and not validate_phone(value):
        raise ValueError("Invalid phone number")
    return value or None


def check_cpf(value):
    if value is not None and value != "" and not validate_cpf(value):
        raise ValueError("Invalid CPF")
    return value or None


def reject_null(value):
    """Partial updates may omit a required column but not clear it"""
    if value is None:
        raise ValueError("Field cannot be null")
    return value


EstablishmentStatus = Literal["active", "inactive"]
AppointmentStatus = Literal["scheduled", "confirmed", "completed", "cancelled", "no_show"]
LoyaltyLevel = Literal["BRONZE", "SILVER", "GOLD", "PLATINUM"]
LoyaltyStatus = Literal["ACTIVE", "INACTIVE", "EXPIRED"]
TransactionType = Literal["credit", "debit"]
TransactionSource = Literal["purchase", "reward", "referral", "manual", "bonus", "other"]
RewardType = Literal["discount", "service", "product", "custom"]
RewardStatus = Literal["available", "redeemed", "expired", "cancelled"]
RedemptionStatus = Literal["pending", "confirmed", "cancelled", "expired"]
ReferralStatus = Literal["pending", "converted", "expired", "cancelled"]
FeedbackSource = Literal["app", "email", "sms", "whatsapp", "manual"]
FinancialType = Literal["INCOME", "EXPENSE"]
FinancialStatus = Literal["PENDING", "COMPLETED", "CANCELLED"]
PaymentMethod = Literal["CREDIT", "DEBIT", "CASH", "PIX"]

Phone = Annotated[Optional[str], AfterValidator(check_phone)]
CPF = Annotated[Optional[str], AfterValidator(check_cpf)]
UTCDateTime = Annotated[datetime, AfterValidator(to_naive_utc)]


# Auth schemas
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    full_name: str = Field(min_length=1, max_length=100)
    phone: Phone = None


class UserResponse(BaseModel):
    id: int
    email: EmailStr
    full_name: Optional[str] = None
    phone: Optional[str] = None
    is_active: int
    created_at: datetime

    class Config:
        from_attributes = True


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=72)


# Establishment schemas
class EstablishmentBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Phone = None
    email: Optional[EmailStr] = None
    website: Optional[str] = None
    opening_hour: int = Field(9, ge=0, le=23)
    closing_hour: int = Field(18, ge=1, le=24)
    max_concurrent_slots: int = Field(1, ge=1, le=50)
    status: EstablishmentStatus = "active"

    @model_validator(mode="after")
    def check_hours(self):
        if self.opening_hour >= self.closing_hour:
            raise ValueError("opening_hour must be before closing_hour")
        return self


class EstablishmentCreate(EstablishmentBase):
    config: Optional[Dict[str, Any]] = None


class EstablishmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Phone = None
    email: Optional[EmailStr] = None
    website: Optional[str] = None
    opening_hour: Optional[int] = Field(None, ge=0, le=23)
    closing_hour: Optional[int] = Field(None, ge=1, le=24)
    max_concurrent_slots: Optional[int] = Field(None, ge=1, le=50)
    status: Optional[EstablishmentStatus] = None

    @field_validator("name", "opening_hour", "closing_hour", "max_concurrent_slots", "status")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class EstablishmentResponse(BaseModel):
    id: int
    user_id: int
    name: str
    slug: str
    description: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    logo_url: Optional[str] = None
    cover_url: Optional[str] = None
    opening_hour: int
    closing_hour: int
    max_concurrent_slots: int
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EstablishmentDetailResponse(EstablishmentResponse):
    services_count: int = 0
    appointments_count: int = 0
    professionals_count: int = 0


# Professional schemas
class ProfessionalBase(BaseModel):
    establishment_id: int
    name: str = Field(min_length=1, max_length=100)
    phone: Phone = None
    email: Optional[EmailStr] = None
    specialties: Optional[List[str]] = None
    status: EstablishmentStatus = "active"


class ProfessionalCreate(ProfessionalBase):
    pass


class ProfessionalUpdate(BaseModel):
    establishment_id: Optional[int] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Phone = None
    email: Optional[EmailStr] = None
    specialties: Optional[List[str]] = None
    status: Optional[EstablishmentStatus] = None

    @field_validator("establishment_id", "name", "status")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class ProfessionalResponse(BaseModel):
    id: int
    establishment_id: int
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    specialties: Optional[List[str]] = None
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


# Customer schemas
class CustomerBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Phone = None
    cpf: CPF = None
    birth_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=1000)
    status: EstablishmentStatus = "active"
    establishment_id: Optional[int] = None


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Phone = None
    cpf: CPF = None
    birth_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=1000)
    status: Optional[EstablishmentStatus] = None
    establishment_id: Optional[int] = None

    @field_validator("name", "status")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class CustomerResponse(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    cpf: Optional[str] = None
    birth_date: Optional[date] = None
    photo_url: Optional[str] = None
    notes: Optional[str] = None
    status: str
    establishment_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CustomerServiceHistory(BaseModel):
    service_id: int
    service_name: str
    appointments_count: int
    completed_count: int
    last_appointment_date: Optional[datetime] = None
    total_spent: int


# Service schemas
class ServiceBase(BaseModel):
    establishment_id: int
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    duration: int = Field(gt=0, le=24 * 60)  # minutes
    price: int = Field(gt=0)  # cents
    status: EstablishmentStatus = "active"


class ServiceCreate(ServiceBase):
    pass


class ServiceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    duration: Optional[int] = Field(None, gt=0, le=24 * 60)
    price: Optional[int] = Field(None, gt=0)
    status: Optional[EstablishmentStatus] = None

    @field_validator("name", "duration", "price", "status")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class ServiceResponse(BaseModel):
    id: int
    establishment_id: int
    name: str
    description: Optional[str] = None
    duration: int
    price: int
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConflictingAppointment(BaseModel):
    id: int
    date: datetime
    end: datetime
    status: str
    slot_number: int
    customer_name: Optional[str] = None
    service_name: Optional[str] = None


class AvailabilitySlot(BaseModel):
    start: datetime
    end: datetime
    available: bool
    conflicting_appointment: Optional[ConflictingAppointment] = None


# Appointment schemas
class AppointmentCreate(BaseModel):
    customer_id: int
    service_id: int
    professional_id: Optional[int] = None
    date: UTCDateTime
    notes: Optional[str] = Field(None, max_length=1000)


class AppointmentUpdate(BaseModel):
    professional_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=1000)


class AppointmentReschedule(BaseModel):
    date: UTCDateTime
    professional_id: Optional[int] = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    message: Optional[str] = Field(None, max_length=500)


class AppointmentResponse(BaseModel):
    id: int
    establishment_id: int
    customer_id: int
    service_id: int
    professional_id: Optional[int] = None
    date: datetime
    slot_number: int
    status: str
    status_message: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Loyalty schemas
class LoyaltyCreate(BaseModel):
    points: int = Field(0, ge=0)
    level: LoyaltyLevel = "BRONZE"
    current_value: int = Field(0, ge=0)
    target_value: int = Field(gt=0)
    start_date: UTCDateTime
    end_date: UTCDateTime
    status: LoyaltyStatus = "ACTIVE"

    @model_validator(mode="after")
    def check_period(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class LoyaltyUpdate(BaseModel):
    level: Optional[LoyaltyLevel] = None
    current_value: Optional[int] = Field(None, ge=0)
    target_value: Optional[int] = Field(None, gt=0)
    start_date: Optional[UTCDateTime] = None
    end_date: Optional[UTCDateTime] = None
    status: Optional[LoyaltyStatus] = None

    @field_validator("level", "current_value", "target_value", "start_date", "end_date", "status")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class LoyaltyResponse(BaseModel):
    id: int
    customer_id: int
    points: int
    level: str
    current_value: int
    target_value: int
    start_date: datetime
    end_date: datetime
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoyaltyTransactionCreate(BaseModel):
    points: int = Field(gt=0)
    type: TransactionType
    source: TransactionSource = "manual"
    description: str = Field(min_length=1, max_length=500)
    reference_id: Optional[str] = None


class LoyaltyTransactionResponse(BaseModel):
    id: int
    loyalty_id: int
    points: int
    type: str
    source: str
    description: str
    reference_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RewardCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    type: RewardType
    points: int = Field(gt=0)
    value: int = Field(ge=0)  # cents
    expires_at: UTCDateTime
    status: RewardStatus = "available"
    max_redemptions: Optional[int] = Field(None, gt=0)
    terms_and_conditions: Optional[str] = Field(None, max_length=2000)


class RewardUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    type: Optional[RewardType] = None
    points: Optional[int] = Field(None, gt=0)
    value: Optional[int] = Field(None, ge=0)
    expires_at: Optional[UTCDateTime] = None
    status: Optional[RewardStatus] = None
    max_redemptions: Optional[int] = Field(None, gt=0)
    terms_and_conditions: Optional[str] = Field(None, max_length=2000)

    @field_validator("title", "description", "type", "points", "value", "expires_at", "status")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class RewardResponse(BaseModel):
    id: int
    loyalty_id: int
    title: str
    description: str
    type: str
    points: int
    value: int
    expires_at: datetime
    status: str
    redeemed_at: Optional[datetime] = None
    max_redemptions: Optional[int] = None
    terms_and_conditions: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RedemptionCreate(BaseModel):
    reward_id: int
    notes: Optional[str] = Field(None, max_length=500)
    desired_redemption_date: Optional[UTCDateTime] = None


class RedemptionUpdate(BaseModel):
    status: Optional[RedemptionStatus] = None
    notes: Optional[str] = Field(None, max_length=500)
    redeemed_at: Optional[UTCDateTime] = None


class RedemptionResponse(BaseModel):
    id: int
    reward_id: int
    status: str
    notes: Optional[str] = None
    desired_redemption_date: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Referral schemas
class ReferralCreate(BaseModel):
    referred_name: str = Field(min_length=1, max_length=100)
    referred_phone: str
    referred_email: Optional[EmailStr] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("referred_phone")
    @classmethod
    def check_referred_phone(cls, value):
        if not validate_phone(value):
            raise ValueError("Invalid phone number")
        return value


class ReferralUpdate(BaseModel):
    referred_name: Optional[str] = Field(None, min_length=1, max_length=100)
    referred_email: Optional[EmailStr] = None
    notes: Optional[str] = Field(None, max_length=500)
    status: Optional[ReferralStatus] = None
    converted_at: Optional[UTCDateTime] = None
    converted_customer_id: Optional[int] = None

    @field_validator("referred_name", "status")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class ReferralResponse(BaseModel):
    id: int
    customer_id: int
    referred_name: str
    referred_phone: str
    referred_email: Optional[str] = None
    notes: Optional[str] = None
    status: str
    converted_at: Optional[datetime] = None
    converted_customer_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Feedback schemas
class FeedbackCreate(BaseModel):
    message: str = Field(min_length=1, max_length=1000)
    rating: int = Field(ge=1, le=5)
    source: FeedbackSource = "app"
    tags: Optional[List[str]] = None
    appointment_id: Optional[int] = None


class FeedbackUpdate(BaseModel):
    message: Optional[str] = Field(None, min_length=1, max_length=1000)
    rating: Optional[int] = Field(None, ge=1, le=5)
    source: Optional[FeedbackSource] = None
    tags: Optional[List[str]] = None

    @field_validator("message", "rating", "source")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class FeedbackResponse(BaseModel):
    id: int
    customer_id: int
    appointment_id: Optional[int] = None
    message: str
    rating: int
    source: str
    tags: Optional[List[str]] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Financial schemas
class FinancialCategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type: FinancialType
    parent_id: Optional[int] = None


class FinancialCategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    parent_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class FinancialCategoryResponse(BaseModel):
    id: int
    name: str
    type: str
    parent_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class FinancialTransactionCreate(BaseModel):
    category_id: int
    type: FinancialType
    amount: int = Field(gt=0)  # cents
    date: UTCDateTime
    status: FinancialStatus = "PENDING"
    description: str = Field(min_length=1, max_length=500)
    payment_method: PaymentMethod
    establishment_id: Optional[int] = None
    appointment_id: Optional[int] = None
    professional_id: Optional[int] = None
    customer_id: Optional[int] = None


class FinancialTransactionUpdate(BaseModel):
    category_id: Optional[int] = None
    type: Optional[FinancialType] = None
    amount: Optional[int] = Field(None, gt=0)
    date: Optional[UTCDateTime] = None
    status: Optional[FinancialStatus] = None
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    payment_method: Optional[PaymentMethod] = None

    @field_validator("category_id", "type", "amount", "date", "status", "description", "payment_method")
    @classmethod
    def check_not_null(cls, value):
        return reject_null(value)


class FinancialTransactionResponse(BaseModel):
    id: int
    category_id: int
    type: str
    amount: int
    date: datetime
    status: str
    description: str
    payment_method: str
    establishment_id: Optional[int] = None
    appointment_id: Optional[int] = None
    professional_id: Optional[int] = None
    customer_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Upload schemas
class UploadResponse(BaseModel):
    id: int
    file_name: str
    file_type: str
    file_size: int
    url: str
    path: str
    status: str
    extra: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Activity log schemas
class ActivityLogResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    establishment_id: Optional[int] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    description: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    extra_data: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
