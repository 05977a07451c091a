from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base


class User(Base):
    """Establishment owner. Every tenant record points back to one user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String)
    phone = Column(String, nullable=True)
    is_active = Column(Integer, default=1)  # 1 for active, 0 for disabled
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    establishments = relationship("Establishment", back_populates="owner", cascade="all, delete-orphan")


class Establishment(Base):
    __tablename__ = "establishments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)  # Unique identifier for public URL
    description = Column(Text, nullable=True)
    address = Column(String)
    city = Column(String, index=True)
    state = Column(String, index=True)
    zip_code = Column(String)
    phone = Column(String)
    email = Column(String, nullable=True)
    website = Column(String, nullable=True)
    logo_url = Column(String, nullable=True)
    cover_url = Column(String, nullable=True)
    opening_hour = Column(Integer, default=9)  # Opening hour (0-23)
    closing_hour = Column(Integer, default=18)  # Closing hour (1-24)
    max_concurrent_slots = Column(Integer, default=1)  # Parallel chairs / calendars
    config = Column(JSON, nullable=True)  # Theme, labels and operational settings
    status = Column(String, default="active")  # active, inactive
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owner = relationship("User", back_populates="establishments")
    professionals = relationship("Professional", back_populates="establishment", cascade="all, delete-orphan")
    services = relationship("Service", back_populates="establishment", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="establishment", cascade="all, delete-orphan")


class Professional(Base):
    __tablename__ = "professionals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    establishment_id = Column(Integer, ForeignKey("establishments.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    specialties = Column(JSON, nullable=True)  # List of specialty names
    status = Column(String, default="active")  # active, inactive
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    establishment = relationship("Establishment", back_populates="professionals")
    appointments = relationship("Appointment", back_populates="professional")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    establishment_id = Column(Integer, ForeignKey("establishments.id", ondelete="SET NULL"), nullable=True)
    name = Column(String, nullable=False)
    email = Column(String, index=True, nullable=True)
    phone = Column(String, nullable=True)
    cpf = Column(String(14), nullable=True)  # Brazilian taxpayer id, stored as typed
    birth_date = Column(Date, nullable=True)
    photo_url = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String, default="active")  # active, inactive
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    establishment = relationship("Establishment")
    appointments = relationship("Appointment", back_populates="customer", cascade="all, delete-orphan")
    loyalty_programs = relationship("CustomerLoyalty", back_populates="customer", cascade="all, delete-orphan")
    referrals = relationship(
        "Referral",
        back_populates="customer",
        foreign_keys="Referral.customer_id",
        cascade="all, delete-orphan"
    )
    feedbacks = relationship("Feedback", back_populates="customer", cascade="all, delete-orphan")


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    establishment_id = Column(Integer, ForeignKey("establishments.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    duration = Column(Integer, nullable=False)  # Duration in minutes
    price = Column(Integer, nullable=False)  # Price in cents
    status = Column(String, default="active")  # active, inactive
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    establishment = relationship("Establishment", back_populates="services")
    appointments = relationship("Appointment", back_populates="service", cascade="all, delete-orphan")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    establishment_id = Column(Integer, ForeignKey("establishments.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    professional_id = Column(Integer, ForeignKey("professionals.id", ondelete="SET NULL"), nullable=True, index=True)
    date = Column(DateTime, nullable=False, index=True)  # Start of the appointment
    slot_number = Column(Integer, nullable=False, default=1)  # Which concurrent slot this appointment occupies
    status = Column(String, default="scheduled", index=True)  # scheduled, confirmed, completed, cancelled, no_show
    status_message = Column(Text, nullable=True)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    establishment = relationship("Establishment", back_populates="appointments")
    customer = relationship("Customer", back_populates="appointments")
    service = relationship("Service", back_populates="appointments")
    professional = relationship("Professional", back_populates="appointments")


# ==================== LOYALTY MODELS ====================

class CustomerLoyalty(Base):
    """
    A customer's loyalty program. `points` is the running balance and
    always equals the sum of credit transactions minus debit transactions.
    """
    __tablename__ = "customer_loyalty"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    points = Column(Integer, default=0, nullable=False)
    level = Column(String, default="BRONZE")  # BRONZE, SILVER, GOLD, PLATINUM
    current_value = Column(Integer, default=0)  # Amount spent in the period, in cents
    target_value = Column(Integer, nullable=False)  # Amount to reach the next level, in cents
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(String, default="ACTIVE", index=True)  # ACTIVE, INACTIVE, EXPIRED
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer = relationship("Customer", back_populates="loyalty_programs")
    transactions = relationship("LoyaltyTransaction", back_populates="loyalty", cascade="all, delete-orphan")
    rewards = relationship("Reward", back_populates="loyalty", cascade="all, delete-orphan")


class LoyaltyTransaction(Base):
    __tablename__ = "loyalty_transactions"

    id = Column(Integer, primary_key=True, index=True)
    loyalty_id = Column(Integer, ForeignKey("customer_loyalty.id", ondelete="CASCADE"), nullable=False, index=True)
    points = Column(Integer, nullable=False)  # Always positive; direction comes from type
    type = Column(String, nullable=False)  # credit, debit
    source = Column(String, nullable=False)  # purchase, reward, referral, manual, bonus, other
    description = Column(Text, nullable=False)
    reference_id = Column(String, nullable=True)  # e.g. "appointment:12", "redemption:3"
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    loyalty = relationship("CustomerLoyalty", back_populates="transactions")


class Reward(Base):
    __tablename__ = "rewards"

    id = Column(Integer, primary_key=True, index=True)
    loyalty_id = Column(Integer, ForeignKey("customer_loyalty.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    type = Column(String, nullable=False)  # discount, service, product, custom
    points = Column(Integer, nullable=False)  # Cost in points
    value = Column(Integer, nullable=False)  # Monetary value in cents
    expires_at = Column(DateTime, nullable=False)
    status = Column(String, default="available", index=True)  # available, redeemed, expired, cancelled
    redeemed_at = Column(DateTime, nullable=True)
    max_redemptions = Column(Integer, nullable=True)  # NULL for unlimited
    terms_and_conditions = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    loyalty = relationship("CustomerLoyalty", back_populates="rewards")
    redemptions = relationship("RewardRedemption", back_populates="reward", cascade="all, delete-orphan")


class RewardRedemption(Base):
    __tablename__ = "reward_redemptions"

    id = Column(Integer, primary_key=True, index=True)
    reward_id = Column(Integer, ForeignKey("rewards.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, default="pending", index=True)  # pending, confirmed, cancelled, expired
    notes = Column(Text, nullable=True)
    desired_redemption_date = Column(DateTime, nullable=True)
    redeemed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    reward = relationship("Reward", back_populates="redemptions")


# ==================== CUSTOMER ENGAGEMENT MODELS ====================

class Referral(Base):
    """A lead brought in by an existing customer"""
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    referred_name = Column(String, nullable=False)
    referred_phone = Column(String, nullable=False, index=True)
    referred_email = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String, default="pending", index=True)  # pending, converted, expired, cancelled
    converted_at = Column(DateTime, nullable=True)
    converted_customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer = relationship("Customer", back_populates="referrals", foreign_keys=[customer_id])
    converted_customer = relationship("Customer", foreign_keys=[converted_customer_id])


class Feedback(Base):
    __tablename__ = "feedbacks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    message = Column(Text, nullable=False)
    rating = Column(Integer, nullable=False)  # 1-5 stars
    source = Column(String, default="app")  # app, email, sms, whatsapp, manual
    tags = Column(JSON, nullable=True)  # List of free-form tags
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer = relationship("Customer", back_populates="feedbacks")
    appointment = relationship("Appointment")


# ==================== FINANCIAL MODELS ====================

class FinancialCategory(Base):
    __tablename__ = "financial_categories"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)  # INCOME, EXPENSE
    parent_id = Column(Integer, ForeignKey("financial_categories.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    parent = relationship("FinancialCategory", remote_side=[id])
    transactions = relationship("FinancialTransaction", back_populates="category")


class FinancialTransaction(Base):
    __tablename__ = "financial_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    establishment_id = Column(Integer, ForeignKey("establishments.id", ondelete="SET NULL"), nullable=True)
    category_id = Column(Integer, ForeignKey("financial_categories.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # INCOME, EXPENSE
    amount = Column(Integer, nullable=False)  # Amount in cents
    date = Column(DateTime, nullable=False, index=True)
    status = Column(String, default="PENDING")  # PENDING, COMPLETED, CANCELLED
    description = Column(Text, nullable=False)
    payment_method = Column(String, nullable=False)  # CREDIT, DEBIT, CASH, PIX
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    professional_id = Column(Integer, ForeignKey("professionals.id", ondelete="SET NULL"), nullable=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    category = relationship("FinancialCategory", back_populates="transactions")


# ==================== UPLOAD & AUDIT MODELS ====================

class Upload(Base):
    """
    Files that went through the upload pipeline.
    `extra` keeps the original file name, the upload kind and thumbnail URLs.
    """
    __tablename__ = "uploads"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String, nullable=False)  # Stored (generated) file name
    file_type = Column(String, nullable=False)  # MIME type after optimization
    file_size = Column(Integer, nullable=False)  # Stored size in bytes
    url = Column(String, nullable=False)
    path = Column(String, nullable=False)  # Storage key
    status = Column(String, default="active", index=True)  # active, deleted
    extra = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    establishment_id = Column(Integer, ForeignKey("establishments.id", ondelete="SET NULL"), nullable=True)
    action = Column(String, nullable=False)  # created, updated, deleted, login, redeemed, etc.
    entity_type = Column(String, nullable=True)  # establishment, customer, appointment, upload, etc.
    entity_id = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    extra_data = Column(Text, nullable=True)  # JSON string for additional data
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
