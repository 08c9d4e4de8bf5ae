from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Float,
    Boolean,
    JSON,
)


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class Event(Base):
    __tablename__ = "events"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    date = Column(String, nullable=True, index=True)  # ISO date
    location = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    organizer_name = Column(String, nullable=True)
    organizer_logo_url = Column(String, nullable=True)
    # [{"url": ..., "name": ...}]
    sponsor_logos = Column(JSON, nullable=False, default=list)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True)
    event_id = Column(String, nullable=False, index=True)
    email = Column(String, nullable=True)
    buyer_name = Column(String, nullable=True)
    buyer_phone = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Integer, nullable=False, default=0)

    # online | physical_batch
    purchase_channel = Column(String, nullable=False, default="online")
    # pending | confirmed | failed
    status = Column(String, nullable=False, default="pending")

    pesapal_transaction_id = Column(String, nullable=True, index=True)
    pesapal_status = Column(String, nullable=True)
    confirmation_code = Column(String, nullable=True)

    used = Column(Boolean, nullable=False, default=False)
    # only meaningful for physical_batch tickets
    is_active = Column(Boolean, nullable=False, default=False)
    batch_code = Column(String, nullable=True, index=True)

    purchased_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


class Batch(Base):
    __tablename__ = "batches"
    batch_code = Column(String, primary_key=True)
    event_id = Column(String, nullable=False)
    num_tickets = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class InvitationCardBatch(Base):
    __tablename__ = "invitation_card_batches"
    batch_code = Column(String, primary_key=True)
    event_id = Column(String, nullable=False)
    num_cards = Column(Integer, nullable=False)
    card_type = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class InvitationCard(Base):
    __tablename__ = "invitation_cards"
    id = Column(String, primary_key=True)
    event_id = Column(String, nullable=False, index=True)
    batch_code = Column(String, nullable=False, index=True)
    card_type = Column(String, nullable=True)
    is_used = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)


class GalleryImage(Base):
    __tablename__ = "gallery_images"
    id = Column(String, primary_key=True)
    filename = Column(String, nullable=False)
    url = Column(String, nullable=False)
    original_name = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, index=True)


class SchoolApplication(Base):
    __tablename__ = "school_applications"
    id = Column(String, primary_key=True)
    institution_name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    city = Column(String, nullable=False)
    contact_person = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    institution_type = Column(String, nullable=False)
    number_of_students = Column(Integer, nullable=False)
    grade_levels = Column(String, nullable=False)
    interest_reason = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(Float, nullable=False)


# used only when MESSAGES_BACKEND=pg
class ContactMessage(Base):
    __tablename__ = "contact_messages"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default="unread")
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=True)
