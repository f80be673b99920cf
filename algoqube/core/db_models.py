from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from .database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class DBUser(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    avatar = Column(String, nullable=True)
    address = Column(String, nullable=True)
    account_status = Column(String, default="Not Verified")
    email_verified = Column(Boolean, default=False)
    phone_verified = Column(Boolean, default=False)
    role = Column(String, default="User")
    is_active = Column(Boolean, default=True)

    plan_name = Column(String, default="Free")
    plan_expires_on = Column(DateTime, nullable=True)
    tokens_allocated = Column(Integer, default=1000)
    tokens_used = Column(Integer, default=0)
    tokens_remaining = Column(Integer, default=1000)

    last_login_json = Column(JSON, default=dict)
    login_history_json = Column(JSON, default=list)

    locale = Column(String, default="en-IN")
    timezone = Column(String, default="Asia/Kolkata")
    notifications_json = Column(JSON, default=lambda: {"email": True, "sms": False, "product_updates": True})

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    chatboxes = relationship("DBChatbox", back_populates="owner", cascade="all, delete-orphan")


class DBChatbox(Base):
    __tablename__ = "chatboxes"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    name = Column(String, unique=True, index=True, nullable=False)
    organization_name = Column(String, nullable=False)
    organization_logo = Column(String, nullable=True)
    category = Column(String, nullable=True)
    status = Column(String, default="inactive", index=True)
    domain_url = Column(String, nullable=True)
    custom_content = Column(Text, nullable=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    configuration_json = Column(JSON, default=dict)

    # Analytics counters
    website_visits = Column(Integer, default=0)
    conversations_initiated = Column(Integer, default=0)
    total_conversations = Column(Integer, default=0)
    leads_collected = Column(Integer, default=0)
    total_token_used = Column(Integer, default=0)
    avg_session_time = Column(Float, default=0.0)
    avg_conversation_time = Column(Float, default=0.0)
    analytics_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    owner = relationship("DBUser", back_populates="chatboxes")
    leads = relationship("DBLead", back_populates="chatbox", cascade="all, delete-orphan")
    conversations = relationship("DBConversation", back_populates="chatbox", cascade="all, delete-orphan")
    predefined_questions = relationship(
        "DBPredefinedQuestion", back_populates="chatbox", cascade="all, delete-orphan"
    )


class DBLead(Base):
    __tablename__ = "leads"
    __table_args__ = (
        Index("ix_leads_created_by_created_at", "created_by", "created_at"),
        Index("ix_leads_chatbox_created_at", "chatbox_id", "created_at"),
    )

    id = Column(String, primary_key=True, index=True, default=_new_id)
    chatbox_id = Column(String, ForeignKey("chatboxes.id"), nullable=False)
    created_by = Column(String, nullable=True)
    chatbot_name = Column(String, nullable=False)
    chatbot_display_name = Column(String, nullable=True)
    organization_name = Column(String, nullable=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    company = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    source_message = Column(Text, nullable=True)
    conversation_id = Column(String, nullable=True, index=True)
    metadata_json = Column(JSON, default=dict)
    status = Column(String, default="new")
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    chatbox = relationship("DBChatbox", back_populates="leads")


class DBNotification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_created_at", "user_id", "created_at"),
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    id = Column(String, primary_key=True, index=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, default="info")
    is_read = Column(Boolean, default=False)
    data_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class DBPredefinedQuestion(Base):
    __tablename__ = "predefined_questions"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    chatbox_id = Column(String, ForeignKey("chatboxes.id"), nullable=False, index=True)
    question = Column(Text, nullable=False)
    sort_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    chatbox = relationship("DBChatbox", back_populates="predefined_questions")


class DBConversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_chatbox_started_at", "chatbox_name", "started_at"),
        Index("ix_conversations_status_started_at", "status", "started_at"),
    )

    id = Column(String, primary_key=True, index=True, default=_new_id)
    conversation_id = Column(String, unique=True, index=True, nullable=False)
    chatbox_id = Column(String, ForeignKey("chatboxes.id"), nullable=False, index=True)
    chatbox_name = Column(String, nullable=False, index=True)
    started_at = Column(DateTime, default=datetime.now, index=True)
    duration = Column(Integer, default=0)  # seconds
    message_count = Column(Integer, default=0)
    tokens_used = Column(Integer, default=0)
    # [{"role", "content", "timestamp", "tokensUsed"}, ...]
    messages_json = Column(JSON, default=list)
    website = Column(String, default="unknown")
    user_agent = Column(String, default="unknown")
    ip = Column(String, default="unknown")
    status = Column(String, default="active", index=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    chatbox = relationship("DBChatbox", back_populates="conversations")
