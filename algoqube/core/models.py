from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, EmailStr


class UserRole(str, Enum):
    ADMIN = "Admin"
    USER = "User"

class AccountStatus(str, Enum):
    VERIFIED = "Verified"
    NOT_VERIFIED = "Not Verified"

class LoginStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"

class ChatboxStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"

class ChatboxCategory(str, Enum):
    SUPPORT = "Support"
    SALES = "Sales"
    FAQ = "FAQ"
    FEEDBACK = "Feedback"

class LeadStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    CONTACTED = "contacted"
    CONVERTED = "converted"
    CLOSED = "closed"

class NotificationType(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"

class ConversationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

class MessageRole(str, Enum):
    USER = "user"
    BOT = "bot"

class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


# --- Users ---

class UserRegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)
    name: Optional[str] = None
    phone: Optional[str] = None

class UserLoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)

class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    address: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[str] = None

class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, alias="currentPassword")
    new_password: str = Field(min_length=1, alias="newPassword")

    model_config = ConfigDict(populate_by_name=True)

class NotificationPreferencesRequest(BaseModel):
    email: Optional[bool] = None
    sms: Optional[bool] = None
    product_updates: Optional[bool] = Field(default=None, alias="productUpdates")

    model_config = ConfigDict(populate_by_name=True)

class SelectPlanRequest(BaseModel):
    plan_id: str = Field(min_length=1, alias="planId")

    model_config = ConfigDict(populate_by_name=True)

class UseTokensRequest(BaseModel):
    tokens: int = Field(gt=0)


# --- Chatboxes ---

class ChatboxConfiguration(BaseModel):
    text_font: Optional[str] = Field(default=None, alias="textFont")
    theme_color: Optional[str] = Field(default=None, alias="themeColor")
    display_name: Optional[str] = Field(default=None, alias="displayName")
    profile_avatar: Optional[str] = Field(default=None, alias="profileAvatar")

    model_config = ConfigDict(populate_by_name=True)

class ChatboxCreateRequest(BaseModel):
    organization_name: str = Field(min_length=1, alias="organizationName")
    category: Optional[ChatboxCategory] = None
    domain_url: Optional[str] = Field(default=None, alias="domainUrl")
    custom_content: Optional[str] = Field(default=None, alias="customContent")
    status: Optional[ChatboxStatus] = None
    organization_logo: Optional[str] = Field(default=None, alias="organizationLogo")
    text_font: Optional[str] = Field(default=None, alias="textFont")
    theme_color: Optional[str] = Field(default=None, alias="themeColor")
    display_name: Optional[str] = Field(default=None, alias="displayName")

    model_config = ConfigDict(populate_by_name=True)

class ChatboxUpdateRequest(BaseModel):
    organization_name: Optional[str] = Field(default=None, alias="organizationName")
    category: Optional[ChatboxCategory] = None
    domain_url: Optional[str] = Field(default=None, alias="domainUrl")
    custom_content: Optional[str] = Field(default=None, alias="customContent")
    status: Optional[ChatboxStatus] = None
    organization_logo: Optional[str] = Field(default=None, alias="organizationLogo")
    configuration: Optional[ChatboxConfiguration] = None

    model_config = ConfigDict(populate_by_name=True)

class VisitRequest(BaseModel):
    name: str = Field(min_length=1)

class PredefinedQuestionRequest(BaseModel):
    question: Optional[str] = None
    order: Optional[int] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)

class EmailTokenRequest(BaseModel):
    email: Optional[str] = None
    chatbox_id: Optional[str] = Field(default=None, alias="chatboxId")

    model_config = ConfigDict(populate_by_name=True)


# --- Leads ---

class LeadCreateRequest(BaseModel):
    chatbox_id: Optional[str] = Field(default=None, alias="chatboxId")
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    message: Optional[str] = None
    source_message: Optional[str] = Field(default=None, alias="sourceMessage")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    status: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)

class LeadUpdateRequest(BaseModel):
    status: Optional[str] = None


# --- Conversations ---

class ConversationMessageRequest(BaseModel):
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    role: Optional[MessageRole] = None
    content: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

class ConversationStatusRequest(BaseModel):
    status: Optional[str] = None

class ConversationExportRequest(BaseModel):
    format: Optional[str] = ExportFormat.JSON.value
    status: Optional[str] = None
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")

    model_config = ConfigDict(populate_by_name=True)
