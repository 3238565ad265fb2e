import datetime as dt
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    """
    Normalise to an aware UTC datetime.

    Naive values (as read back from SQLite) are taken to be UTC; aware values
    are converted, since the store keeps the wall-clock part only.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utc_column(nullable: bool = True, index: bool = False):
    return Column(DateTime(timezone=True), nullable=nullable, index=index)


class ChangeType(str, Enum):
    COMPLETED = "completed"
    UNCOMPLETED = "uncompleted"
    DATE_CHANGED = "date_changed"
    STATUS_CHANGED = "status_changed"
    OTHER = "other"


class NotificationType(str, Enum):
    REMINDER = "reminder"
    OVERDUE = "overdue"
    UPCOMING = "upcoming"
    COMPLETED = "completed"


class StatusName(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


# Seed rows for the status reference table: (name, description, order)
DEFAULT_STATUSES = [
    (StatusName.PENDING, "Task has not been started", 1),
    (StatusName.IN_PROGRESS, "Task is being worked on", 2),
    (StatusName.COMPLETED, "Task is finished", 3),
    (StatusName.OVERDUE, "Task is past its due date and not yet completed", 4),
]


# --------------------------------------------------------------------------
# Tables
# --------------------------------------------------------------------------


class User(SQLModel, table=True):
    __tablename__ = "users"

    user_id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    external_id: str = Field(max_length=255, unique=True, index=True)
    name: str = Field(max_length=255)
    email: str | None = Field(default=None, max_length=255)
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_utc_column(nullable=False)
    )
    updated_at: datetime | None = Field(default=None, sa_column=_utc_column())


class Category(SQLModel, table=True):
    __tablename__ = "categories"

    category_id: int | None = Field(default=None, primary_key=True)
    category_name: str = Field(max_length=100, index=True)
    description: str | None = None
    color: str | None = Field(default=None, max_length=20)
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_utc_column(nullable=False)
    )
    updated_at: datetime | None = Field(default=None, sa_column=_utc_column())


class Status(SQLModel, table=True):
    __tablename__ = "statuses"

    status_id: int | None = Field(default=None, primary_key=True)
    status_name: str = Field(max_length=50, unique=True)
    status_description: str | None = None
    status_order: int = Field(default=0)


class DateDimension(SQLModel, table=True):
    __tablename__ = "date_dimensions"

    date_id: int | None = Field(default=None, primary_key=True)
    date: dt.date = Field(unique=True, index=True)
    year: int
    quarter: int
    month: int
    month_name: str = Field(max_length=20)
    week: int
    day_of_month: int
    day_of_week: int
    day_name: str = Field(max_length=20)
    is_weekend: bool = False
    is_holiday: bool = False


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    task_id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="users.user_id", index=True)
    category_id: int | None = Field(
        default=None, foreign_key="categories.category_id", index=True
    )
    status_id: int = Field(foreign_key="statuses.status_id", index=True)
    created_date_id: int = Field(foreign_key="date_dimensions.date_id")
    completed_date_id: int | None = Field(
        default=None, foreign_key="date_dimensions.date_id"
    )
    title: str = Field(max_length=200, index=True)
    description: str | None = None
    priority: int | None = Field(default=None, ge=1, le=5)
    estimated_hours: float | None = None
    actual_hours: float | None = None
    is_completed: bool = Field(default=False, index=True)
    completed_at: datetime | None = Field(default=None, sa_column=_utc_column())
    due_date: datetime | None = Field(default=None, sa_column=_utc_column(index=True))
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_utc_column(nullable=False, index=True)
    )
    updated_at: datetime | None = Field(default=None, sa_column=_utc_column())


class TaskChangeLog(SQLModel, table=True):
    """Append-only; rows survive deletion of the task they describe."""

    __tablename__ = "task_change_logs"

    log_id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    task_id: uuid.UUID = Field(index=True)
    user_id: uuid.UUID = Field(foreign_key="users.user_id", index=True)
    change_type: str = Field(max_length=50, index=True)
    field_name: str | None = Field(default=None, max_length=100)
    old_value: str | None = None
    new_value: str | None = None
    completed_at: datetime | None = Field(default=None, sa_column=_utc_column())
    completed_date_id: int | None = Field(
        default=None, foreign_key="date_dimensions.date_id"
    )
    log_date_id: int = Field(foreign_key="date_dimensions.date_id")
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_utc_column(nullable=False, index=True)
    )


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    notification_id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="users.user_id", index=True)
    task_id: uuid.UUID | None = Field(default=None, index=True)
    type: str = Field(max_length=50, index=True)
    title: str = Field(max_length=255)
    message: str
    is_read: bool = Field(default=False, index=True)
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_utc_column(nullable=False, index=True)
    )


# --------------------------------------------------------------------------
# Request / response schemas
# --------------------------------------------------------------------------


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None)
    category_id: int | None = None
    priority: int | None = Field(default=None, ge=1, le=5)
    estimated_hours: float | None = Field(default=None, ge=0)
    due_date: datetime | None = None


class TaskCreate(TaskBase):
    """Schema for creating a task"""

    status_id: int | None = None


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional"""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    category_id: int | None = None
    status_id: int | None = None
    priority: int | None = Field(default=None, ge=1, le=5)
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)
    is_completed: bool | None = None
    due_date: datetime | None = None


class TaskFilter(SQLModel):
    status_id: int | None = None
    category_id: int | None = None
    is_completed: bool | None = None
    priority: int | None = Field(default=None, ge=1, le=5)
    date_from: datetime | None = None
    date_to: datetime | None = None


class Pagination(SQLModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    offset: int | None = Field(default=None, ge=0)

    @property
    def start(self) -> int:
        if self.offset is not None:
            return self.offset
        return (self.page - 1) * self.limit


class StatusRef(SQLModel):
    status_id: int
    status_name: str
    status_order: int


class CategoryRef(SQLModel):
    category_id: int
    category_name: str
    color: str | None = None


class DateRef(SQLModel):
    date: dt.date
    year: int
    month: int
    month_name: str


class TaskResponse(SQLModel):
    """Task joined with its status, category and date display data"""

    task_id: uuid.UUID
    user_id: uuid.UUID
    category_id: int | None = None
    status_id: int
    created_date_id: int
    completed_date_id: int | None = None
    title: str
    description: str | None = None
    priority: int | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    is_completed: bool
    completed_at: datetime | None = None
    due_date: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None

    status: StatusRef
    category: CategoryRef | None = None
    created_date: DateRef | None = None
    completed_date: DateRef | None = None


class PaginatedTasks(SQLModel):
    items: list[TaskResponse]
    total: int
    page: int
    limit: int
    has_more: bool


class CategoryCreate(SQLModel):
    category_name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    color: str | None = Field(default=None, max_length=20)


class CategoryResponse(SQLModel):
    category_id: int
    category_name: str
    description: str | None = None
    color: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class StatusResponse(SQLModel):
    status_id: int
    status_name: str
    status_description: str | None = None
    status_order: int

    model_config = {"from_attributes": True}


class NotificationResponse(SQLModel):
    notification_id: uuid.UUID
    user_id: uuid.UUID
    task_id: uuid.UUID | None = None
    type: str
    title: str
    message: str
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class ChangeLogResponse(SQLModel):
    log_id: uuid.UUID
    task_id: uuid.UUID
    change_type: str
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    completed_at: datetime | None = None
    completed_date_id: int | None = None
    log_date_id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class UserProfile(SQLModel):
    user_id: uuid.UUID
    external_id: str
    name: str
    email: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class UserUpdate(SQLModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)


class TaskReminder(SQLModel):
    task_id: uuid.UUID
    title: str
    due_date: datetime
    is_overdue: bool
    days_until_due: int


class TaskLogEntry(SQLModel):
    """A change-log row joined with its completion date dimension."""

    task_id: uuid.UUID
    change_type: str
    completed_at: datetime | None = None
    completed_date_id: int | None = None
    log_date_id: int
    created_at: datetime
    completed_date: dt.date | None = None
    day_of_week: int | None = None
    day_name: str | None = None
    month_name: str | None = None
