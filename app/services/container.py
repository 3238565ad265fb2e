from app.services.analytics_service import AnalyticsService
from app.services.calendar import CalendarResolver
from app.services.category_service import ReferenceDataService
from app.services.change_log import ChangeLogRecorder
from app.services.context import ServiceContext
from app.services.identity import IdentityBridge
from app.services.notification_service import NotificationService
from app.services.task_service import TaskService


class Services:
    """Explicitly wired service objects sharing one context."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.calendar = CalendarResolver(ctx)
        self.users = IdentityBridge(ctx)
        self.reference = ReferenceDataService(ctx)
        self.change_log = ChangeLogRecorder(ctx, self.calendar)
        self.notifications = NotificationService(ctx, self.users)
        self.tasks = TaskService(
            ctx,
            users=self.users,
            calendar=self.calendar,
            change_log=self.change_log,
            notifications=self.notifications,
            reference=self.reference,
        )
        self.analytics = AnalyticsService(ctx, self.users, self.reference)
