from crm_analytics.crm.enums import ActivityType, ContactStatus, DealStage, DealStatus, TaskPriority
from crm_analytics.crm.models import Activity, Company, Contact, Deal, DealStageHistory, Task

__all__ = [
    "Activity",
    "ActivityType",
    "Company",
    "Contact",
    "ContactStatus",
    "Deal",
    "DealStage",
    "DealStageHistory",
    "DealStatus",
    "Task",
    "TaskPriority",
]
