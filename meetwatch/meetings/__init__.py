from meetwatch.meetings.fingerprint import fingerprint
from meetwatch.meetings.join_trigger import JoinTriggerCoordinator, create_coordinator
from meetwatch.meetings.meeting import EventType, Meeting, SchedulerConfig, SchedulerEvent
from meetwatch.meetings.scheduler import Scheduler, create_scheduler, get_next_joinable_meeting

__all__ = [
    "EventType",
    "JoinTriggerCoordinator",
    "Meeting",
    "Scheduler",
    "SchedulerConfig",
    "SchedulerEvent",
    "create_coordinator",
    "create_scheduler",
    "fingerprint",
    "get_next_joinable_meeting",
]
