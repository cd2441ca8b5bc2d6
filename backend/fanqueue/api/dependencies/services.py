from fastapi import Request

from fanqueue.services.event_service import EventService
from fanqueue.services.notification_scheduler import NotificationSchedulerService
from fanqueue.services.notification_service import NotificationService
from fanqueue.services.payment_service import PaymentService
from fanqueue.services.queue_manager import QueueManagerService


def get_queue_manager_service(request: Request) -> QueueManagerService:
    return request.app.state.queue_manager_service


def get_event_service(request: Request) -> EventService:
    return request.app.state.event_service


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notification_service


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_notification_scheduler(request: Request) -> NotificationSchedulerService:
    return request.app.state.notification_scheduler
