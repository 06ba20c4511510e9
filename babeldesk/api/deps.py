"""Service container and FastAPI ``Depends()`` providers."""

from dataclasses import dataclass

from fastapi import Request

from babeldesk.environment.provisioner import EnvironmentProvisioner
from babeldesk.jobs.events import BroadcastEventSink
from babeldesk.jobs.in_process_queue import TranslationQueue
from babeldesk.storage.history import HistoryStore


@dataclass
class Services:
    queue: TranslationQueue
    history: HistoryStore
    provisioner: EnvironmentProvisioner
    events: BroadcastEventSink


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_queue(request: Request) -> TranslationQueue:
    return get_services(request).queue


def get_history(request: Request) -> HistoryStore:
    return get_services(request).history


def get_provisioner(request: Request) -> EnvironmentProvisioner:
    return get_services(request).provisioner


def get_events(request: Request) -> BroadcastEventSink:
    return get_services(request).events
