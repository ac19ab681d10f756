"""FastAPI dependencies for the objects wired up in ``main.create_app``."""

from fastapi import Request

from community_alert.services.broadcast import BroadcastDispatcher
from community_alert.services.store import RecordStore
from community_alert.sockets import ConnectionLifecycle


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_realtime(request: Request) -> ConnectionLifecycle:
    return request.app.state.realtime


def get_dispatcher(request: Request) -> BroadcastDispatcher:
    return request.app.state.realtime.dispatcher
