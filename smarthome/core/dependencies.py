"""Request dependencies resolving the components of the running bridge.

The components are built once in the application lifespan and kept on
``app.state``; tests replace these functions via dependency_overrides.
"""
from fastapi import Request

from smarthome.auth.authority import Authority
from smarthome.homegraph.reporter import StateReporter
from smarthome.intents.dispatcher import IntentDispatcher


def get_authority(request: Request) -> Authority:
    return request.app.state.authority


def get_dispatcher(request: Request) -> IntentDispatcher:
    return request.app.state.dispatcher


def get_reporter(request: Request) -> StateReporter:
    return request.app.state.reporter
