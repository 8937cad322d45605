"""Local fulfillment routes called from devices on the same network."""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from smarthome.core.dependencies import get_dispatcher, get_reporter
from smarthome.core.errors import CORS_HEADERS
from smarthome.homegraph.reporter import StateReporter
from smarthome.intents.dispatcher import IntentDispatcher, is_local_address
from smarthome.routes.smarthome import client_host, dispatch_response, preflight_response, read_json

logger = logging.getLogger(__name__)

router = APIRouter(tags=["local"])


@router.post("/smarthome")
async def local_smarthome(
    request: Request,
    background_tasks: BackgroundTasks,
    dispatcher: IntentDispatcher = Depends(get_dispatcher),
    reporter: StateReporter = Depends(get_reporter),
):
    """
    Same intents as the cloud endpoint, for callers on the local network.

    Requests from other addresses are answered with an empty 200 and are
    not processed.
    """
    host = client_host(request)
    if not is_local_address(host):
        logger.warning(f"Ignoring local smarthome request from {host}")
        return JSONResponse({}, headers=CORS_HEADERS)

    body = await read_json(request)
    result = dispatcher.dispatch(request.headers.get("authorization"), body, host)
    return dispatch_response(result, background_tasks, reporter)


@router.options("/smarthome")
async def local_smarthome_preflight():
    """Enable cross-domain preflight requests."""
    return preflight_response()
