"""Smart home fulfillment routes called by the cloud service."""
import logging
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.templating import Jinja2Templates

from smarthome.auth.authority import Authority
from smarthome.core.config import settings
from smarthome.core.dependencies import get_authority, get_dispatcher, get_reporter
from smarthome.core.errors import CORS_HEADERS
from smarthome.homegraph.reporter import StateReporter
from smarthome.intents.dispatcher import DispatchResult, IntentDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["smarthome"])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))


async def read_json(request: Request):
    """Parse the request body as JSON, None if it is not JSON."""
    try:
        return await request.json()
    except ValueError:
        return None


def client_host(request: Request) -> str | None:
    return request.client.host if request.client else None


def preflight_response() -> Response:
    """Fixed answer to CORS preflight requests."""
    return Response(content="null", media_type="application/json", headers=CORS_HEADERS)


def dispatch_response(
    result: DispatchResult,
    background_tasks: BackgroundTasks,
    reporter: StateReporter,
) -> JSONResponse:
    """Render a DispatchResult and queue its state reports after the response."""
    for device_id in result.reports:
        background_tasks.add_task(reporter.report_device_state, device_id)
    return JSONResponse(result.body, status_code=result.status_code, headers=CORS_HEADERS)


@router.post("/smarthome")
async def smarthome(
    request: Request,
    background_tasks: BackgroundTasks,
    dispatcher: IntentDispatcher = Depends(get_dispatcher),
    reporter: StateReporter = Depends(get_reporter),
):
    """
    Fulfill SYNC, QUERY, EXECUTE, DISCONNECT, IDENTIFY and REACHABLE_DEVICES.

    Requires an Authorization: Bearer header. Per-device EXECUTE failures
    are returned inside a 200 response; state reports for executed devices
    are sent after the response.
    """
    body = await read_json(request)
    result = dispatcher.dispatch(request.headers.get("authorization"), body, client_host(request))
    return dispatch_response(result, background_tasks, reporter)


@router.options("/smarthome")
async def smarthome_preflight():
    """Enable cross-domain preflight requests."""
    return preflight_response()


@router.get("/check")
async def check(request: Request, authority: Authority = Depends(get_authority)):
    """
    Reachability check.

    Returns "SUCCESS", or a diagnostics page with a link through the
    account linking flow when debug mode is enabled.
    """
    if not settings.debug:
        return PlainTextResponse("SUCCESS")

    base_url = str(request.base_url).rstrip("/")
    return templates.TemplateResponse(
        request,
        "check.html",
        {
            "app_name": settings.app_name,
            "node_id": settings.node_id,
            "project_id": authority.config.project_id,
            "client_id": authority.config.client_id,
            "user_logged_in": authority.is_user_logged_in(),
            "oauth_url": f"{base_url}{settings.http_path_prefix}/oauth",
            "redirect_uri": f"{base_url}{settings.http_path_prefix}/check",
        },
    )
