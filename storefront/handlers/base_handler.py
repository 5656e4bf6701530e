# storefront/handlers/base_handler.py
import json
import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from functools import partial
from typing import Any, Dict, Optional
from aiohttp import web
from pydantic import BaseModel
from ..config import Config
from ..models.errors import ErrorKind, failure
from ..models.session import CurrentUser, SessionContext, UserRole
from ..services.correlation_service import SessionRegistry
from ..utils.formatters import format_datetime, format_money, parse_id

STATUS_BY_ERROR = {
    ErrorKind.VALIDATION.value: 400,
    ErrorKind.FORBIDDEN.value: 403,
    ErrorKind.NOT_FOUND.value: 404,
    ErrorKind.INSUFFICIENT_STOCK.value: 409,
    ErrorKind.INSUFFICIENT_FUNDS.value: 409,
    ErrorKind.PROVIDER.value: 502,
    ErrorKind.INCONSISTENCY.value: 500,
}

PUBLIC_ROUTES = {("GET", "/products")}

SESSIONS = web.AppKey("sessions", SessionRegistry)

def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format_money(value)
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump()
    raise TypeError(f"{type(value).__name__} is not JSON serializable")

dumps = partial(json.dumps, default=_encode)

def json_result(result: Dict[str, Any], status: Optional[int] = None) -> web.Response:
    """Tagged result to a JSON response; failures get their mapped status"""
    if status is None:
        status = 200 if result.get("success", True) else STATUS_BY_ERROR.get(result.get("error"), 500)
    return web.json_response(result, status=status, dumps=dumps)

@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logging.getLogger(__name__).error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return json_result({"success": False, "error": "server_error", "message": "Server error"}, 500)

@web.middleware
async def auth_middleware(request: web.Request, handler):
    """Identity comes from the X-User-Id header set by the upstream auth layer"""
    user_id = parse_id(request.headers.get("X-User-Id"))
    if user_id is not None:
        role = UserRole.ADMIN if user_id in Config.ADMIN_IDS else UserRole.USER
        request["user"] = CurrentUser(id=user_id, role=role)
    elif (request.method, request.path) not in PUBLIC_ROUTES:
        return json_result({"success": False, "error": "unauthenticated", "message": "Please log in first."}, 401)
    return await handler(request)

class BaseHandler:
    """Base class for the request handlers"""
    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__module__)

    @staticmethod
    def current_user(request: web.Request) -> CurrentUser:
        return request["user"]

    @staticmethod
    def session(request: web.Request) -> SessionContext:
        return request.app[SESSIONS].get(request["user"])

    @staticmethod
    async def read_json(request: web.Request) -> Dict[str, Any]:
        """Request body as a dict; an empty or malformed body reads as {}"""
        if not request.can_read_body:
            return {}
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def path_id(request: web.Request, name: str) -> Optional[int]:
        return parse_id(request.match_info.get(name))

    @staticmethod
    def respond(result: Dict[str, Any], status: Optional[int] = None) -> web.Response:
        return json_result(result, status)

    @staticmethod
    def invalid(message: str, **extra: Any) -> web.Response:
        return json_result(failure(ErrorKind.VALIDATION, message, **extra))

    def is_admin(self, request: web.Request) -> bool:
        """Admin check"""
        return self.current_user(request).is_admin

    def forbidden(self) -> web.Response:
        return json_result(failure(ErrorKind.FORBIDDEN, "Admin access required."))
