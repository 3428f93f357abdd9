"""
Transport-agnostic request handlers and route table.

Web-framework adapters translate their native request into a `Request`
(decoded or raw JSON body, path parameters, multi-valued query parameters),
call the handler found in the route table and write back the `Response`
status and JSON body. Everything framework-specific stays in the adapter.

Routes generated for a resource whose table is ``rent_events``:

    GET    /rent-events/{id}        retrieve
    DELETE /rent-events/{id}        delete
    POST   /rent-events             create
    PUT    /rent-events             update, full replace
    PATCH  /rent-events             update, partial
    GET    /rent-events             search
    GET    /users/{id}/rent-events  belongs-to lookup (one per association)
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from functools import wraps
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from tablerest.domain.resource import BelongsTo, kebab_case
from tablerest.errors import ConflictError, InfrastructureError, NotFoundError, ValidationError
from tablerest.pipeline import ResourceOperations
from tablerest.utils.logging import get_logger

log = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "internal server error"


@dataclass
class Request:
    method: str = "GET"
    body: Union[bytes, str, Mapping[str, Any], None] = None
    path_params: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, List[str]] = field(default_factory=dict)

    def json_body(self) -> Dict[str, Any]:
        """Decode the body into a field map; anything but a JSON object is rejected."""
        body = self.body
        if isinstance(body, Mapping):
            return dict(body)
        try:
            decoded = json.loads(body or b"")
        except (TypeError, ValueError) as exc:
            raise ValidationError({"body": "invalid JSON body"}, "invalid JSON body") from exc
        if not isinstance(decoded, dict):
            raise ValidationError({"body": "expected a JSON object"}, "expected a JSON object")
        return decoded


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


@dataclass
class Response:
    status: int
    body: Any = None

    def json(self) -> str:
        """Serialized body; empty string when there is none."""
        if self.body is None:
            return ""
        return json.dumps(self.body, default=_json_default)


Handler = Callable[[Request], Response]


def error_response(status: int, message: str) -> Response:
    return Response(status, {"error": message})


def not_found_handler(request: Request) -> Response:
    return Response(404)


def _guarded(func: Handler) -> Handler:
    """Map pipeline outcomes to status codes."""

    @wraps(func)
    def wrapper(request: Request) -> Response:
        try:
            return func(request)
        except ValidationError as exc:
            return error_response(400, str(exc))
        except NotFoundError as exc:
            return error_response(404, str(exc))
        except ConflictError as exc:
            return error_response(409, str(exc))
        except InfrastructureError:
            return error_response(500, INTERNAL_ERROR_MESSAGE)
        except Exception:  # noqa: BLE001 - last line before the transport; never leak details
            log.exception("[HANDLER FAILED]", extra={"method": request.method})
            return error_response(500, INTERNAL_ERROR_MESSAGE)

    return wrapper


def create_handler(ops: ResourceOperations) -> Handler:
    """POST: create a row, respond with ``{primary_key: key}``."""
    if ops.resource.omit_create_route:
        return not_found_handler

    @_guarded
    def handle(request: Request) -> Response:
        return Response(200, ops.create(request.json_body()))

    return handle


def retrieve_handler(ops: ResourceOperations) -> Handler:
    """GET by id: the row as a flat object."""
    if ops.resource.omit_retrieve_route:
        return not_found_handler

    @_guarded
    def handle(request: Request) -> Response:
        return Response(200, ops.retrieve(request.path_params.get("id", "")))

    return handle


def update_handler(ops: ResourceOperations) -> Handler:
    """PUT replaces every mutable field, PATCH writes only the supplied ones."""
    if ops.resource.omit_update_route:
        return not_found_handler

    @_guarded
    def handle(request: Request) -> Response:
        ops.update(request.json_body(), replace=request.method.upper() == "PUT")
        return Response(200)

    return handle


def delete_handler(ops: ResourceOperations) -> Handler:
    if ops.resource.omit_delete_route:
        return not_found_handler

    @_guarded
    def handle(request: Request) -> Response:
        ops.delete(request.path_params.get("id", ""))
        return Response(200)

    return handle


def search_handler(ops: ResourceOperations) -> Handler:
    """GET with query parameters: 204 when nothing matched."""
    if ops.resource.omit_search_route:
        return not_found_handler

    @_guarded
    def handle(request: Request) -> Response:
        rows = ops.search(request.query)
        if not rows:
            return Response(204)
        return Response(200, rows)

    return handle


def belongs_to_handler(ops: ResourceOperations, association: BelongsTo) -> Handler:
    """GET rows of this resource referencing the related row's id; 404 when none."""
    if ops.resource.omit_belongs_to_routes:
        return not_found_handler

    @_guarded
    def handle(request: Request) -> Response:
        rows = ops.belongs_to(request.path_params.get("id", ""), association)
        if not rows:
            return Response(404)
        return Response(200, rows)

    return handle


@dataclass(frozen=True)
class Route:
    method: str
    path: str
    handler: Handler
    resource: str

    def match(self, method: str, path: str) -> Optional[Dict[str, str]]:
        """Path parameters when `method` and `path` address this route, else None."""
        if method.upper() != self.method:
            return None
        pattern = "^" + re.sub(r"\\\{(\w+)\\\}", r"(?P<\1>[^/]+)", re.escape(self.path)) + "$"
        found = re.match(pattern, path.rstrip("/") or "/")
        return found.groupdict() if found else None


def build_routes(operations: Iterable[ResourceOperations]) -> List[Route]:
    """Route table for every resource; omitted routes are left out."""
    routes: List[Route] = []
    for ops in operations:
        resource = ops.resource
        base = f"/{resource.route_name}"
        with_id = f"{base}/{{id}}"
        candidates: List[Tuple[bool, str, str, Handler]] = [
            (resource.omit_retrieve_route, "GET", with_id, retrieve_handler(ops)),
            (resource.omit_delete_route, "DELETE", with_id, delete_handler(ops)),
            (resource.omit_create_route, "POST", base, create_handler(ops)),
            (resource.omit_update_route, "PUT", base, update_handler(ops)),
            (resource.omit_update_route, "PATCH", base, update_handler(ops)),
            (resource.omit_search_route, "GET", base, search_handler(ops)),
        ]
        for assoc in resource.belongs_to:
            path = f"/{kebab_case(assoc.table)}/{{id}}{base}"
            candidates.append((resource.omit_belongs_to_routes, "GET", path, belongs_to_handler(ops, assoc)))
        for omitted, method, path, handler in candidates:
            if not omitted:
                routes.append(Route(method, path, handler, resource.table))
    return routes


def dispatch(routes: Iterable[Route], request: Request, path: str) -> Response:
    """Find the route for `request.method` and `path` and run its handler."""
    for route in routes:
        params = route.match(request.method, path)
        if params is not None:
            request.path_params = {**request.path_params, **params}
            return route.handler(request)
    return Response(404)


__all__ = [
    "Handler",
    "Request",
    "Response",
    "Route",
    "belongs_to_handler",
    "build_routes",
    "create_handler",
    "delete_handler",
    "dispatch",
    "error_response",
    "not_found_handler",
    "retrieve_handler",
    "search_handler",
    "update_handler",
]
