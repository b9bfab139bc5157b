import logging
from typing import Dict, List, Optional, Tuple

import httpx
from fastapi import APIRouter

from confproxy.errors import BindConflictError
from confproxy.forwarding import ForwardingHandler, StaticFileResponder
from confproxy.models import RouteEntry
from confproxy.routing.route_table import BindPattern, RouteTable

logger = logging.getLogger("uvicorn.error")

Binding = Tuple[str, RouteEntry, BindPattern]


def check_conflicts(table: RouteTable) -> List[Binding]:
    """Return every binding of *table*, failing on duplicate patterns."""
    seen: Dict[Tuple[Optional[str], str], str] = {}
    bindings: List[Binding] = []
    for host_key, route, pattern in table.bindings():
        owner = seen.get(pattern.conflict_key)
        if owner is not None:
            raise BindConflictError(str(pattern), owner, host_key)
        seen[pattern.conflict_key] = host_key
        bindings.append((host_key, route, pattern))
    return bindings


def bind_routes(
    router: APIRouter, table: RouteTable, client: httpx.AsyncClient
) -> List[BindPattern]:
    """
    Bind every route of *table* onto *router*.

    The router takes the first full match, so bindings are registered from
    the most to the least specific pattern. Static routes get a file
    responder, all others a ForwardingHandler with its own copy of the route.
    Unconstrained patterns are bound without a method list, so they accept
    any method token, WebDAV and SSDP extensions included.
    """
    bindings = sorted(check_conflicts(table), key=lambda b: b[2].specificity)

    for host_key, route, pattern in bindings:
        if route.is_static:
            kind = "static"
            endpoint = StaticFileResponder(route.static_file_path).handle
        else:
            kind = "forward"
            endpoint = ForwardingHandler(route, client).handle

        router.add_route(
            pattern.router_path,
            endpoint,
            methods=pattern.methods,
            name=f"{kind}:{host_key}",
            include_in_schema=False,
        )
        logger.info(f"Bound {kind} route '{pattern}' at {pattern.router_path}")

    return [pattern for _, _, pattern in bindings]
