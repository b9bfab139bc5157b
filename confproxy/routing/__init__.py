from .route_table import BindPattern, RouteTable, bind_pattern
from .dispatcher import bind_routes, check_conflicts

__all__ = [
    "BindPattern",
    "RouteTable",
    "bind_pattern",
    "bind_routes",
    "check_conflicts",
]
