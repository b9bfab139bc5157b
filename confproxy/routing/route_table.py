"""Route table and bind-pattern construction.

A bind pattern follows the ``[METHOD ]<hostKey>/<path>`` form. The host key
is the first path component of the public URL, so a pattern is served at
``/<hostKey>/<path>``.

Matching semantics of a pattern:

* a path ending in ``/`` matches itself and everything beneath it;
* any other path matches exactly;
* ``{name}`` matches one segment, ``{name...}`` matches the remainder and
  ``{$}`` pins a trailing-slash pattern to an exact match.
"""

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, List, Mapping, Optional, Tuple

from confproxy.models import RouteEntry

SUBTREE_PARAM = "subtree_path"
EXACT_MARKER = "{$}"

_WILDCARD = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)(\.\.\.)?\}")


@dataclass(frozen=True)
class BindPattern:
    method: Optional[str]
    host_key: str
    suffix: str

    def __str__(self) -> str:
        text = f"{self.host_key}/{self.suffix}"
        return f"{self.method} {text}" if self.method else text

    @property
    def url_path(self) -> str:
        prefix = self.host_key.strip("/")
        if not prefix:
            return "/" + self.suffix
        return f"/{prefix}/{self.suffix}"

    @property
    def is_subtree(self) -> bool:
        return self.url_path.endswith("/")

    @property
    def methods(self) -> Optional[List[str]]:
        """None for an unconstrained pattern, which matches every method."""
        if not self.method:
            return None
        if self.method == "GET":
            return ["GET", "HEAD"]
        return [self.method]

    @property
    def router_path(self) -> str:
        """The pattern as a Starlette path template."""
        path = self.url_path
        if path.endswith("/" + EXACT_MARKER):
            return _translate_wildcards(path[: -len(EXACT_MARKER)])
        path = _translate_wildcards(path)
        if path.endswith("/"):
            return f"{path}{{{SUBTREE_PARAM}:path}}"
        return path

    @property
    def conflict_key(self) -> Tuple[Optional[str], str]:
        """Two patterns with the same key would match the same requests."""
        return self.method, _WILDCARD.sub(
            lambda m: "{...}" if m.group(2) else "{}", self.url_path
        )

    @property
    def specificity(self) -> Tuple[bool, int, int, bool]:
        """Sort key; smaller sorts first and wins the match."""
        path = self.url_path
        catch_all = self.is_subtree or path.endswith("...}")
        wildcards = len(_WILDCARD.findall(path))
        return catch_all, wildcards, -len(path), self.method is None


def _translate_wildcards(path: str) -> str:
    def replace(match: re.Match) -> str:
        name, rest = match.group(1), match.group(2)
        return f"{{{name}:path}}" if rest else f"{{{name}}}"

    return _WILDCARD.sub(replace, path)


def bind_pattern(host_key: str, route: RouteEntry) -> BindPattern:
    """Build the pattern a route is bound to.

    Method-constrained routes bind their match path. Unconstrained routes bind
    their rewrite path, so the path they receive on is the path they send to.
    """
    if route.method:
        return BindPattern(route.method.upper(), host_key, route.match_path.lstrip("/"))
    return BindPattern(None, host_key, route.rewrite_path.lstrip("/"))


class RouteTable(Mapping[str, RouteEntry]):
    """Read-only mapping of host key to route."""

    def __init__(self, routes: Mapping[str, RouteEntry]):
        self._routes = MappingProxyType(dict(routes))

    def __getitem__(self, host_key: str) -> RouteEntry:
        return self._routes[host_key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def __repr__(self) -> str:
        return f"RouteTable({dict(self._routes)!r})"

    def bindings(self) -> Iterator[Tuple[str, RouteEntry, BindPattern]]:
        for host_key, route in self._routes.items():
            yield host_key, route, bind_pattern(host_key, route)
