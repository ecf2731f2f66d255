# paygate/x402/routes.py
"""
Route table for payment-gated paths.

Patterns are evaluated in declaration order and the first match wins.
A pattern is either an exact path ("/api/protected/weather") or a
prefix wildcard ("/api/premium/*", which matches "/api/premium" and
everything below it). A pattern may be qualified with an HTTP method
("POST /api/v1/data"); unqualified patterns match every method.
Trailing slashes are ignored on both sides.

Every entry is validated when the table is built, so a bad price or
network fails at startup rather than on the first paid request.
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from paygate.x402.challenge import parse_price, validate_network
from paygate.x402.errors import ConfigError

logger = logging.getLogger(__name__)

HTTP_METHODS = {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"}


@dataclass(frozen=True)
class RouteRule:
    """One gated route: where it applies and what it costs."""
    pattern: str
    price: int
    network: str
    description: str = ""
    method: Optional[str] = None

    @property
    def is_prefix(self) -> bool:
        return self.pattern.endswith("/*")

    def matches(self, method: str, path: str) -> bool:
        if self.method is not None and method.upper() != self.method:
            return False
        path = _normalize_path(path)
        if self.is_prefix:
            base = _normalize_path(self.pattern[:-2])
            return path == base or path.startswith(base.rstrip("/") + "/")
        return path == _normalize_path(self.pattern)


def _normalize_path(path: str) -> str:
    stripped = path.rstrip("/")
    return stripped or "/"


def _split_method(key: str) -> Tuple[Optional[str], str]:
    parts = key.strip().split(None, 1)
    if len(parts) == 2 and parts[0].upper() in HTTP_METHODS:
        return parts[0].upper(), parts[1].strip()
    return None, key.strip()


def parse_route(key: str, entry: Union[Mapping[str, Any], Any]) -> RouteRule:
    """
    Build a RouteRule from one ``{pattern: {price, network, description}}`` item.

    ``description`` may also be given under ``config.description``.

    Raises:
        ConfigError: If the entry is malformed
    """
    method, pattern = _split_method(key)
    if not pattern.startswith("/"):
        raise ConfigError(f"Route pattern must start with '/': {key!r}", reason="invalid route")
    if "*" in pattern[:-2] or (pattern.endswith("*") and not pattern.endswith("/*")):
        raise ConfigError(f"Wildcard is only allowed as a trailing '/*': {key!r}", reason="invalid route")
    if not isinstance(entry, Mapping):
        raise ConfigError(f"Route {key!r} must map to an object", reason="invalid route")

    unknown = set(entry) - {"price", "network", "description", "config"}
    if unknown:
        raise ConfigError(f"Route {key!r} has unknown keys: {', '.join(sorted(unknown))}", reason="invalid route")
    if "price" not in entry or "network" not in entry:
        raise ConfigError(f"Route {key!r} requires both 'price' and 'network'", reason="invalid route")

    description = entry.get("description")
    if description is None and isinstance(entry.get("config"), Mapping):
        description = entry["config"].get("description")
    if description is not None and not isinstance(description, str):
        raise ConfigError(f"Route {key!r} description must be a string", reason="invalid route")

    return RouteRule(
        pattern=pattern,
        price=parse_price(entry["price"]),
        network=validate_network(entry["network"]),
        description=description or "",
        method=method,
    )


class RouteTable:
    """Ordered, read-only collection of RouteRules."""

    def __init__(self, rules: Iterable[RouteRule]):
        self._rules: Tuple[RouteRule, ...] = tuple(rules)
        for rule in self._rules:
            # Rules may be built directly, so validate them here too.
            parse_price(rule.price)
            validate_network(rule.network)

    @classmethod
    def from_mapping(cls, routes: Mapping[str, Any]) -> "RouteTable":
        """Build a table from a mapping, preserving its iteration order."""
        table = cls(parse_route(key, entry) for key, entry in routes.items())
        logger.info(f"x402: Loaded {len(table)} payment route(s)")
        return table

    @property
    def rules(self) -> List[RouteRule]:
        return list(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def match(self, path: str, method: str = "GET") -> Optional[RouteRule]:
        """Return the first rule matching ``method`` and ``path``, or None."""
        for rule in self._rules:
            if rule.matches(method, path):
                return rule
        return None
