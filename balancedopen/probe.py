"""Find a route to the peer before anything is committed."""
import logging
from typing import Any, AsyncIterator, List, Optional

from .config import Config
from .errors import NoRouteToPeer
from .event import ProbeEventKind
from .node import Node
from .records import Record

logger = logging.getLogger(__name__)


def describe_route(route: Any) -> str:
    """Short human description of a route: its hops, if it has any"""
    hops = route.get('hops') if isinstance(route, dict) else None
    if not hops:
        return str(route)
    return " -> ".join(str(h.get('public_key', h)) if isinstance(h, dict) else str(h) for h in hops)


async def close_stream(stream: AsyncIterator[Any]) -> None:
    """Stop a subscription stream, removing its listeners"""
    aclose = getattr(stream, 'aclose', None)
    if aclose is not None:
        await aclose()


async def probe_for_route(node: Node,
                          destination: str,
                          config: Config,
                          records: Optional[List[Record]] = None) -> Optional[Any]:
    """Return the first route a probe succeeds on, None if none did.

    Transport errors of the probe are raised as they are."""
    stream = node.subscribe_to_probe_for_route(destination=destination,
                                               mtokens=config.request_mtokens,
                                               max_fee_mtokens=config.max_fee_mtokens,
                                               records=records)
    try:
        async for event in stream:
            if event.kind == ProbeEventKind.probing:
                logger.info("checking_route: %s", describe_route(event.route))
            elif event.kind == ProbeEventKind.routing_failure:
                logger.info("routing_failure: %s at %s", event.failure, describe_route(event.route))
            elif event.kind == ProbeEventKind.probe_success:
                return event.route
    finally:
        await close_stream(stream)
    return None


async def confirm_reachable(node: Node, destination: str, config: Config) -> Any:
    route = await probe_for_route(node, destination, config)
    if route is None:
        raise NoRouteToPeer('FailedToFindRouteToNode', {'destination': destination})
    return route
