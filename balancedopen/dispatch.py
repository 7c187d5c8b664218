"""Deliver the balanced channel request to the peer."""
import logging
from typing import Any

from .config import Config
from .errors import MessageDeliveryFailed, RouteNotFound
from .node import Invoice, Node, NullPeerService, PeerRequestService
from .probe import probe_for_route
from .records import NegotiationRequest

logger = logging.getLogger(__name__)

# Sent to find out whether the peer takes custom messages at all.
TEST_MESSAGE = bytes([0])


async def push_request(node: Node,
                       request: NegotiationRequest,
                       accept_request: Invoice,
                       partner_public_key: str,
                       config: Config) -> Any:
    """Keysend the request records to the peer.

    The payment is only a carrier for the records: it moves a fixed nominal
    amount and is not retried here."""
    records = request.with_accept_request(accept_request.request)

    try:
        route = await probe_for_route(node, partner_public_key, config, records=records)
    except Exception as err:
        raise MessageDeliveryFailed('MessageDeliveryFailedToNode', {'err': err}) from err

    if route is None:
        raise RouteNotFound('OpenBalancedChannelMessageDeliveryFailedToNode')

    logger.info("requesting_balanced_open_channel: %s", request.id)

    try:
        return await node.pay_via_routes(request.id, [route])
    except Exception as err:
        raise MessageDeliveryFailed('MessageDeliveryFailedToNode', {'err': err}) from err


async def start_peer_service(node: Node, partner_public_key: str) -> PeerRequestService:
    """Serve peer requests, or a service that never hears anything when
    the peer cannot be messaged directly"""
    try:
        await node.send_message_to_peer(partner_public_key, TEST_MESSAGE)
    except Exception as err:
        logger.info("peer messaging unavailable, waiting on payment only: %s", err)
        return NullPeerService()
    return node.serve_peer_requests()
