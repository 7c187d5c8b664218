#! /usr/bin/python3
"""Events delivered by the node's subscription streams.

Streams are async iterators: items are events, a transport failure is raised
out of the iteration, and running out of items is the end of the stream.
"""
from enum import Enum
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional

from .records import Record


class ProbeEventKind(Enum):
    probing = 'probing'
    routing_failure = 'routing_failure'
    probe_success = 'probe_success'


class ProbeEvent(object):
    """Progress of a probe towards a destination"""
    def __init__(self,
                 kind: ProbeEventKind,
                 route: Optional[Any] = None,
                 failure: Optional[Any] = None):
        self.kind = kind
        self.route = route
        self.failure = failure

    @staticmethod
    def probing(route: Any) -> 'ProbeEvent':
        return ProbeEvent(ProbeEventKind.probing, route=route)

    @staticmethod
    def routing_failure(route: Any, failure: Any) -> 'ProbeEvent':
        return ProbeEvent(ProbeEventKind.routing_failure, route=route, failure=failure)

    @staticmethod
    def success(route: Any) -> 'ProbeEvent':
        return ProbeEvent(ProbeEventKind.probe_success, route=route)

    def __repr__(self) -> str:
        return "ProbeEvent({}, route={}, failure={})".format(self.kind.value, self.route, self.failure)


class InvoicePayment(NamedTuple):
    """A payment settling an invoice, with the records attached to it"""
    messages: List[Record]


class InvoiceUpdate(NamedTuple):
    id: str
    is_confirmed: bool
    payments: List[InvoicePayment] = []


# Replies with None for success, or an error message for failure.
Responder = Callable[[Optional[str]], Awaitable[None]]


class PeerRequest(object):
    """A request received over direct peer messaging"""
    def __init__(self,
                 from_public_key: str,
                 type: int,
                 records: List[Record],
                 respond: Responder):
        self.from_public_key = from_public_key
        self.type = type
        self.records = records
        self._respond = respond

    async def success(self) -> None:
        await self._respond(None)

    async def failure(self, message: str) -> None:
        await self._respond(message)

    def __repr__(self) -> str:
        return "PeerRequest(from={}, type={}, records=[{}])".format(
            self.from_public_key, self.type, ", ".join(str(r) for r in self.records))
