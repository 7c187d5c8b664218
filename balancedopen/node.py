#! /usr/bin/python3
"""The capabilities a balanced channel open consumes from the local node.

The negotiation never touches keys, coins or the network directly: wallet
funding, signing, routing, invoices and peer messaging are all asked of a
`Node`.  Implementations adapt a real lightning node; `DummyNode` is an
in-memory one for tests.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, List, NamedTuple, Optional

from .event import InvoiceUpdate, PeerRequest, ProbeEvent
from .records import Record


class Outpoint(NamedTuple):
    transaction_id: str
    transaction_vout: int

    def __str__(self) -> str:
        return "{}:{}".format(self.transaction_id, self.transaction_vout)


class Output(NamedTuple):
    address: str
    tokens: int


class FundedTransaction(NamedTuple):
    """A wallet transaction paying requested outputs.

    `inputs` are the coins the wallet selected, when it tells us."""
    id: str
    transaction: str
    inputs: Optional[List[Outpoint]] = None


class Channel(NamedTuple):
    id: str
    partner_public_key: str
    local_balance: int
    remote_balance: int
    is_active: bool = True
    is_public: bool = True


class SignInput(NamedTuple):
    key_family: int
    key_index: int
    output_script: str
    output_tokens: int
    sighash: int
    vin: int
    witness_script: str


class Invoice(NamedTuple):
    id: str
    request: str


class ChannelProposal(NamedTuple):
    capacity: int
    give_tokens: int
    id: str
    key_index: int
    partner_public_key: str
    remote_key: str
    transaction_id: str
    transaction_vout: int


class Question(NamedTuple):
    name: str
    message: str
    type: str = 'number'
    default: Optional[Any] = None


# Prompt capability: answers one question.
Ask = Callable[[Question], Awaitable[Any]]


class PeerRequestService(ABC):
    """Serves requests a peer sends us over custom messages"""

    @abstractmethod
    def requests(self, type: int) -> AsyncIterator[PeerRequest]:
        """Stream of inbound requests of this type"""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop serving: open request streams end.  Safe to call twice."""
        pass


class NullPeerService(PeerRequestService):
    """Stand-in when the peer cannot be messaged: never yields a request"""

    async def requests(self, type: int) -> AsyncIterator[PeerRequest]:
        await asyncio.get_event_loop().create_future()
        # Unreachable, but makes this an async generator.
        yield  # type: ignore

    def stop(self) -> None:
        pass


class Node(ABC):
    """Abstract base class for node adapters."""

    @abstractmethod
    async def get_chain_fee_rate(self) -> float:
        """Current chain fee estimate, tokens per vbyte"""
        pass

    @abstractmethod
    async def get_channels(self, is_active: bool = True, is_public: bool = True) -> List[Channel]:
        pass

    @abstractmethod
    async def get_public_key(self, family: int, index: int) -> str:
        pass

    @abstractmethod
    async def get_height(self) -> int:
        pass

    @abstractmethod
    async def connect_peer(self, public_key: str) -> None:
        pass

    @abstractmethod
    async def accepts_channel_open(self, partner_public_key: str, capacity: int, give_tokens: int) -> bool:
        """Would the peer accept a regular open of this size?"""
        pass

    @abstractmethod
    def subscribe_to_probe_for_route(self,
                                     destination: str,
                                     mtokens: int,
                                     max_fee_mtokens: int,
                                     records: Optional[List[Record]] = None) -> AsyncIterator[ProbeEvent]:
        pass

    @abstractmethod
    async def pay_via_routes(self, id: str, routes: List[Any]) -> Any:
        pass

    @abstractmethod
    async def fund_to_address(self, outputs: List[Output], fee_rate: int) -> FundedTransaction:
        pass

    @abstractmethod
    async def lock_utxos(self, id: str, inputs: List[Outpoint]) -> None:
        pass

    @abstractmethod
    async def sign_transaction(self, transaction: str, inputs: List[SignInput]) -> List[str]:
        """Return a DER signature (hex, no sighash flag) for each input"""
        pass

    @abstractmethod
    async def create_invoice(self, description_hash: str, tokens: int) -> Invoice:
        pass

    @abstractmethod
    def subscribe_to_invoice(self, id: str) -> AsyncIterator[InvoiceUpdate]:
        pass

    @abstractmethod
    async def cancel_invoice(self, id: str) -> None:
        pass

    @abstractmethod
    async def send_message_to_peer(self, public_key: str, message: bytes) -> None:
        pass

    @abstractmethod
    def serve_peer_requests(self) -> PeerRequestService:
        pass

    @abstractmethod
    async def propose_channel(self, proposal: ChannelProposal) -> None:
        pass
