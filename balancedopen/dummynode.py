#! /usr/bin/python3
# #### Dummy node which you should replace with a real one. ####
import asyncio
import logging
from hashlib import sha256
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import coincurve
import bitcoin.core.script as script
from bitcoin.core import CMutableTransaction, COutPoint, CScript, CTransaction, CTxIn, CTxOut, Hash160, b2lx, b2x, lx, x

from .config import parse_address
from .event import InvoiceUpdate, PeerRequest, ProbeEvent
from .node import (Channel, ChannelProposal, FundedTransaction, Invoice, Node, Outpoint, Output,
                   PeerRequestService, SignInput)
from .records import Record, RecordType

logger = logging.getLogger(__name__)

# The wallet's only coin, which funds every transit output.
WALLET_UTXO = Outpoint('d3fb780146954eb42e371c80cbee1725f8ae330848522f105bda24e1fb1fc010', 1)
WALLET_TOKENS = 4889994700


async def _drain(queue: 'asyncio.Queue[Any]') -> AsyncIterator[Any]:
    """Yield queued items: None ends the stream, an exception is raised"""
    while True:
        item = await queue.get()
        if item is None:
            return
        if isinstance(item, Exception):
            raise item
        yield item


class DummyPeerService(PeerRequestService):
    def __init__(self) -> None:
        self.queues: Dict[int, 'asyncio.Queue[Any]'] = {}
        self.stopped = False

    def queue(self, type: int) -> 'asyncio.Queue[Any]':
        if int(type) not in self.queues:
            self.queues[int(type)] = asyncio.Queue()
            if self.stopped:
                self.queues[int(type)].put_nowait(None)
        return self.queues[int(type)]

    def requests(self, type: int) -> AsyncIterator[PeerRequest]:
        return _drain(self.queue(type))

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        for q in self.queues.values():
            q.put_nowait(None)


class DummyNode(Node):
    """An in-memory node: a single wallet coin, deterministic keys.

    Every call is recorded in `calls`.  Tests script the rest: `probe_scripts`
    (a list of event lists, one per probe), `fail` (call name -> exception
    to raise), `funded` (replaces the wallet funding), and `on_payment`, an
    async callback run with the records of each keysend, standing in for the
    peer at the other end."""
    def __init__(self,
                 seed: str = '01',
                 chain_fee_rate: float = 10,
                 height: int = 102,
                 channels: Optional[List[Channel]] = None,
                 peer_messaging: bool = True,
                 accepts_open: bool = True,
                 network: str = 'btcregtest'):
        self.seed = bytes.fromhex(seed)
        self.chain_fee_rate = chain_fee_rate
        self.height = height
        if channels is None:
            channels = [Channel(id='103x1x0',
                                partner_public_key=self.get_key(0, 1).public_key.format().hex(),
                                local_balance=500000,
                                remote_balance=500000)]
        self.channels = channels
        self.peer_messaging = peer_messaging
        self.accepts_open = accepts_open
        self.network = network

        self.calls: List[Tuple[Any, ...]] = []
        self.fail: Dict[str, Exception] = {}
        self.probe_scripts: List[List[Any]] = []
        self.funded: Optional[FundedTransaction] = None
        self.on_payment: Optional[Any] = None

        self.invoices: Dict[str, Invoice] = {}
        self.invoice_queues: Dict[str, 'asyncio.Queue[Any]'] = {}
        self.open_invoice_streams = 0
        self.peer_service: Optional[DummyPeerService] = None
        self.replies: List[Optional[str]] = []
        self.proposals: List[ChannelProposal] = []

    def _call(self, name: str, *args: Any) -> None:
        logger.debug("[%s %s]", name.upper(), " ".join(str(a) for a in args))
        self.calls.append((name,) + args)
        if name in self.fail:
            raise self.fail[name]

    def called(self, name: str) -> List[Tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    def get_key(self, family: int, index: int) -> coincurve.PrivateKey:
        """Derived key: not BIP32, but stable for a given seed"""
        return coincurve.PrivateKey(sha256(self.seed
                                           + family.to_bytes(4, 'big')
                                           + index.to_bytes(4, 'big')).digest())

    async def get_chain_fee_rate(self) -> float:
        self._call('get_chain_fee_rate')
        return self.chain_fee_rate

    async def get_channels(self, is_active: bool = True, is_public: bool = True) -> List[Channel]:
        self._call('get_channels', is_active, is_public)
        return [c for c in self.channels if c.is_active == is_active and c.is_public == is_public]

    async def get_public_key(self, family: int, index: int) -> str:
        self._call('get_public_key', family, index)
        return self.get_key(family, index).public_key.format().hex()

    async def get_height(self) -> int:
        self._call('get_height')
        return self.height

    async def connect_peer(self, public_key: str) -> None:
        self._call('connect_peer', public_key)

    async def accepts_channel_open(self, partner_public_key: str, capacity: int, give_tokens: int) -> bool:
        self._call('accepts_channel_open', partner_public_key, capacity, give_tokens)
        return self.accepts_open

    def subscribe_to_probe_for_route(self,
                                     destination: str,
                                     mtokens: int,
                                     max_fee_mtokens: int,
                                     records: Optional[List[Record]] = None) -> AsyncIterator[ProbeEvent]:
        self._call('subscribe_to_probe_for_route', destination, mtokens, max_fee_mtokens)
        route = {'hops': [{'public_key': destination}], 'mtokens': mtokens, 'records': records}
        if self.probe_scripts:
            events = self.probe_scripts.pop(0)
        else:
            events = [ProbeEvent.probing(route), ProbeEvent.success(route)]
        return self._probe(events)

    async def _probe(self, events: List[Any]) -> AsyncIterator[ProbeEvent]:
        for event in events:
            if isinstance(event, Exception):
                raise event
            yield event

    async def pay_via_routes(self, id: str, routes: List[Any]) -> Any:
        self._call('pay_via_routes', id)
        records = routes[0].get('records') if isinstance(routes[0], dict) else None
        if self.on_payment is not None:
            await self.on_payment(self, records or [])
        return {'id': id, 'is_confirmed': True}

    async def fund_to_address(self, outputs: List[Output], fee_rate: int) -> FundedTransaction:
        self._call('fund_to_address', outputs, fee_rate)
        if self.funded is not None:
            return self.funded

        vout = [CTxOut(o.tokens, parse_address(o.address, self.network).to_scriptPubKey()) for o in outputs]
        change = WALLET_TOKENS - sum(o.tokens for o in outputs) - 141 * fee_rate
        change_key = self.get_key(0, 0).public_key.format()
        vout.append(CTxOut(change, CScript([script.OP_0, Hash160(change_key)])))
        vin = [CTxIn(COutPoint(lx(WALLET_UTXO.transaction_id), WALLET_UTXO.transaction_vout),
                     nSequence=0xfffffffd)]
        tx = CMutableTransaction(vin, vout, nLockTime=self.height, nVersion=2)
        return FundedTransaction(id=b2lx(tx.GetTxid()),
                                 transaction=b2x(tx.serialize()),
                                 inputs=[WALLET_UTXO])

    async def lock_utxos(self, id: str, inputs: List[Outpoint]) -> None:
        self._call('lock_utxos', id, inputs)

    async def sign_transaction(self, transaction: str, inputs: List[SignInput]) -> List[str]:
        self._call('sign_transaction', transaction, inputs)
        tx = CTransaction.deserialize(x(transaction))
        signatures = []
        for inp in inputs:
            sighash = script.SignatureHash(CScript(x(inp.witness_script)), tx, inp.vin, inp.sighash,
                                           amount=inp.output_tokens,
                                           sigversion=script.SIGVERSION_WITNESS_V0)
            signatures.append(self.get_key(inp.key_family, inp.key_index).sign(sighash, hasher=None).hex())
        return signatures

    async def create_invoice(self, description_hash: str, tokens: int) -> Invoice:
        self._call('create_invoice', description_hash, tokens)
        id = sha256(self.seed + bytes.fromhex(description_hash)).hexdigest()
        invoice = Invoice(id=id, request='lnbcrt{}n1p{}'.format(tokens * 10, id))
        self.invoices[id] = invoice
        return invoice

    def invoice_queue(self, id: str) -> 'asyncio.Queue[Any]':
        if id not in self.invoice_queues:
            self.invoice_queues[id] = asyncio.Queue()
        return self.invoice_queues[id]

    def subscribe_to_invoice(self, id: str) -> AsyncIterator[InvoiceUpdate]:
        self._call('subscribe_to_invoice', id)
        return self._invoice_stream(id)

    async def _invoice_stream(self, id: str) -> AsyncIterator[InvoiceUpdate]:
        self.open_invoice_streams += 1
        try:
            async for update in _drain(self.invoice_queue(id)):
                yield update
        finally:
            self.open_invoice_streams -= 1

    def invoice_for_request(self, request: str) -> Invoice:
        """What decoding the payment request would tell the payer"""
        return next(i for i in self.invoices.values() if i.request == request)

    def update_invoice(self, id: str, update: Any) -> None:
        """Push an InvoiceUpdate to subscribers (None ends, an exception raises)"""
        self.invoice_queue(id).put_nowait(update)

    async def cancel_invoice(self, id: str) -> None:
        self._call('cancel_invoice', id)

    async def send_message_to_peer(self, public_key: str, message: bytes) -> None:
        self._call('send_message_to_peer', public_key, message.hex())
        if not self.peer_messaging:
            raise ConnectionError("peer does not support custom messages")

    def serve_peer_requests(self) -> PeerRequestService:
        self._call('serve_peer_requests')
        if self.peer_service is None or self.peer_service.stopped:
            self.peer_service = DummyPeerService()
        return self.peer_service

    def deliver_peer_request(self, from_public_key: str, records: List[Record],
                             type: int = RecordType.accept_request) -> None:
        """A peer sent us a request: queue it for whoever serves them"""
        async def respond(message: Optional[str]) -> None:
            self.replies.append(message)

        if self.peer_service is None:
            self.peer_service = DummyPeerService()
        self.peer_service.queue(type).put_nowait(PeerRequest(from_public_key, type, records, respond))

    async def propose_channel(self, proposal: ChannelProposal) -> None:
        self._call('propose_channel', proposal)
        self.proposals.append(proposal)
