#! /usr/bin/env python3
# Waiting for the peer to accept, over a peer message or an invoice payment.
#
import asyncio
import pytest
from typing import Any, Callable, List

from balancedopen import (AcceptanceListener, AcceptanceListenerFailed, DummyNode, InvoicePayment,
                          InvoiceUpdate, MalformedAcceptance, MissingAcceptancePayload, Record, RecordType)
from balancedopen.listener import DIRECT, SETTLEMENT
from balancedopen.node import NullPeerService

from helpers import Peer

SIGNATURE = bytes.fromhex('3044' + '02' + '20' + '11' * 32 + '02' + '20' + '22' * 32 + '01')


def _listen(node: DummyNode, peer: Peer, deliver: Callable[[str], None], **kwargs: Any) -> Any:
    """Arm a listener, let `deliver` play the peer, and wait"""
    async def scenario() -> Any:
        invoice = await node.create_invoice('00' * 32, 1)
        service = kwargs.pop('service', None) or node.serve_peer_requests()
        listener = AcceptanceListener(node, service, peer.public_key, invoice.id, **kwargs)
        listener.arm()
        deliver(invoice.id)
        try:
            return await listener.wait()
        finally:
            _listen.last = listener  # type: ignore

    return asyncio.run(scenario())


def _request_id(invoice_id: str) -> List[Record]:
    return [Record(RecordType.request_id, bytes.fromhex(invoice_id))]


def test_direct_acceptance(node: DummyNode, peer: Peer) -> None:
    details = _listen(node, peer, lambda id: node.deliver_peer_request(
        peer.public_key, _request_id(id) + peer.acceptance(SIGNATURE)))

    assert details.multisig_public_key == peer.multisig_public_key
    assert details.transit_public_key == peer.transit_public_key
    assert details.funding_signature == SIGNATURE.hex()
    assert details.transaction_id == peer.outpoint.transaction_id
    assert details.transaction_vout == peer.outpoint.transaction_vout

    assert _listen.last.winner == DIRECT  # type: ignore
    assert node.replies == [None]
    # The invoice is no longer needed once the peer answered directly.
    assert len(node.called('cancel_invoice')) == 1
    assert node.peer_service.stopped


def test_settled_acceptance(node: DummyNode, peer: Peer) -> None:
    details = _listen(node, peer, lambda id: node.update_invoice(id, InvoiceUpdate(
        id, True, [InvoicePayment([]), InvoicePayment(peer.acceptance(SIGNATURE))])))

    assert details.multisig_public_key == peer.multisig_public_key
    assert _listen.last.winner == SETTLEMENT  # type: ignore
    assert node.called('cancel_invoice') == []


def test_unconfirmed_invoice_ignored(node: DummyNode, peer: Peer) -> None:
    def deliver(id: str) -> None:
        node.update_invoice(id, InvoiceUpdate(id, False))
        node.update_invoice(id, InvoiceUpdate(id, True, [InvoicePayment(peer.acceptance(SIGNATURE))]))

    assert _listen(node, peer, deliver).transit_public_key == peer.transit_public_key


def test_direct_other_request_ignored(node: DummyNode, peer: Peer) -> None:
    def deliver(id: str) -> None:
        # An acceptance of some other negotiation, and one from a stranger.
        node.deliver_peer_request(peer.public_key, _request_id('ff' * 32) + peer.acceptance(SIGNATURE))
        stranger = Peer(privkey='31')
        node.deliver_peer_request(stranger.public_key, _request_id(id) + stranger.acceptance(SIGNATURE))
        node.update_invoice(id, InvoiceUpdate(id, True, [InvoicePayment(peer.acceptance(SIGNATURE))]))

    details = _listen(node, peer, deliver)
    assert details.multisig_public_key == peer.multisig_public_key
    assert _listen.last.winner == SETTLEMENT  # type: ignore
    assert node.replies == []


def test_settled_without_payload(node: DummyNode, peer: Peer) -> None:
    with pytest.raises(MissingAcceptancePayload, match='ExpectedPaymentWithPeerChannelDetails'):
        _listen(node, peer, lambda id: node.update_invoice(id, InvoiceUpdate(
            id, True, [InvoicePayment([Record(RecordType.channel_capacity, b'\x01')])])))


def test_direct_malformed(node: DummyNode, peer: Peer) -> None:
    bad = [r for r in peer.acceptance(SIGNATURE) if r.type != RecordType.transit_public_key]
    with pytest.raises(MalformedAcceptance, match='ExpectedTransitPublicKeyInAcceptResponse'):
        _listen(node, peer, lambda id: node.deliver_peer_request(peer.public_key, _request_id(id) + bad))
    assert node.replies == ['ExpectedTransitPublicKeyInAcceptResponse']


def test_malformed_key(node: DummyNode, peer: Peer) -> None:
    not_a_key = peer.acceptance(SIGNATURE, transit_public_key='02' + 'ff' * 32)
    with pytest.raises(MalformedAcceptance, match='ExpectedValidTransitPublicKeyInAcceptResponse'):
        _listen(node, peer, lambda id: node.update_invoice(id, InvoiceUpdate(
            id, True, [InvoicePayment(not_a_key)])))


def test_malformed_signature(node: DummyNode, peer: Peer) -> None:
    huge = peer.acceptance(bytes(80))
    with pytest.raises(MalformedAcceptance, match='ExpectedValidFundingSignatureInAcceptResponse'):
        _listen(node, peer, lambda id: node.update_invoice(id, InvoiceUpdate(
            id, True, [InvoicePayment(huge)])))


def test_first_answer_wins(node: DummyNode, peer: Peer) -> None:
    def deliver(id: str) -> None:
        node.deliver_peer_request(peer.public_key, _request_id(id) + peer.acceptance(SIGNATURE))
        node.update_invoice(id, InvoiceUpdate(id, True, [InvoicePayment(Peer(multisig_privkey='41')
                                                                        .acceptance(SIGNATURE))]))

    details = _listen(node, peer, deliver)
    assert details.multisig_public_key == peer.multisig_public_key
    assert _listen.last.winner == DIRECT  # type: ignore
    assert node.replies == [None]


def test_streams_end(node: DummyNode, peer: Peer) -> None:
    def deliver(id: str) -> None:
        node.peer_service.stop()
        node.update_invoice(id, None)

    with pytest.raises(AcceptanceListenerFailed, match='AcceptanceListenersEndedWithoutAnswer'):
        _listen(node, peer, deliver)


def test_stream_error(node: DummyNode, peer: Peer) -> None:
    with pytest.raises(AcceptanceListenerFailed, match='UnexpectedErrorWaitingForChannelAccept'):
        _listen(node, peer, lambda id: node.update_invoice(id, ConnectionError("subscription lost")))


def test_no_peer_messaging(node: DummyNode, peer: Peer) -> None:
    details = _listen(node, peer, lambda id: node.update_invoice(id, InvoiceUpdate(
        id, True, [InvoicePayment(peer.acceptance(SIGNATURE))])), service=NullPeerService())
    assert details.transaction_id == peer.outpoint.transaction_id


def test_timeout(node: DummyNode, peer: Peer) -> None:
    with pytest.raises(AcceptanceListenerFailed, match='TimedOutWaitingForChannelAccept'):
        _listen(node, peer, lambda id: None, timeout=0.05)
    assert all(t.done() for t in _listen.last.tasks)  # type: ignore


def test_wait_returns_after_teardown(node: DummyNode, peer: Peer) -> None:
    async def scenario(answer: bool) -> None:
        invoice = await node.create_invoice(('01' if answer else '00') * 32, 1)
        listener = AcceptanceListener(node, node.serve_peer_requests(), peer.public_key, invoice.id,
                                      timeout=0.05)
        listener.arm()
        await asyncio.sleep(0)
        assert node.open_invoice_streams == 1

        if answer:
            node.deliver_peer_request(peer.public_key, _request_id(invoice.id) + peer.acceptance(SIGNATURE))
            await listener.wait()
        else:
            with pytest.raises(AcceptanceListenerFailed, match='TimedOutWaitingForChannelAccept'):
                await listener.wait()
        # Both listeners are gone, and have let go of the invoice subscription.
        assert all(task.done() for task in listener.tasks)
        assert node.open_invoice_streams == 0

    asyncio.run(scenario(answer=False))
    asyncio.run(scenario(answer=True))


def test_close_before_wait(node: DummyNode, peer: Peer) -> None:
    async def scenario() -> None:
        listener = AcceptanceListener(node, node.serve_peer_requests(), peer.public_key, '00' * 32)
        listener.arm()
        await asyncio.sleep(0)
        await listener.close()
        assert all(task.cancelled() for task in listener.tasks)
        assert node.open_invoice_streams == 0
        assert node.peer_service.stopped

    asyncio.run(scenario())
