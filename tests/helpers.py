import coincurve
import bitcoin.core.script as script
from bitcoin.core import CScript, Hash160
from bitcoin.wallet import P2WPKHBitcoinAddress
from typing import Any, Callable, Dict, List, Optional

from balancedopen import DummyNode, InvoicePayment, InvoiceUpdate, JointFunding, MultisigScript, Outpoint
from balancedopen import Question, Record, RecordType, initiate_balanced_channel
from balancedopen.funding import p2wpkh_script_code, witness_sighash
from balancedopen.records import find_record, int_as_value, value_as_int
from balancedopen.config import chain_params
from balancedopen.utils import transit_tokens

# The peer's own transit output: it funds this itself, we only spend it jointly.
PEER_TRANSIT = Outpoint('9fb6a4c6c5c4b1e0b2a1f0d5b1f8c9e6a3c1d2e4f5a6b7c8d9e0f1a2b3c4d5e6', 0)

CAPACITY = 2000000
FEE_RATE = 10


def privkey_expand(secret: str) -> coincurve.PrivateKey:
    # Privkey can be truncated, since we use tiny values a lot.
    return coincurve.PrivateKey(bytes.fromhex(secret).rjust(32, bytes(1)))


def pubkey_of(privkey: str) -> str:
    """Return the public key corresponding to this privkey"""
    return coincurve.PublicKey.from_secret(privkey_expand(privkey).secret).format().hex()


def p2wpkh_address(public_key: str, network: str = 'btcregtest') -> str:
    """Address for this key on `network`"""
    with chain_params(network):
        return str(P2WPKHBitcoinAddress.from_scriptPubKey(
            CScript([script.OP_0, Hash160(bytes.fromhex(public_key))])))


def node_transit_address(node: DummyNode, index: int = 1) -> str:
    return p2wpkh_address(node.get_key(805, index).public_key.format().hex(), node.network)


def node_refund_address(node: DummyNode) -> str:
    return p2wpkh_address(node.get_key(0, 0).public_key.format().hex(), node.network)


def answers(**kwargs: Any) -> Callable[[Question], Any]:
    """A prompt which answers by question name, else with the default"""
    asked: List[Question] = []

    async def ask(question: Question) -> Any:
        asked.append(question)
        return kwargs.get(question.name, question.default)

    ask.asked = asked  # type: ignore
    return ask


class Peer(object):
    """The other side: accepts whatever balanced channel it is asked for"""
    def __init__(self,
                 privkey: str = '21',
                 multisig_privkey: str = '22',
                 transit_privkey: str = '23',
                 outpoint: Outpoint = PEER_TRANSIT):
        self.public_key = pubkey_of(privkey)
        self.multisig_public_key = pubkey_of(multisig_privkey)
        self.transit_key = privkey_expand(transit_privkey)
        self.transit_public_key = pubkey_of(transit_privkey)
        self.outpoint = outpoint
        self.requests: List[List[Record]] = []

    def acceptance(self, signature: bytes, transit_public_key: Optional[str] = None) -> List[Record]:
        if transit_public_key is None:
            transit_public_key = self.transit_public_key
        return [Record(RecordType.funding_signature, signature),
                Record(RecordType.multisig_public_key, bytes.fromhex(self.multisig_public_key)),
                Record(RecordType.transit_tx_id, bytes.fromhex(self.outpoint.transaction_id)),
                Record(RecordType.transit_tx_vout, int_as_value(self.outpoint.transaction_vout)),
                Record(RecordType.transit_public_key, bytes.fromhex(transit_public_key))]

    def proposal(self, records: List[Record]) -> Dict[str, Any]:
        def value(rtype: RecordType) -> bytes:
            return find_record(records, rtype).value

        return {'capacity': value_as_int(value(RecordType.channel_capacity)),
                'fee_rate': value_as_int(value(RecordType.funding_tx_fee_rate)),
                'multisig_public_key': value(RecordType.multisig_public_key).hex(),
                'outpoint': Outpoint(value(RecordType.transit_tx_id).hex(),
                                     value_as_int(value(RecordType.transit_tx_vout))),
                'request': value(RecordType.accept_request).decode('utf-8')}

    def sign(self, records: List[Record], tokens: Optional[int] = None) -> bytes:
        """Our signature for our input of the joint funding tx"""
        p = self.proposal(records)
        if tokens is None:
            tokens = transit_tokens(p['capacity'], p['fee_rate'])
        joint = JointFunding(p['capacity'],
                             MultisigScript(self.multisig_public_key, p['multisig_public_key']),
                             [p['outpoint'], self.outpoint])
        sighash = witness_sighash(joint.unsigned_transaction(),
                                  joint.vin_of(self.outpoint),
                                  p2wpkh_script_code(bytes.fromhex(self.transit_public_key)),
                                  tokens)
        return self.transit_key.sign(sighash, hasher=None) + bytes([script.SIGHASH_ALL])

    async def reply_direct(self, node: DummyNode, records: List[Record]) -> None:
        self.requests.append(records)
        invoice = node.invoice_for_request(self.proposal(records)['request'])
        node.deliver_peer_request(self.public_key,
                                  [Record(RecordType.request_id, bytes.fromhex(invoice.id))]
                                  + self.acceptance(self.sign(records)))

    async def reply_settled(self, node: DummyNode, records: List[Record]) -> None:
        self.requests.append(records)
        invoice = node.invoice_for_request(self.proposal(records)['request'])
        node.update_invoice(invoice.id, InvoiceUpdate(invoice.id, True,
                                                      [InvoicePayment(self.acceptance(self.sign(records)))]))

    async def reply_bad_signature(self, node: DummyNode, records: List[Record]) -> None:
        self.requests.append(records)
        invoice = node.invoice_for_request(self.proposal(records)['request'])
        # Signs for the wrong amount.
        signature = self.sign(records, tokens=1)
        node.deliver_peer_request(self.public_key,
                                  [Record(RecordType.request_id, bytes.fromhex(invoice.id))]
                                  + self.acceptance(signature))


async def initiate(node: DummyNode, peer: Peer, ask: Any = None, **kwargs: Any) -> Dict[str, Any]:
    """Run the initiator against `peer` with the usual arguments"""
    args = dict(partner_public_key=peer.public_key,
                multisig_key_index=1,
                transit_key_index=1,
                transit_address=node_transit_address(node),
                refund_address=node_refund_address(node),
                network=node.network)
    args.update(kwargs)
    if ask is None:
        ask = answers(capacity=CAPACITY, rate=FEE_RATE)
    return await initiate_balanced_channel(node, ask, **args)
