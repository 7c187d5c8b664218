"""Initiate a balanced channel: the initiator's side of the negotiation.

Both sides put half the capacity (plus half the joint funding fee) into a
transit output of their own.  The initiator pushes its half to the peer,
waits for the peer's half, builds the joint funding tx spending both transit
outputs into the 2-of-2 channel output, signs its input, and proposes the
channel to its node.
"""
import logging
from typing import Any, Dict, Mapping, Optional

import bitcoin.core.script as script
from bitcoin.core import b2x

from .config import Config, MULTISIG_KEY_FAMILY, TRANSIT_KEY_FAMILY, parse_address
from .dispatch import push_request, start_peer_service
from .errors import MalformedAcceptance, PeerSignatureInvalid, ProposalRejected, SignatureMismatch
from .funding import JointFunding, MultisigScript, derive_transit_refund
from .listener import AcceptanceListener
from .negotiate import ask_for_capacity, ask_for_fee_rate, check_peer_accepts_open, confirm_inbound
from .node import Ask, ChannelProposal, Node, Outpoint, SignInput
from .probe import confirm_reachable
from .records import NegotiationRequest
from .session import NegotiationSession
from .taskgraph import TaskGraph
from .transit import UtxoLocker, fund_transit
from .utils import give_tokens

Results = Mapping[str, Any]


class BalancedChannelInitiator(object):
    """The steps of the negotiation, each a task of the graph.

    Each step reads what it needs from the results of the steps it depends
    on; the per-negotiation state lives on the session."""
    def __init__(self, session: NegotiationSession):
        self.session = session
        self.node = session.node
        self.config = session.config
        self.logger = session.logger

    def graph(self) -> TaskGraph:
        g = TaskGraph()
        g.add('validate', [], self.validate)
        g.add('ask_for_capacity', ['validate'], self.ask_for_capacity)
        g.add('get_chain_fee', ['ask_for_capacity'], self.get_chain_fee)
        g.add('ask_for_fee_rate', ['ask_for_capacity', 'get_chain_fee'], self.ask_for_fee_rate)
        g.add('connect', ['ask_for_capacity'], self.connect)
        g.add('probe_for_route_to_node', ['ask_for_capacity'], self.probe_for_route_to_node)
        g.add('confirm_inbound_channel', ['ask_for_capacity'], self.confirm_inbound_channel)
        g.add('get_multisig_key', ['ask_for_capacity'], self.get_multisig_key)
        g.add('get_transit_key', ['ask_for_capacity'], self.get_transit_key)
        g.add('test_open_channel', ['ask_for_capacity', 'connect'], self.test_open_channel)
        g.add('ask_for_funding',
              ['ask_for_capacity', 'ask_for_fee_rate', 'confirm_inbound_channel',
               'probe_for_route_to_node', 'test_open_channel'],
              self.ask_for_funding)
        g.add('get_refund_transaction',
              ['ask_for_fee_rate', 'ask_for_funding', 'get_transit_key'],
              self.get_refund_transaction)
        g.add('messages_to_push',
              ['ask_for_capacity', 'ask_for_fee_rate', 'ask_for_funding', 'get_multisig_key'],
              self.messages_to_push)
        g.add('create_accept_request', ['messages_to_push'], self.create_accept_request)
        g.add('p2p_service', ['ask_for_funding', 'create_accept_request'], self.p2p_service)
        g.add('arm_listener', ['create_accept_request', 'p2p_service'], self.arm_listener)
        g.add('push_request',
              ['arm_listener', 'create_accept_request', 'get_refund_transaction', 'messages_to_push'],
              self.push_request)
        g.add('wait_for_accept', ['arm_listener', 'push_request'], self.wait_for_accept)
        g.add('derive_funding_address', ['get_multisig_key', 'wait_for_accept'],
              self.derive_funding_address)
        g.add('half_sign',
              ['ask_for_capacity', 'ask_for_funding', 'derive_funding_address', 'wait_for_accept'],
              self.half_sign)
        g.add('sign_channel_funding', ['ask_for_funding', 'half_sign'], self.sign_channel_funding)
        g.add('fully_signed_funding',
              ['ask_for_funding', 'get_transit_key', 'half_sign', 'sign_channel_funding'],
              self.fully_signed_funding)
        g.add('propose',
              ['ask_for_capacity', 'derive_funding_address', 'fully_signed_funding', 'wait_for_accept'],
              self.propose)
        g.add('initiated', ['ask_for_funding', 'fully_signed_funding', 'propose'], self.initiated)
        return g

    async def validate(self, r: Results) -> None:
        self.session.validate()

    async def ask_for_capacity(self, r: Results) -> int:
        return await ask_for_capacity(self.session.ask)

    async def get_chain_fee(self, r: Results) -> float:
        return await self.node.get_chain_fee_rate()

    async def ask_for_fee_rate(self, r: Results) -> int:
        return await ask_for_fee_rate(self.session.ask, r['get_chain_fee'])

    async def connect(self, r: Results) -> None:
        await self.node.connect_peer(self.session.partner_public_key)

    async def probe_for_route_to_node(self, r: Results) -> Any:
        return await confirm_reachable(self.node, self.session.partner_public_key, self.config)

    async def confirm_inbound_channel(self, r: Results) -> None:
        await confirm_inbound(self.node)

    async def get_multisig_key(self, r: Results) -> str:
        return await self.node.get_public_key(MULTISIG_KEY_FAMILY, self.session.multisig_key_index)

    async def get_transit_key(self, r: Results) -> str:
        return await self.node.get_public_key(TRANSIT_KEY_FAMILY, self.session.transit_key_index)

    async def test_open_channel(self, r: Results) -> None:
        await check_peer_accepts_open(self.node, self.session.partner_public_key, r['ask_for_capacity'])

    async def ask_for_funding(self, r: Results) -> Any:
        funding = await fund_transit(self.node,
                                     self.session.transit_address,
                                     r['ask_for_capacity'],
                                     r['ask_for_fee_rate'],
                                     self.config.joint_tx_vbytes,
                                     self.session.network)
        if funding.inputs:
            # Keep our wallet off these coins while we wait on the peer.
            self.session.set_locker(UtxoLocker(self.node, funding.transaction_id,
                                               funding.inputs, self.config.relock_interval))
        return funding

    async def get_refund_transaction(self, r: Results) -> Any:
        funding = r['ask_for_funding']
        refund = await derive_transit_refund(self.node,
                                             funding.outpoint,
                                             funding.tokens,
                                             self.session.transit_address,
                                             r['get_transit_key'],
                                             self.session.transit_key_index,
                                             self.session.refund_address,
                                             r['ask_for_fee_rate'],
                                             self.config,
                                             self.session.network)
        self.logger.info("refund_transaction: %s", refund.transaction)
        return refund

    async def messages_to_push(self, r: Results) -> NegotiationRequest:
        funding = r['ask_for_funding']
        return NegotiationRequest.create(capacity=r['ask_for_capacity'],
                                         fee_rate=r['ask_for_fee_rate'],
                                         multisig_public_key=r['get_multisig_key'],
                                         transit_tx_id=funding.transaction_id,
                                         transit_tx_vout=funding.transaction_vout)

    async def create_accept_request(self, r: Results) -> Any:
        return await self.node.create_invoice(r['messages_to_push'].digest, self.config.accept_tokens)

    async def p2p_service(self, r: Results) -> Any:
        return await start_peer_service(self.node, self.session.partner_public_key)

    async def arm_listener(self, r: Results) -> AcceptanceListener:
        listener = AcceptanceListener(self.node,
                                      r['p2p_service'],
                                      self.session.partner_public_key,
                                      r['create_accept_request'].id,
                                      self.config.accept_timeout)
        self.session.set_listener(listener)
        return listener

    async def push_request(self, r: Results) -> Any:
        return await push_request(self.node,
                                  r['messages_to_push'],
                                  r['create_accept_request'],
                                  self.session.partner_public_key,
                                  self.config)

    async def wait_for_accept(self, r: Results) -> Any:
        return await r['arm_listener'].wait()

    async def derive_funding_address(self, r: Results) -> MultisigScript:
        return MultisigScript(r['get_multisig_key'], r['wait_for_accept'].multisig_public_key)

    async def half_sign(self, r: Results) -> JointFunding:
        """Joint funding tx carrying the peer's (already signed) input"""
        accept = r['wait_for_accept']
        funding = r['ask_for_funding']
        peer_outpoint = Outpoint(accept.transaction_id, accept.transaction_vout)
        if peer_outpoint == funding.outpoint:
            raise MalformedAcceptance('ExpectedPeerToFundFromItsOwnTransitOutput')

        joint = JointFunding(r['ask_for_capacity'],
                             r['derive_funding_address'],
                             [funding.outpoint, peer_outpoint])
        joint.set_witness(peer_outpoint, [bytes.fromhex(accept.funding_signature),
                                          bytes.fromhex(accept.transit_public_key)])

        # The peer funded the same amount we did, and signed for it.
        if not joint.verify_input_signature(peer_outpoint, funding.tokens):
            raise PeerSignatureInvalid('ExpectedValidPeerSignatureForJointFunding')
        return joint

    async def sign_channel_funding(self, r: Results) -> str:
        joint = r['half_sign']
        funding = r['ask_for_funding']
        transit = parse_address(self.session.transit_address, self.session.network)

        signatures = await self.node.sign_transaction(joint.serialize(), [
            SignInput(key_family=TRANSIT_KEY_FAMILY,
                      key_index=self.session.transit_key_index,
                      output_script=b2x(transit.to_scriptPubKey()),
                      output_tokens=funding.tokens,
                      sighash=script.SIGHASH_ALL,
                      vin=joint.vin_of(funding.outpoint),
                      witness_script=b2x(transit.to_redeemScript()))])
        if not signatures:
            raise SignatureMismatch('ExpectedSignatureForChannelFunding')
        return signatures[0]

    async def fully_signed_funding(self, r: Results) -> Dict[str, Any]:
        joint = r['half_sign']
        funding = r['ask_for_funding']

        # Add the signature hash flag to the end of the signature
        signature = bytes.fromhex(r['sign_channel_funding']) + bytes([script.SIGHASH_ALL])
        joint.set_witness(funding.outpoint, [signature, bytes.fromhex(r['get_transit_key'])])

        if not joint.verify_input_signature(funding.outpoint, funding.tokens):
            raise SignatureMismatch('UnexpectedSignatureForTransitFundingInput')

        return {'transaction': joint.serialize(),
                'transaction_id': joint.transaction_id,
                'transaction_vout': joint.funding_vout()}

    async def propose(self, r: Results) -> ChannelProposal:
        capacity = r['ask_for_capacity']
        signed = r['fully_signed_funding']
        proposal = ChannelProposal(capacity=capacity,
                                   give_tokens=give_tokens(capacity),
                                   id=r['derive_funding_address'].hash().hex(),
                                   key_index=self.session.multisig_key_index,
                                   partner_public_key=self.session.partner_public_key,
                                   remote_key=r['wait_for_accept'].multisig_public_key,
                                   transaction_id=signed['transaction_id'],
                                   transaction_vout=signed['transaction_vout'])
        try:
            await self.node.propose_channel(proposal)
        except Exception as err:
            raise ProposalRejected('FailedToProposeBalancedChannel', {'err': err}) from err
        return proposal

    async def initiated(self, r: Results) -> Dict[str, Any]:
        """The initiated proposal is a transit tx and a funding tx"""
        signed = r['fully_signed_funding']
        return {'transaction_id': signed['transaction_id'],
                'transaction_vout': signed['transaction_vout'],
                'transactions': [r['ask_for_funding'].transaction, signed['transaction']]}


async def initiate_balanced_channel(node: Node,
                                    ask: Ask,
                                    partner_public_key: str,
                                    multisig_key_index: int,
                                    transit_key_index: int,
                                    transit_address: str,
                                    refund_address: str,
                                    network: str,
                                    config: Optional[Config] = None,
                                    logger: Optional[logging.Logger] = None) -> Dict[str, Any]:
    """Negotiate, fund and propose a channel split evenly with the partner.

    Returns the funding outpoint and both raw transactions (transit funding
    and joint funding).  Nothing is retried: on any failure every listener
    and timer is stopped and the error is raised to the caller."""
    session = NegotiationSession(node, ask,
                                 partner_public_key=partner_public_key,
                                 multisig_key_index=multisig_key_index,
                                 transit_key_index=transit_key_index,
                                 transit_address=transit_address,
                                 refund_address=refund_address,
                                 network=network,
                                 config=config,
                                 logger=logger)
    try:
        results = await BalancedChannelInitiator(session).graph().run()
    finally:
        await session.close()
    return results['initiated']
