"""balancedopen: negotiate a lightning channel funded equally by both peers.

The initiator and the peer each fund half of the channel (plus half of the
joint transaction fee) into a transit output they alone control, exchange
keys and signatures over a keysend or a direct peer message, and combine
both transit outputs into one funding transaction paying the 2-of-2 channel
output.

Everything the negotiation needs from a lightning node is behind the `Node`
interface; `DummyNode` is an in-memory one which the tests drive.
"""
from .errors import (NegotiationError, ValidationError, ReachabilityError, FundingError, DeliveryError,
                     AcceptanceError, SigningError, ProposalError, InvalidArgument, InvalidCapacity,
                     InvalidFeeRate, InvalidPublicKey, InvalidAddress, UnsupportedNetwork,
                     NoInboundLiquidity, NoRouteToPeer, ChannelOpenRejected, MissingTransitOutput,
                     FundingAmountMismatch, RefundDerivationFailed, RouteNotFound, MessageDeliveryFailed,
                     MissingAcceptancePayload, MalformedAcceptance, AcceptanceListenerFailed,
                     PeerSignatureInvalid, SignatureMismatch, MissingFundingOutput, ProposalRejected)
from .config import Config, MULTISIG_KEY_FAMILY, TRANSIT_KEY_FAMILY, chain_of, chain_params, parse_address
from .records import Record, RecordType, NegotiationRequest, correlation_digest, encode_records, decode_records
from .accept import AcceptanceDetails, parse_accept_details
from .event import ProbeEvent, ProbeEventKind, InvoiceUpdate, InvoicePayment, PeerRequest
from .node import (Node, PeerRequestService, Outpoint, Output, FundedTransaction, Channel, SignInput, Invoice,
                   ChannelProposal, Question)
from .funding import MultisigScript, JointFunding, TransitRefund, derive_transit_refund
from .transit import TransitFunding, UtxoLocker, fund_transit
from .listener import AcceptanceListener
from .taskgraph import TaskGraph
from .session import NegotiationSession
from .initiate import initiate_balanced_channel
from .dummynode import DummyNode
from .utils import give_tokens, funding_fee, transit_tokens

__all__ = [
    "NegotiationError",
    "ValidationError",
    "ReachabilityError",
    "FundingError",
    "DeliveryError",
    "AcceptanceError",
    "SigningError",
    "ProposalError",
    "InvalidArgument",
    "InvalidCapacity",
    "InvalidFeeRate",
    "InvalidPublicKey",
    "InvalidAddress",
    "UnsupportedNetwork",
    "NoInboundLiquidity",
    "NoRouteToPeer",
    "ChannelOpenRejected",
    "MissingTransitOutput",
    "FundingAmountMismatch",
    "RefundDerivationFailed",
    "RouteNotFound",
    "MessageDeliveryFailed",
    "MissingAcceptancePayload",
    "MalformedAcceptance",
    "AcceptanceListenerFailed",
    "PeerSignatureInvalid",
    "SignatureMismatch",
    "MissingFundingOutput",
    "ProposalRejected",
    "Config",
    "MULTISIG_KEY_FAMILY",
    "TRANSIT_KEY_FAMILY",
    "chain_of",
    "chain_params",
    "parse_address",
    "Record",
    "RecordType",
    "NegotiationRequest",
    "correlation_digest",
    "encode_records",
    "decode_records",
    "AcceptanceDetails",
    "parse_accept_details",
    "ProbeEvent",
    "ProbeEventKind",
    "InvoiceUpdate",
    "InvoicePayment",
    "PeerRequest",
    "Node",
    "PeerRequestService",
    "Outpoint",
    "Output",
    "FundedTransaction",
    "Channel",
    "SignInput",
    "Invoice",
    "ChannelProposal",
    "Question",
    "MultisigScript",
    "JointFunding",
    "TransitRefund",
    "derive_transit_refund",
    "TransitFunding",
    "UtxoLocker",
    "fund_transit",
    "AcceptanceListener",
    "TaskGraph",
    "NegotiationSession",
    "initiate_balanced_channel",
    "DummyNode",
    "give_tokens",
    "funding_fee",
    "transit_tokens",
]
