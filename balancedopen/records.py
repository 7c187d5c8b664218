"""Negotiation records: the typed values a balanced channel request carries.

Records travel two ways: as custom records on the keysend that delivers the
request, and as the records of a peer message.  Their numeric types are
wire-level tags and must stay exactly as they are for interoperability.

The records (minus the acceptance invoice) also define the session: sorted
by type and serialized as `8-byte big-endian type || value`, their SHA-256
is the correlation digest, used as the description hash of the acceptance
invoice.
"""
import io
import os
from enum import IntEnum
from hashlib import sha256
from typing import Iterable, List, NamedTuple, Optional

from pyln.proto.message.fundamental_types import BigSizeType

TYPE_BYTE_COUNT = 8


class RecordType(IntEnum):
    # Peer requests carry their request id in the record with no type bits set.
    request_id = 0
    accept_request = 80501
    channel_capacity = 80502
    funding_signature = 80503
    funding_tx_fee_rate = 80504
    multisig_public_key = 80505
    transit_tx_id = 80506
    transit_tx_vout = 80507
    transit_public_key = 80508
    keysend_preimage = 5482373484


class Record(NamedTuple):
    type: int
    value: bytes

    def known_type(self) -> Optional[RecordType]:
        """The tag this record carries, or None: unknown tags stay opaque"""
        try:
            return RecordType(self.type)
        except ValueError:
            return None

    def __str__(self) -> str:
        known = self.known_type()
        name = known.name if known is not None else str(self.type)
        return "{}={}".format(name, self.value.hex())


def int_as_value(num: int) -> bytes:
    """Minimal big-endian encoding, never empty (zero is a single 00 byte)"""
    if num < 0:
        raise ValueError("cannot encode negative number {}".format(num))
    return num.to_bytes(max(1, (num.bit_length() + 7) // 8), 'big')


def value_as_int(value: bytes) -> int:
    return int.from_bytes(value, 'big')


def find_record(records: Iterable[Record], rtype: int) -> Optional[Record]:
    for r in records:
        if r.type == rtype:
            return r
    return None


def sort_records(records: Iterable[Record]) -> List[Record]:
    return sorted(records, key=lambda r: r.type)


def canonical_bytes(records: Iterable[Record]) -> bytes:
    """Concatenate `8-byte type || value` for every record in type order.

    The acceptance invoice is never part of it: it is derived from the
    digest of the rest."""
    return b''.join(r.type.to_bytes(TYPE_BYTE_COUNT, 'big') + r.value
                    for r in sort_records(records)
                    if r.type != RecordType.accept_request)


def correlation_digest(records: Iterable[Record]) -> str:
    return sha256(canonical_bytes(records)).hexdigest()


def encode_records(records: Iterable[Record]) -> bytes:
    """Serialize as a TLV stream: bigsize type, bigsize length, value"""
    buf = io.BytesIO()
    prev = None
    for r in sort_records(records):
        if prev is not None and r.type == prev:
            raise ValueError("duplicate record type {}".format(r.type))
        BigSizeType.write(buf, r.type)
        BigSizeType.write(buf, len(r.value))
        buf.write(r.value)
        prev = r.type
    return buf.getvalue()


def decode_records(data: bytes) -> List[Record]:
    buf = io.BytesIO(data)
    records: List[Record] = []
    while True:
        rtype = BigSizeType.read(buf)
        if rtype is None:
            return records
        if records and rtype <= records[-1].type:
            raise ValueError("record type {} out of order".format(rtype))
        length = BigSizeType.read(buf)
        if length is None:
            raise ValueError("record {} truncated before length".format(rtype))
        value = buf.read(length)
        if len(value) != length:
            raise ValueError("record {} truncated: {} of {} bytes".format(rtype, len(value), length))
        records.append(Record(rtype, value))


class NegotiationRequest(object):
    """The initiator's half of the negotiation, as it is pushed to the peer"""
    def __init__(self, records: List[Record], secret: bytes):
        self.secret = secret
        self.records = sort_records(records)

    @staticmethod
    def create(capacity: int,
               fee_rate: int,
               multisig_public_key: str,
               transit_tx_id: str,
               transit_tx_vout: int,
               secret: Optional[bytes] = None) -> 'NegotiationRequest':
        if secret is None:
            secret = os.urandom(32)
        records = [Record(RecordType.keysend_preimage, secret),
                   Record(RecordType.channel_capacity, int_as_value(capacity)),
                   Record(RecordType.funding_tx_fee_rate, int_as_value(fee_rate)),
                   Record(RecordType.multisig_public_key, bytes.fromhex(multisig_public_key)),
                   Record(RecordType.transit_tx_id, bytes.fromhex(transit_tx_id)),
                   Record(RecordType.transit_tx_vout, int_as_value(transit_tx_vout))]
        return NegotiationRequest(records, secret)

    @property
    def digest(self) -> str:
        return correlation_digest(self.records)

    @property
    def id(self) -> str:
        """Payment id of the keysend carrying this request"""
        return sha256(self.secret).hexdigest()

    def with_accept_request(self, request: str) -> List[Record]:
        """The records to push, including the acceptance payment request"""
        return sort_records(self.records + [Record(RecordType.accept_request, request.encode('utf-8'))])

    def __repr__(self) -> str:
        return "NegotiationRequest[{}]".format(", ".join(str(r) for r in self.records))
