"""Parse the peer's acceptance of a balanced channel request."""
from typing import Iterable, NamedTuple

from .errors import MalformedAcceptance
from .records import Record, RecordType, find_record, value_as_int
from .utils import is_public_key

# DER signature plus the sighash flag byte.
MAX_SIGNATURE_BYTES = 75
TRANSACTION_ID_BYTES = 32
# A vout is a small number; refuse anything that cannot be one.
MAX_VOUT_BYTES = 6


class AcceptanceDetails(NamedTuple):
    """What the peer contributes to the joint funding transaction"""
    multisig_public_key: str
    transit_public_key: str
    funding_signature: str
    transaction_id: str
    transaction_vout: int


def _required(records: Iterable[Record], rtype: RecordType, error: str) -> bytes:
    record = find_record(records, rtype)
    if record is None or not record.value:
        raise MalformedAcceptance(error)
    return record.value


def parse_accept_details(records: Iterable[Record]) -> AcceptanceDetails:
    records = list(records)

    multisig_key = _required(records, RecordType.multisig_public_key,
                             'ExpectedMultiSigPublicKeyInAcceptResponse').hex()
    if not is_public_key(multisig_key):
        raise MalformedAcceptance('ExpectedValidMultiSigPublicKeyInAcceptResponse')

    transit_key = _required(records, RecordType.transit_public_key,
                            'ExpectedTransitPublicKeyInAcceptResponse').hex()
    if not is_public_key(transit_key):
        raise MalformedAcceptance('ExpectedValidTransitPublicKeyInAcceptResponse')

    signature = _required(records, RecordType.funding_signature,
                          'ExpectedFundingSignatureInAcceptResponse')
    if len(signature) > MAX_SIGNATURE_BYTES:
        raise MalformedAcceptance('ExpectedValidFundingSignatureInAcceptResponse')

    txid = _required(records, RecordType.transit_tx_id,
                     'ExpectedTransitTransactionIdInAcceptResponse')
    if len(txid) != TRANSACTION_ID_BYTES:
        raise MalformedAcceptance('ExpectedValidTransitTransactionIdInAcceptResponse')

    vout = _required(records, RecordType.transit_tx_vout,
                     'ExpectedTransitTransactionOutputIndexInAcceptResponse')
    if len(vout) > MAX_VOUT_BYTES:
        raise MalformedAcceptance('ExpectedValidTransitTxOutputIndexInAcceptResponse')

    return AcceptanceDetails(multisig_public_key=multisig_key,
                             transit_public_key=transit_key,
                             funding_signature=signature.hex(),
                             transaction_id=txid.hex(),
                             transaction_vout=value_as_int(vout))
