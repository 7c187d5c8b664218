#! /usr/bin/python3
import math
import coincurve

# Size used to estimate the fee of the joint funding tx: two P2WPKH inputs
# and one P2WSH output.
JOINT_TX_VBYTES = 190


def is_public_key(val: object) -> bool:
    """Is this a hex encoded, compressed secp256k1 point?"""
    if not isinstance(val, str) or len(val) != 66 or val[:2] not in ('02', '03'):
        return False
    try:
        coincurve.PublicKey(bytes.fromhex(val))
    except ValueError:
        return False
    return True


def give_tokens(capacity: int) -> int:
    """Tokens pushed to the peer on open: exactly half the capacity"""
    if capacity % 2:
        raise ValueError("capacity {} cannot be split evenly".format(capacity))
    return capacity // 2


def funding_fee(fee_rate: int, vbytes: int = JOINT_TX_VBYTES) -> int:
    """Each side pays half the joint funding transaction fee"""
    return math.ceil(vbytes / 2 * fee_rate)


def transit_tokens(capacity: int, fee_rate: int, vbytes: int = JOINT_TX_VBYTES) -> int:
    """Amount each side puts into its transit output.

    This is (capacity + vbytes * fee_rate) / 2, with the fee half rounded up
    so both sides always cover the joint transaction fee.
    """
    return give_tokens(capacity) + funding_fee(fee_rate, vbytes)
