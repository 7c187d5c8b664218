"""Collect and check the parameters of the channel to propose."""
import math
from typing import Any, Optional, Union

from bitcoin.base58 import Base58Error
from bitcoin.bech32 import Bech32Error
from bitcoin.wallet import CBitcoinAddressError, P2WPKHBitcoinAddress

from .config import parse_address
from .errors import (ChannelOpenRejected, InvalidAddress, InvalidArgument, InvalidCapacity,
                     InvalidFeeRate, InvalidPublicKey, NoInboundLiquidity)
from .node import Ask, Node, Question
from .utils import give_tokens, is_public_key

Number = Union[int, float]


def as_number(answer: Any) -> Optional[Number]:
    """Interpret a prompt answer as a number, None if it is not one"""
    if isinstance(answer, bool):
        return None
    if isinstance(answer, str):
        answer = answer.strip()
        try:
            return int(answer)
        except ValueError:
            pass
        try:
            answer = float(answer)
        except ValueError:
            return None
    if not isinstance(answer, (int, float)):
        return None
    if isinstance(answer, float) and not math.isfinite(answer):
        return None
    return answer


def check_capacity(answer: Any) -> int:
    capacity = as_number(answer)
    if capacity is None or capacity != int(capacity) or capacity <= 0:
        raise InvalidCapacity('ExpectedChannelCapacityAmountToRequestOpen', {'capacity': answer})
    capacity = int(capacity)
    if capacity % 2:
        raise InvalidCapacity('ExpectedEvenCapacityToSplitBalance', {'capacity': capacity})
    return capacity


def check_fee_rate(answer: Any) -> int:
    rate = as_number(answer)
    if rate is None or rate < 0:
        raise InvalidFeeRate('ExpectedFeeRatePerVirtualByteToProposeChannel', {'rate': answer})
    # Whole tokens per vbyte: round up so the agreed fee is never short.
    return int(math.ceil(rate))


async def ask_for_capacity(ask: Ask) -> int:
    answer = await ask(Question(name='capacity',
                                message='Total capacity of the new channel?'))
    return check_capacity(answer)


async def ask_for_fee_rate(ask: Ask, chain_fee_rate: float) -> int:
    answer = await ask(Question(name='rate',
                                message='Fee rate per vbyte for the joint funding transaction?',
                                default=round(chain_fee_rate)))
    if answer is None or answer == '':
        answer = round(chain_fee_rate)
    return check_fee_rate(answer)


def validate_arguments(partner_public_key: str,
                       multisig_key_index: Optional[int],
                       transit_key_index: Optional[int],
                       transit_address: str,
                       refund_address: str,
                       network: str) -> None:
    """Check the initiation arguments, the addresses against `network`"""
    if not is_public_key(partner_public_key):
        raise InvalidPublicKey('ExpectedPartnerPublicKeyToInitBalancedChannel')

    if multisig_key_index is None:
        raise InvalidArgument('ExpectedMultiSigKeyIdToInitBalancedChannel')

    if transit_key_index is None:
        raise InvalidArgument('ExpectedTransitKeyToInitiateBalancedChannel')

    if not transit_address:
        raise InvalidAddress('ExpectedTransitAddressToInitiateBalancedChannel')

    if not refund_address:
        raise InvalidAddress('ExpectedRefundAddressToInitBalancedChannel')

    try:
        transit = parse_address(transit_address, network)
    except (CBitcoinAddressError, Base58Error, Bech32Error, ValueError) as err:
        raise InvalidAddress('ExpectedValidTransitAddressForNetwork', {'err': err}) from err
    if not isinstance(transit, P2WPKHBitcoinAddress):
        raise InvalidAddress('ExpectedPayToWitnessPublicKeyTransitAddress')

    try:
        parse_address(refund_address, network)
    except (CBitcoinAddressError, Base58Error, Bech32Error, ValueError) as err:
        raise InvalidAddress('ExpectedValidRefundAddressForNetwork', {'err': err}) from err


async def confirm_inbound(node: Node) -> None:
    """The acceptance payment comes back to us: some public channel must have
    remote balance to carry it"""
    channels = await node.get_channels(is_active=True, is_public=True)
    if not any(c.remote_balance for c in channels):
        raise NoInboundLiquidity('ExpectedInboundLiquidityOnExistingChannel')


async def check_peer_accepts_open(node: Node, partner_public_key: str, capacity: int) -> None:
    """Check the peer would take a regular open of this size at all"""
    if not await node.accepts_channel_open(partner_public_key, capacity, give_tokens(capacity)):
        raise ChannelOpenRejected('PeerRejectedBalancedChannelCapacity', {'capacity': capacity})
