"""
Protocol constants for a balanced channel open.

Every value can be overridden from the environment, the same way the
test harness picks up `TIMEOUT`.
"""
import os
from contextlib import contextmanager
from typing import Iterator, Optional

import bitcoin
import bitcoin.core
from bitcoin.wallet import CBitcoinAddress

from .errors import UnsupportedNetwork

# Key families used to derive the channel keys on the local node.
MULTISIG_KEY_FAMILY = 0
TRANSIT_KEY_FAMILY = 805

# Network names as given by the caller, and their python-bitcoinlib params.
NETWORKS = {
    'btc': 'mainnet',
    'btctestnet': 'testnet',
    'btcregtest': 'regtest',
}


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_optional_float(name: str) -> Optional[float]:
    val = os.getenv(name)
    if val is None or val == '':
        return None
    return float(val)


class Config(object):
    """Tunables for one negotiation.  Passed explicitly, never global."""
    def __init__(self,
                 relock_interval: float = 20,
                 request_mtokens: int = 10000,
                 max_fee_mtokens: int = 10000,
                 accept_tokens: int = 1,
                 joint_tx_vbytes: int = 190,
                 refund_tx_vbytes: int = 125,
                 refund_delay_blocks: int = 144,
                 accept_timeout: Optional[float] = None):
        self.relock_interval = relock_interval
        self.request_mtokens = request_mtokens
        self.max_fee_mtokens = max_fee_mtokens
        self.accept_tokens = accept_tokens
        self.joint_tx_vbytes = joint_tx_vbytes
        self.refund_tx_vbytes = refund_tx_vbytes
        self.refund_delay_blocks = refund_delay_blocks
        self.accept_timeout = accept_timeout

    @staticmethod
    def from_env() -> 'Config':
        return Config(relock_interval=_env_int('BALANCEDOPEN_RELOCK_INTERVAL', 20),
                      request_mtokens=_env_int('BALANCEDOPEN_REQUEST_MTOKENS', 10000),
                      max_fee_mtokens=_env_int('BALANCEDOPEN_MAX_FEE_MTOKENS', 10000),
                      accept_tokens=_env_int('BALANCEDOPEN_ACCEPT_TOKENS', 1),
                      refund_delay_blocks=_env_int('BALANCEDOPEN_REFUND_DELAY', 144),
                      accept_timeout=_env_optional_float('BALANCEDOPEN_ACCEPT_TIMEOUT'))

    def __repr__(self) -> str:
        return "Config({})".format(", ".join("{}={}".format(k, v) for k, v in vars(self).items()))


def chain_of(network: str) -> str:
    """python-bitcoinlib chain name for `network`"""
    if network not in NETWORKS:
        raise UnsupportedNetwork('UnsupportedNetworkForInitiatingBalancedChannel',
                                 {'network': network})
    return NETWORKS[network]


@contextmanager
def chain_params(network: str) -> Iterator[str]:
    """Run the block under `network`'s chain params, then restore the previous ones.

    python-bitcoinlib keeps its params process wide, so the block must not
    await: another negotiation may be running on another network.
    """
    chain = chain_of(network)
    previous = (bitcoin.params, bitcoin.core.coreparams)
    bitcoin.SelectParams(chain)
    try:
        yield chain
    finally:
        bitcoin.params, bitcoin.core.coreparams = previous


def parse_address(address: str, network: str) -> CBitcoinAddress:
    """Decode an address of `network`.  Its scripts no longer depend on params."""
    with chain_params(network):
        return CBitcoinAddress(address)
