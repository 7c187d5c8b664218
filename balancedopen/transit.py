"""The initiator's contribution: a wallet tx paying the transit address."""
import asyncio
import logging
from typing import List, NamedTuple, Optional

from bitcoin.core import CTransaction, x

from .config import parse_address
from .errors import FundingAmountMismatch, MissingTransitOutput
from .node import Node, Outpoint, Output
from .utils import transit_tokens

logger = logging.getLogger(__name__)


class TransitFunding(NamedTuple):
    transaction: str
    transaction_id: str
    transaction_vout: int
    tokens: int
    inputs: Optional[List[Outpoint]] = None

    @property
    def outpoint(self) -> Outpoint:
        return Outpoint(self.transaction_id, self.transaction_vout)


async def fund_transit(node: Node,
                       transit_address: str,
                       capacity: int,
                       fee_rate: int,
                       vbytes: int,
                       network: str) -> TransitFunding:
    """Have the wallet fund the transit address, and check what it made"""
    tokens = transit_tokens(capacity, fee_rate, vbytes)
    transit_script = parse_address(transit_address, network).to_scriptPubKey()

    funded = await node.fund_to_address([Output(address=transit_address, tokens=tokens)], fee_rate)

    if not funded.transaction:
        raise MissingTransitOutput('ExpectedTransactionToInitiateBalancedOpen')

    tx = CTransaction.deserialize(x(funded.transaction))
    for vout, out in enumerate(tx.vout):
        if out.scriptPubKey == transit_script:
            break
    else:
        raise MissingTransitOutput('ExpectedInitTxOutputPayingToTransitAddress')

    if tx.vout[vout].nValue != tokens:
        raise FundingAmountMismatch('UnexpectedFundingAmountPayingToTransitAddress',
                                    {'expected': tokens, 'actual': tx.vout[vout].nValue})

    return TransitFunding(transaction=funded.transaction,
                          transaction_id=funded.id,
                          transaction_vout=vout,
                          tokens=tokens,
                          inputs=funded.inputs)


class UtxoLocker(object):
    """Keeps re-locking the coins a pending tx spends, until stopped.

    Failures are logged: the lock is a courtesy against our own wallet
    spending the coins, and losing it must not abort the negotiation."""
    def __init__(self, node: Node, id: str, inputs: List[Outpoint], interval: float):
        self.node = node
        self.id = id
        self.inputs = inputs
        self.interval = interval
        self.task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self.task is None:
            self.task = asyncio.ensure_future(self._relock())

    async def _relock(self) -> None:
        while True:
            try:
                await self.node.lock_utxos(self.id, self.inputs)
            except asyncio.CancelledError:
                raise
            except Exception as err:
                logger.error("failed to relock inputs of %s: %s", self.id, err)
            await asyncio.sleep(self.interval)

    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    def stop(self) -> None:
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def close(self) -> None:
        self.stop()
        if self.task is not None:
            await asyncio.gather(self.task, return_exceptions=True)
