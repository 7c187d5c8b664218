"""Everything one negotiation owns, in one place."""
import logging
from typing import Optional

from .config import Config, chain_of
from .errors import InvalidArgument
from .listener import AcceptanceListener
from .negotiate import validate_arguments
from .node import Ask, Node
from .transit import UtxoLocker


class NegotiationSession(object):
    """The state of one balanced channel negotiation with one peer.

    Nothing is shared between sessions.  The background work a session
    starts (the UTXO relock and the acceptance listeners) is registered
    here so `close` can tear it down on every exit path.
    """
    def __init__(self,
                 node: Node,
                 ask: Ask,
                 partner_public_key: str,
                 multisig_key_index: int,
                 transit_key_index: int,
                 transit_address: str,
                 refund_address: str,
                 network: str,
                 config: Optional[Config] = None,
                 logger: Optional[logging.Logger] = None):
        self.node = node
        self.ask = ask
        self.partner_public_key = partner_public_key
        self.multisig_key_index = multisig_key_index
        self.transit_key_index = transit_key_index
        self.transit_address = transit_address
        self.refund_address = refund_address
        self.network = network
        self.config = config if config is not None else Config.from_env()
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.chain: Optional[str] = None
        self.locker: Optional[UtxoLocker] = None
        self.listener: Optional[AcceptanceListener] = None

    def validate(self) -> None:
        if self.node is None:
            raise InvalidArgument('ExpectedNodeToInitBalancedChannel')
        if self.ask is None:
            raise InvalidArgument('ExpectedAskFunctionToInitBalancedChannel')
        self.chain = chain_of(self.network)
        validate_arguments(self.partner_public_key,
                           self.multisig_key_index,
                           self.transit_key_index,
                           self.transit_address,
                           self.refund_address,
                           self.network)

    def set_locker(self, locker: UtxoLocker) -> None:
        self.locker = locker
        locker.start()

    def set_listener(self, listener: AcceptanceListener) -> None:
        self.listener = listener
        listener.arm()

    async def close(self) -> None:
        if self.locker is not None:
            await self.locker.close()
        if self.listener is not None:
            await self.listener.close()
