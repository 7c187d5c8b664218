"""Wait for the peer to accept, over whichever transport answers first.

The peer can answer two ways: a direct peer message carrying the acceptance
records, or a payment settling our acceptance invoice with the records
attached.  Both are listened to at once.  The first one to produce an answer
claims the race: before doing anything else it deregisters the peer service
and cancels the other listener, so only one answer is ever processed.
"""
import asyncio
import logging
from typing import List, Optional, Set

from .accept import AcceptanceDetails, parse_accept_details
from .errors import AcceptanceListenerFailed, MalformedAcceptance, MissingAcceptancePayload, NegotiationError
from .node import Node, PeerRequestService
from .probe import close_stream
from .records import RecordType, find_record

logger = logging.getLogger(__name__)

DIRECT = 'peer_message'
SETTLEMENT = 'invoice'


class AcceptanceListener(object):
    def __init__(self,
                 node: Node,
                 peer_service: PeerRequestService,
                 partner_public_key: str,
                 invoice_id: str,
                 timeout: Optional[float] = None):
        self.node = node
        self.peer_service = peer_service
        self.partner_public_key = partner_public_key
        self.invoice_id = invoice_id
        self.timeout = timeout
        self.winner: Optional[str] = None
        self.winner_task: Optional[asyncio.Task] = None
        self.result: Optional[asyncio.Future] = None
        self.tasks: List[asyncio.Task] = []
        self.ended: Set[str] = set()

    def arm(self) -> None:
        """Start both listeners: do this before the request goes out"""
        if self.result is not None:
            raise RuntimeError("listener already armed")
        self.result = asyncio.get_event_loop().create_future()
        self.tasks = [asyncio.ensure_future(self._listen_direct()),
                      asyncio.ensure_future(self._listen_settlement())]

    async def wait(self) -> AcceptanceDetails:
        if self.result is None:
            self.arm()
        logger.info("waiting_for_peer_balanced_channel_acceptance: %s", self.invoice_id)
        try:
            return await asyncio.wait_for(self.result, self.timeout)
        except asyncio.TimeoutError:
            raise AcceptanceListenerFailed('TimedOutWaitingForChannelAccept',
                                           {'timeout': self.timeout}) from None
        finally:
            await self.close()

    async def close(self) -> None:
        """Stop, then wait for both listeners to have let go of their streams"""
        self.stop()
        await asyncio.gather(*self.tasks, return_exceptions=True)

    def stop(self) -> None:
        """Tear down both listeners.  Safe to call at any point, repeatedly."""
        answered = self.result is not None and self.result.done()
        # A winner that has answered is only closing its stream.
        self._silence(keep=self.winner_task if answered else None)
        if self.result is None:
            return
        if not self.result.done():
            self.result.cancel()
        elif not self.result.cancelled():
            # Mark it retrieved: whoever failed already saw this error.
            self.result.exception()

    def _silence(self, keep: Optional[asyncio.Task] = None) -> None:
        self.peer_service.stop()
        for task in self.tasks:
            if task is not keep and not task.done():
                task.cancel()

    def _claim(self, source: str) -> bool:
        """First caller wins; everyone else is told to drop what they have"""
        if self.winner is not None or self.result is None or self.result.done():
            return False
        self.winner = source
        self.winner_task = asyncio.current_task()
        self._silence(keep=self.winner_task)
        return True

    def _finish(self, details: Optional[AcceptanceDetails] = None,
                error: Optional[NegotiationError] = None) -> None:
        if self.result is None or self.result.done():
            return
        if error is not None:
            self.result.set_exception(error)
        else:
            self.result.set_result(details)

    def _fail(self, source: str, err: Exception) -> None:
        if self._claim(source) or self.winner == source:
            self._finish(error=AcceptanceListenerFailed('UnexpectedErrorWaitingForChannelAccept',
                                                        {'source': source, 'err': err}))

    def _end(self, source: str) -> None:
        self.ended.add(source)
        if self.ended == {DIRECT, SETTLEMENT} and self._claim(source):
            self._finish(error=AcceptanceListenerFailed('AcceptanceListenersEndedWithoutAnswer'))

    async def _cancel_invoice(self) -> None:
        try:
            await self.node.cancel_invoice(self.invoice_id)
        except Exception as err:
            logger.error("failed to cancel acceptance invoice %s: %s", self.invoice_id, err)

    async def _listen_direct(self) -> None:
        expected_id = bytes.fromhex(self.invoice_id)
        stream = self.peer_service.requests(RecordType.accept_request)
        try:
            async for request in stream:
                if request.from_public_key != self.partner_public_key:
                    continue

                id_record = find_record(request.records, RecordType.request_id)
                if id_record is None or id_record.value != expected_id:
                    logger.debug("ignoring acceptance for another request: %s", request)
                    continue

                if not self._claim(DIRECT):
                    return

                await self._cancel_invoice()
                logger.info("received_balanced_channel_acceptance from %s", request.from_public_key)

                try:
                    details = parse_accept_details(request.records)
                except MalformedAcceptance as err:
                    await self._reply(request.failure(err.message))
                    self._finish(error=err)
                    return

                await self._reply(request.success())
                self._finish(details=details)
                return
        except Exception as err:
            self._fail(DIRECT, err)
            return
        finally:
            await close_stream(stream)
        self._end(DIRECT)

    async def _reply(self, reply) -> None:
        try:
            await reply
        except Exception as err:
            logger.error("failed to reply to peer %s: %s", self.partner_public_key, err)

    async def _listen_settlement(self) -> None:
        stream = self.node.subscribe_to_invoice(self.invoice_id)
        try:
            async for invoice in stream:
                if not invoice.is_confirmed:
                    continue

                if not self._claim(SETTLEMENT):
                    return

                logger.info("received_peer_balanced_channel_acceptance: %s", invoice.id)

                for payment in invoice.payments:
                    if find_record(payment.messages, RecordType.multisig_public_key) is not None:
                        break
                else:
                    self._finish(error=MissingAcceptancePayload('ExpectedPaymentWithPeerChannelDetails'))
                    return

                try:
                    details = parse_accept_details(payment.messages)
                except MalformedAcceptance as err:
                    self._finish(error=err)
                    return

                self._finish(details=details)
                return
        except Exception as err:
            self._fail(SETTLEMENT, err)
            return
        finally:
            await close_stream(stream)
        self._end(SETTLEMENT)
