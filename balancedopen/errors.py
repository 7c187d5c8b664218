from typing import Any, Dict, Optional


class NegotiationError(Exception):
    """Error thrown when a balanced channel negotiation fails in some way"""

    code = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"[{self.code}, {self.message}, {self.details}]"
        return f"[{self.code}, {self.message}]"


# Caller errors: rejected before any funds or network action.
class ValidationError(NegotiationError):
    code = 400


class InvalidArgument(ValidationError):
    pass


class InvalidCapacity(ValidationError):
    pass


class InvalidFeeRate(ValidationError):
    pass


class InvalidPublicKey(ValidationError):
    pass


class InvalidAddress(ValidationError):
    pass


class UnsupportedNetwork(ValidationError):
    pass


class NoInboundLiquidity(ValidationError):
    pass


class ReachabilityError(NegotiationError):
    pass


class NoRouteToPeer(ReachabilityError):
    pass


class ChannelOpenRejected(ReachabilityError):
    pass


class FundingError(NegotiationError):
    code = 400


class MissingTransitOutput(FundingError):
    pass


class FundingAmountMismatch(FundingError):
    pass


class RefundDerivationFailed(FundingError):
    code = 503


class DeliveryError(NegotiationError):
    pass


class RouteNotFound(DeliveryError):
    pass


class MessageDeliveryFailed(DeliveryError):
    pass


class AcceptanceError(NegotiationError):
    pass


class MissingAcceptancePayload(AcceptanceError):
    pass


class MalformedAcceptance(AcceptanceError):
    pass


class AcceptanceListenerFailed(AcceptanceError):
    pass


class SigningError(NegotiationError):
    pass


class PeerSignatureInvalid(SigningError):
    pass


class SignatureMismatch(SigningError):
    pass


class MissingFundingOutput(SigningError):
    pass


class ProposalError(NegotiationError):
    pass


class ProposalRejected(ProposalError):
    pass
