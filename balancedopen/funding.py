# Support for the joint funding tx and the transit refund.
from hashlib import sha256
from typing import Any, Iterable, List, NamedTuple, Tuple

import coincurve
import bitcoin.core.script as script
from bitcoin.core import (COutPoint, CScript, CTxIn, CTxOut, CMutableTransaction, CTxWitness,
                          CTxInWitness, CScriptWitness, Hash160, b2lx, b2x, lx)
from bitcoin.wallet import P2WSHBitcoinAddress

from .config import Config, TRANSIT_KEY_FAMILY, chain_params, parse_address
from .errors import MissingFundingOutput, RefundDerivationFailed
from .node import Node, Outpoint, SignInput

# Sequence which enables lock time without signalling replacement.
LOCKTIME_SEQUENCE = 0xfffffffe
# Smallest P2WPKH output relayed by default.
DUST_LIMIT = 294


def p2wpkh_script_code(public_key: bytes) -> CScript:
    """BIP143 script code for spending a P2WPKH output"""
    return CScript([script.OP_DUP, script.OP_HASH160, Hash160(public_key),
                    script.OP_EQUALVERIFY, script.OP_CHECKSIG])


def witness_sighash(tx: CMutableTransaction, vin: int, script_code: CScript, amount: int) -> bytes:
    return script.SignatureHash(script_code, tx, vin, script.SIGHASH_ALL,
                                amount=amount, sigversion=script.SIGVERSION_WITNESS_V0)


def verify_witness_signature(tx: CMutableTransaction,
                             vin: int,
                             public_key: bytes,
                             signature: bytes,
                             amount: int) -> bool:
    """Check a P2WPKH witness signature (with trailing SIGHASH_ALL flag)"""
    if len(signature) < 2 or signature[-1] != script.SIGHASH_ALL:
        return False
    sighash = witness_sighash(tx, vin, p2wpkh_script_code(public_key), amount)
    try:
        return coincurve.PublicKey(public_key).verify(signature[:-1], sighash, hasher=None)
    except ValueError:
        return False


def input_sort_key(outpoint: Outpoint) -> Tuple[str, int]:
    """BIP 69 order: txid hash in internal byte order, then output index"""
    return (lx(outpoint.transaction_id).hex(), outpoint.transaction_vout)


class MultisigScript(object):
    """The 2-of-2 witness script both sides pay the channel capacity to"""
    def __init__(self, public_key: str, remote_public_key: str):
        self.local_key = bytes.fromhex(public_key)
        self.remote_key = bytes.fromhex(remote_public_key)

    def key_sort(self, local: Any, remote: Any) -> Tuple[Any, Any]:
        """Sorts these two items into lexicographical funding key order"""
        # BOLT #3:
        # * Where `pubkey1` is the lexicographically lesser of the two
        #   `funding_pubkey` in compressed format, and where `pubkey2` is the
        #   lexicographically greater of the two.
        if self.local_key < self.remote_key:
            return local, remote
        else:
            return remote, local

    def public_keys(self) -> Tuple[bytes, bytes]:
        """Returns funding pubkeys, in script order"""
        return self.key_sort(self.local_key, self.remote_key)

    def witness_script(self) -> CScript:
        return CScript([script.OP_2]
                       + list(self.public_keys())
                       + [script.OP_2,
                          script.OP_CHECKMULTISIG])

    def hash(self) -> bytes:
        return sha256(self.witness_script()).digest()

    def script_pubkey(self) -> CScript:
        return CScript([script.OP_0, self.hash()])

    def address(self, network: str) -> str:
        """P2WSH address on `network`"""
        with chain_params(network):
            return str(P2WSHBitcoinAddress.from_scriptPubKey(self.script_pubkey()))


class JointFunding(object):
    """The channel funding tx spending both sides' transit outputs.

    Both peers build this independently from the same two outpoints, so
    nothing about it may depend on who builds it: inputs are sorted, there
    is a single output, and version, sequence and lock time are fixed.
    """
    def __init__(self, capacity: int, multisig: MultisigScript, outpoints: Iterable[Outpoint]):
        self.capacity = capacity
        self.multisig = multisig
        self.inputs = sorted(outpoints, key=input_sort_key)
        if len(set(self.inputs)) != len(self.inputs):
            raise ValueError("duplicate funding inputs {}".format(self.inputs))
        self.witnesses: List[List[bytes]] = [[] for _ in self.inputs]

    def vin_of(self, outpoint: Outpoint) -> int:
        return self.inputs.index(outpoint)

    def set_witness(self, outpoint: Outpoint, stack: List[bytes]) -> None:
        self.witnesses[self.vin_of(outpoint)] = list(stack)

    def _build(self, with_witness: bool) -> CMutableTransaction:
        vin = [CTxIn(COutPoint(lx(o.transaction_id), o.transaction_vout), nSequence=0)
               for o in self.inputs]
        vout = [CTxOut(self.capacity, self.multisig.script_pubkey())]
        if with_witness:
            wit = CTxWitness([CTxInWitness(CScriptWitness(stack)) for stack in self.witnesses])
        else:
            wit = CTxWitness([CTxInWitness() for _ in self.inputs])
        return CMutableTransaction(vin, vout, nLockTime=0, nVersion=1, witness=wit)

    def unsigned_transaction(self) -> CMutableTransaction:
        return self._build(with_witness=False)

    def transaction(self) -> CMutableTransaction:
        return self._build(with_witness=True)

    def serialize(self) -> str:
        return b2x(self.transaction().serialize())

    @property
    def transaction_id(self) -> str:
        # Witnesses do not change the txid.
        return b2lx(self.unsigned_transaction().GetTxid())

    def funding_vout(self) -> int:
        for n, out in enumerate(self.transaction().vout):
            if out.nValue == self.capacity and out.scriptPubKey == self.multisig.script_pubkey():
                return n
        raise MissingFundingOutput('ExpectedFundingOutputPayingToMultiSigAddress')

    def verify_input_signature(self, outpoint: Outpoint, amount: int) -> bool:
        """Does the witness on this input validly sign for `amount`?"""
        stack = self.witnesses[self.vin_of(outpoint)]
        if len(stack) != 2:
            return False
        signature, public_key = stack
        return verify_witness_signature(self.transaction(), self.vin_of(outpoint),
                                        public_key, signature, amount)


class TransitRefund(NamedTuple):
    transaction: str
    tokens: int
    lock_time: int


async def derive_transit_refund(node: Node,
                                outpoint: Outpoint,
                                funded_tokens: int,
                                transit_address: str,
                                transit_public_key: str,
                                transit_key_index: int,
                                refund_address: str,
                                fee_rate: int,
                                config: Config,
                                network: str) -> TransitRefund:
    """Sign a tx sending the transit funds back, valid after a delay.

    Should the peer never answer, this reclaims the transit output."""
    try:
        height = await node.get_height()
        tokens = funded_tokens - config.refund_tx_vbytes * fee_rate
        if tokens < DUST_LIMIT:
            raise RefundDerivationFailed('RefundAmountBelowDustLimit', {'tokens': tokens})

        transit = parse_address(transit_address, network)
        lock_time = height + config.refund_delay_blocks
        txin = CTxIn(COutPoint(lx(outpoint.transaction_id), outpoint.transaction_vout),
                     nSequence=LOCKTIME_SEQUENCE)
        txout = CTxOut(tokens, parse_address(refund_address, network).to_scriptPubKey())
        tx = CMutableTransaction([txin], [txout], nLockTime=lock_time, nVersion=2)

        signatures = await node.sign_transaction(b2x(tx.serialize()), [
            SignInput(key_family=TRANSIT_KEY_FAMILY,
                      key_index=transit_key_index,
                      output_script=b2x(transit.to_scriptPubKey()),
                      output_tokens=funded_tokens,
                      sighash=script.SIGHASH_ALL,
                      vin=0,
                      witness_script=b2x(transit.to_redeemScript()))])
    except RefundDerivationFailed:
        raise
    except Exception as err:
        raise RefundDerivationFailed('FailedToDeriveTransitRefundTransaction', {'err': err}) from err

    if not signatures:
        raise RefundDerivationFailed('ExpectedSignatureForTransitRefund')

    sig = bytes.fromhex(signatures[0]) + bytes([script.SIGHASH_ALL])
    public_key = bytes.fromhex(transit_public_key)
    if not verify_witness_signature(tx, 0, public_key, sig, funded_tokens):
        raise RefundDerivationFailed('InvalidSignatureForTransitRefund')

    tx.wit = CTxWitness([CTxInWitness(CScriptWitness([sig, public_key]))])
    return TransitRefund(transaction=b2x(tx.serialize()), tokens=tokens, lock_time=lock_time)
