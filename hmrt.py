#!/usr/bin/env python3
"""Shared pieces of the two-party RSA candidate generation protocol

Both parties hold a share of an RSA modulus candidate
`N = 4⋅(share_0 + share_1) + 3`, encrypted under a joint exponential ElGamal
key, and run a zero-knowledge trial division to discard candidates which are
divisible by small primes. This module holds what is common to the two roles:
the parameters, the error taxonomy, the key bundle, and the building blocks of
the trial division. The roles themselves are implemented in `party_one` and
`party_two`.
"""
import random

import util
import zkproofs
from elgamal import ElGamalPP

CANDIDATE_BIT_LENGTH = 2048
PAILLIER_MODULUS = 2048
RANGE_PROOF_SECURITY = 120


class TwoPartyRSAError(Exception):
    """Base class of the failures which abort the current round"""


class InvalidElGamalKey(TwoPartyRSAError):
    """The proof of knowledge of the counterparty's ElGamal secret key failed"""


class InvalidPaillierKey(TwoPartyRSAError):
    """The proof of correctness of the counterparty's Paillier key failed"""


class CandidateGenerationEncError(TwoPartyRSAError):
    """The counterparty's share is not properly encrypted or out of range"""


class InvalidModProof(TwoPartyRSAError):
    """A proof of modular reduction could not be produced or verified"""


class CandidateGenerationDecError(TwoPartyRSAError):
    """The counterparty's rerandomization or partial decryption is invalid"""


class CandidateGenerationFailed(TwoPartyRSAError):
    """No candidate survived the trial division within the allowed attempts"""


class Parameters:
    """Public parameters both parties must agree on

    Parameters are read-only: both roles must keep using the values fixed at
    key setup.

    Attributes:
        group (ElGamalPP): group of the ElGamal keys
        candidate_bit_length (int): size of the RSA modulus candidate
        paillier_modulus (int): size of the local Paillier moduli
        range_security (int): number of repetitions of the range proofs
    """
    def __init__(self, group, candidate_bit_length=CANDIDATE_BIT_LENGTH,
                 paillier_modulus=PAILLIER_MODULUS, range_security=RANGE_PROOF_SECURITY):
        # the scaled shares and the range proof values must not wrap modulo q
        if candidate_bit_length // 2 + 4 >= group.q.bit_length():
            raise ValueError('the group is too small for this candidate size')
        if candidate_bit_length < 8:
            raise ValueError('candidate too small')
        self._group = group
        self._candidate_bit_length = candidate_bit_length
        self._paillier_modulus = paillier_modulus
        self._range_security = range_security

    @classmethod
    def default(cls):
        return cls(ElGamalPP.ffdhe2048())

    @property
    def group(self):
        return self._group

    @property
    def candidate_bit_length(self):
        return self._candidate_bit_length

    @property
    def paillier_modulus(self):
        return self._paillier_modulus

    @property
    def range_security(self):
        return self._range_security

    @property
    def share_bit_length(self):
        """Size of the shares actually sampled"""
        return self.candidate_bit_length // 2 - 2

    @property
    def share_bound(self):
        """Bound declared in the range and modular reduction proofs

        This is `2^(N/2)` rather than the sampling bound `2^(N/2-2)`: the
        range proof has some slack anyway, and the ciphertexts on which the
        reductions are proved are scaled by 4.
        """
        return 2**(self.candidate_bit_length // 2)

    def __repr__(self):
        return 'Parameters({!r}, candidate_bit_length={}, paillier_modulus={}, range_security={})'.format(
            self.group, self.candidate_bit_length, self.paillier_modulus, self.range_security,
        )


class PrivateKeys:
    """Secret keys of one party

    This is never sent to the counterparty, hence it offers no serialization.

    Attributes:
        dk (paillier.PaillierSecretKey): local Paillier secret key
        sk (elgamal.ElGamalSecretKey): local ElGamal secret key
    """
    def __init__(self, dk, sk):
        self.dk = dk
        self.sk = sk

    def __repr__(self):
        return 'PrivateKeys(<hidden>)'


class KeySetup:
    """Keys of one party after the key setup

    Attributes:
        local_paillier_pubkey (paillier.PaillierPublicKey)
        local_elgamal_pubkey (elgamal.ElGamalPublicKey)
        remote_paillier_pubkey (paillier.PaillierPublicKey)
        remote_elgamal_pubkey (elgamal.ElGamalPublicKey)
        joint_elgamal_pubkey (elgamal.ElGamalPublicKey): sum of the two
            ElGamal public keys; the candidate is encrypted under this key
        params (Parameters): parameters of the protocol
        private (PrivateKeys): the local secret keys
    """
    def __init__(self, local_paillier_pubkey, local_elgamal_pubkey,
                 remote_paillier_pubkey, remote_elgamal_pubkey, params, private):
        self.local_paillier_pubkey = local_paillier_pubkey
        self.local_elgamal_pubkey = local_elgamal_pubkey
        self.remote_paillier_pubkey = remote_paillier_pubkey
        self.remote_elgamal_pubkey = remote_elgamal_pubkey
        self.joint_elgamal_pubkey = local_elgamal_pubkey + remote_elgamal_pubkey
        self.params = params
        self.private = private

    @property
    def pp(self):
        return self.params.group


class CandidateWitness:
    """Private share of a candidate and the randomness of its encryption

    Attributes:
        share (int): the share `p_i`
        randomness (int): the randomness `r_i` used to encrypt it
    """
    def __init__(self, share, randomness):
        self.share = share
        self.randomness = randomness

    def __repr__(self):
        return 'CandidateWitness(<hidden>)'


class CiphertextPair:
    """Encrypted halves of the candidate

    Attributes:
        c0 (elgamal.ElGamalCiphertext): `4⋅share_0 + 3`, from party one
        c1 (elgamal.ElGamalCiphertext): `4⋅share_1`, from party two
    """
    def __init__(self, c0, c1):
        self.c0 = c0
        self.c1 = c1

    @property
    def candidate(self):
        """Encryption of the candidate `4⋅(share_0 + share_1) + 3`"""
        return self.c0 + self.c1

    def __eq__(self, other):
        if not isinstance(other, CiphertextPair):
            return NotImplemented
        return (self.c0, self.c1) == (other.c0, other.c1)

    def __repr__(self):
        return 'CiphertextPair(c0={!r}, c1={!r})'.format(self.c0, self.c1)


def normalize_ciphertexts(keys, c_party_one, c_party_two):
    """Combine the encrypted shares into the Blum-form candidate

    The constant 3 is encrypted with zero randomness, so that both parties
    compute exactly the same pair.
    """
    pk = keys.joint_elgamal_pubkey
    return CiphertextPair(
        c_party_one * 4 + pk.encrypt(3, randomness=0),
        c_party_two * 4,
    )


def share_statements(keys, ciphertext):
    """Statements of the proofs attached to an encrypted share"""
    pk = keys.joint_elgamal_pubkey
    params = keys.params
    enc_statement = zkproofs.HomoElGamalStatement(pk, ciphertext)
    bound_statement = zkproofs.RangeStatement(pk, ciphertext, params.share_bound, params.range_security)
    return enc_statement, bound_statement


def mod_statement(keys, c, c_alpha, alpha):
    """Statement of the proof that `c_alpha` encrypts the reduction of `c`"""
    params = keys.params
    return zkproofs.ModStatement(
        keys.joint_elgamal_pubkey, c, c_alpha, alpha, params.share_bound, params.range_security,
    )


def check_divisor(alpha):
    if alpha <= 1:
        raise ValueError('trial divisors must be greater than 1')


def encrypt_reduced_share(keys, c, scaled_share, scaled_randomness, alpha):
    """Encrypt the reduction of a scaled share and prove it

    Arguments:
        keys (KeySetup): the keys of the party
        c (elgamal.ElGamalCiphertext): the half of the candidate owned by the
            party, encrypting `scaled_share` with `scaled_randomness`
        scaled_share (int): the message of `c`
        scaled_randomness (int): the randomness of `c`
        alpha (int): the trial divisor

    Returns:
        tuple: the encryption of `scaled_share mod alpha` and the
            corresponding `zkproofs.ModProof`
    """
    pp = keys.pp
    share_mod_alpha = scaled_share % alpha
    r_alpha = random.SystemRandom().randrange(pp.q)
    c_alpha = keys.joint_elgamal_pubkey.encrypt(share_mod_alpha, r_alpha)
    witness = zkproofs.ModWitness(scaled_share, scaled_randomness, share_mod_alpha, r_alpha)
    try:
        proof = zkproofs.ModProof.prove(witness, mod_statement(keys, c, c_alpha, alpha))
    except ValueError as error:
        raise InvalidModProof(str(error)) from error
    return c_alpha, proof


def rerandomization_statement(pp, c, c_random):
    """Statement that `c_random = r⋅c` for some secret `r`"""
    return zkproofs.DDHStatement(pp, c.c1, c_random.c1, c.c2, c_random.c2)


def partial_decryption_statement(pp, pubkey, c_random, partial_decryption):
    """Statement that `partial_decryption = c1^x` where `pubkey = g^x`"""
    return zkproofs.DDHStatement(pp, pp.g, pubkey.h, c_random.c1, partial_decryption)


def rerandomize(pp, c):
    """Raise a ciphertext to a fresh secret exponent, with a proof

    A ciphertext of zero stays a ciphertext of zero, but the message of any
    other ciphertext becomes uniformly random.

    Returns:
        tuple: the rerandomized ciphertext and the `zkproofs.DDHProof`
    """
    r = random.SystemRandom().randrange(1, pp.q)
    c_random = c * r
    proof = zkproofs.DDHProof.prove(zkproofs.DDHWitness(r), rerandomization_statement(pp, c, c_random))
    return c_random, proof


def partial_decrypt(keys, c_random):
    """Partially decrypt a ciphertext with the local secret key, with a proof

    Returns:
        tuple: `c1^x` and the `zkproofs.DDHProof`
    """
    pp = keys.pp
    sk = keys.private.sk
    partial_decryption = sk.partial_decrypt(c_random)
    statement = partial_decryption_statement(pp, keys.local_elgamal_pubkey, c_random, partial_decryption)
    proof = zkproofs.DDHProof.prove(zkproofs.DDHWitness(sk.x), statement)
    return partial_decryption, proof


def decrypts_to_zero(keys, c_random, remote_partial_decryption):
    """Whether the full decryption of `c_random` is the identity (`g^0`)"""
    p = keys.pp.p
    local_partial_decryption = keys.private.sk.partial_decrypt(c_random)
    full_decryption = local_partial_decryption * remote_partial_decryption % p
    # c2 / (c1^x0 c1^x1) = g^m
    return c_random.c2 * util.invert(full_decryption, p) % p == 1
