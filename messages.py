#!/usr/bin/env python3
"""Messages exchanged between the two parties

Both roles send messages of the same shape at each round. Messages only carry
public values (public keys, ciphertexts, proofs); they are immutable and can be
converted to and from JSON-compatible structures with `to_json()` and
`from_json()`. Since the group is agreed upon beforehand, it is not part of the
messages and must be given to `from_json()`.
"""
from dataclasses import dataclass

from elgamal import ElGamalCiphertext, ElGamalPublicKey
from paillier import CorrectKeyProof, PaillierPublicKey
from zkproofs import DDHProof, DLogProof, HomoElGamalProof, ModProof, RangeProof


@dataclass(frozen=True)
class KeySetupFirstMsg:
    """Local public keys with their proofs of well-formedness"""

    ek: PaillierPublicKey
    pk: ElGamalPublicKey
    correct_key_proof: CorrectKeyProof
    dlog_proof: DLogProof

    def to_json(self):
        return {
            'ek': self.ek.to_json(),
            'pk': self.pk.to_json(),
            'correct_key_proof': self.correct_key_proof.to_json(),
            'dlog_proof': self.dlog_proof.to_json(),
        }

    @classmethod
    def from_json(cls, data, pp):
        return cls(
            PaillierPublicKey.from_json(data['ek']),
            ElGamalPublicKey.from_json(data['pk'], pp),
            CorrectKeyProof.from_json(data['correct_key_proof']),
            DLogProof.from_json(data['dlog_proof'], pp),
        )


@dataclass(frozen=True)
class CandidateGenerationFirstMsg:
    """Encrypted share with proofs of knowledge and of range"""

    c_i: ElGamalCiphertext
    pi_enc: HomoElGamalProof
    pi_bound: RangeProof

    def to_json(self):
        return {
            'c_i': self.c_i.to_json(),
            'pi_enc': self.pi_enc.to_json(),
            'pi_bound': self.pi_bound.to_json(),
        }

    @classmethod
    def from_json(cls, data, pp):
        return cls(
            ElGamalCiphertext.from_json(data['c_i'], pp),
            HomoElGamalProof.from_json(data['pi_enc'], pp),
            RangeProof.from_json(data['pi_bound'], pp),
        )


@dataclass(frozen=True)
class CandidateGenerationSecondMsg:
    """Encryption of the scaled share modulo the trial divisor, with its proof"""

    c_i_alpha: ElGamalCiphertext
    pi_mod: ModProof

    def to_json(self):
        return {
            'c_i_alpha': self.c_i_alpha.to_json(),
            'pi_mod': self.pi_mod.to_json(),
        }

    @classmethod
    def from_json(cls, data, pp):
        return cls(
            ElGamalCiphertext.from_json(data['c_i_alpha'], pp),
            ModProof.from_json(data['pi_mod'], pp),
        )


@dataclass(frozen=True)
class CandidateGenerationThirdMsg:
    """Rerandomized ciphertexts and their partial decryptions, with proofs

    The `_alpha` values relate to `c_alpha` (encrypting `N mod alpha`), the
    `_alpha_tilde` ones to `c_alpha_tilde` (encrypting `N mod alpha - alpha`).
    `ddh_proof_*` prove the rerandomizations, `proof_*` the partial
    decryptions.
    """

    proof_alpha: DDHProof
    proof_alpha_tilde: DDHProof
    c_alpha_random: ElGamalCiphertext
    c_alpha_tilde_random: ElGamalCiphertext
    partial_dec_c_alpha: int
    partial_dec_c_alpha_tilde: int
    ddh_proof_alpha: DDHProof
    ddh_proof_alpha_tilde: DDHProof

    def to_json(self):
        return {
            'proof_alpha': self.proof_alpha.to_json(),
            'proof_alpha_tilde': self.proof_alpha_tilde.to_json(),
            'c_alpha_random': self.c_alpha_random.to_json(),
            'c_alpha_tilde_random': self.c_alpha_tilde_random.to_json(),
            'partial_dec_c_alpha': self.partial_dec_c_alpha,
            'partial_dec_c_alpha_tilde': self.partial_dec_c_alpha_tilde,
            'ddh_proof_alpha': self.ddh_proof_alpha.to_json(),
            'ddh_proof_alpha_tilde': self.ddh_proof_alpha_tilde.to_json(),
        }

    @classmethod
    def from_json(cls, data, pp):
        return cls(
            DDHProof.from_json(data['proof_alpha'], pp),
            DDHProof.from_json(data['proof_alpha_tilde'], pp),
            ElGamalCiphertext.from_json(data['c_alpha_random'], pp),
            ElGamalCiphertext.from_json(data['c_alpha_tilde_random'], pp),
            int(data['partial_dec_c_alpha']),
            int(data['partial_dec_c_alpha_tilde']),
            DDHProof.from_json(data['ddh_proof_alpha'], pp),
            DDHProof.from_json(data['ddh_proof_alpha_tilde'], pp),
        )
