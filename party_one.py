#!/usr/bin/env python3
"""Party one of the two-party RSA candidate generation protocol

This mirrors `party_two` (see its documentation for the sequence of rounds).
The only asymmetry is that party one owns the first half of the candidate,
`c0 = 4⋅Enc(share_0) + Enc(3)`, so its witness is shifted by 3 during the
trial division.
"""
import random

import hmrt
import paillier
import zkproofs
from elgamal import generate_elgamal_keypair
from messages import (
    CandidateGenerationFirstMsg,
    CandidateGenerationSecondMsg,
    CandidateGenerationThirdMsg,
    KeySetupFirstMsg,
)


def generate_local_keys(params):
    """Generate the local keys and the first message of the key setup"""
    pk, sk = generate_elgamal_keypair(params.group)
    dlog_proof = zkproofs.DLogProof.prove(
        zkproofs.DLogWitness(sk.x),
        zkproofs.DLogStatement(params.group, pk.h),
    )

    ek, dk = paillier.generate_paillier_keypair(params.paillier_modulus, safe_primes=False)
    correct_key_proof = paillier.CorrectKeyProof.prove(dk)

    message = KeySetupFirstMsg(ek, pk, correct_key_proof, dlog_proof)
    return message, hmrt.PrivateKeys(dk, sk)


def verify_counterparty_and_finalize(party_two_first_message, party_one_first_message,
                                     party_one_private, params):
    """Check the keys of party two and derive the joint key

    Raises:
        hmrt.InvalidElGamalKey
        hmrt.InvalidPaillierKey
    """
    dlog_statement = zkproofs.DLogStatement(params.group, party_two_first_message.pk.h)
    try:
        party_two_first_message.dlog_proof.verify(dlog_statement)
    except zkproofs.InvalidProof as error:
        raise hmrt.InvalidElGamalKey from error

    try:
        party_two_first_message.correct_key_proof.verify(party_two_first_message.ek)
    except paillier.InvalidKey as error:
        raise hmrt.InvalidPaillierKey from error

    return hmrt.KeySetup(
        local_paillier_pubkey=party_one_first_message.ek,
        local_elgamal_pubkey=party_one_first_message.pk,
        remote_paillier_pubkey=party_two_first_message.ek,
        remote_elgamal_pubkey=party_two_first_message.pk,
        params=params,
        private=party_one_private,
    )


def commit_to_share(keys, share, randomness=None):
    """Encrypt a given share under the joint key, with proofs"""
    pk = keys.joint_elgamal_pubkey
    if randomness is None:
        randomness = random.SystemRandom().randrange(keys.pp.q)

    c_i = pk.encrypt(share, randomness)
    enc_statement, bound_statement = hmrt.share_statements(keys, c_i)
    pi_enc = zkproofs.HomoElGamalProof.prove(zkproofs.HomoElGamalWitness(share, randomness), enc_statement)
    pi_bound = zkproofs.RangeProof.prove(zkproofs.RangeWitness(share, randomness), bound_statement)

    witness = hmrt.CandidateWitness(share, randomness)
    return witness, CandidateGenerationFirstMsg(c_i, pi_enc, pi_bound)


def generate_share(keys):
    """Sample a fresh share of the candidate and encrypt it"""
    share = random.SystemRandom().getrandbits(keys.params.share_bit_length)
    return commit_to_share(keys, share)


def verify_and_normalize(keys, party_two_first_message, party_one_first_message):
    """Check the encrypted share of party two and build the candidate

    Raises:
        hmrt.CandidateGenerationEncError
    """
    enc_statement, bound_statement = hmrt.share_statements(keys, party_two_first_message.c_i)
    try:
        party_two_first_message.pi_enc.verify(enc_statement)
        party_two_first_message.pi_bound.verify(bound_statement)
    except zkproofs.InvalidProof as error:
        raise hmrt.CandidateGenerationEncError from error

    return hmrt.normalize_ciphertexts(keys, party_one_first_message.c_i, party_two_first_message.c_i)


def prepare_reduction(alpha, keys, c, w):
    """First round of the trial division by `alpha`

    Raises:
        hmrt.InvalidModProof
    """
    hmrt.check_divisor(alpha)
    q = keys.pp.q

    # c0 encrypts 4⋅p_0 + 3 with randomness 4⋅r_0 (Enc(3) has none)
    p_0 = (w.share * 4 + 3) % q
    r_0 = w.randomness * 4 % q

    c_0_alpha, pi_mod = hmrt.encrypt_reduced_share(keys, c.c0, p_0, r_0, alpha)
    return CandidateGenerationSecondMsg(c_0_alpha, pi_mod)


def verify_and_combine(party_two_second_message, party_one_second_message, alpha, keys, c):
    """Second round of the trial division by `alpha`

    Raises:
        hmrt.InvalidModProof
    """
    hmrt.check_divisor(alpha)
    pp = keys.pp
    pk = keys.joint_elgamal_pubkey

    statement = hmrt.mod_statement(keys, c.c1, party_two_second_message.c_i_alpha, alpha)
    try:
        party_two_second_message.pi_mod.verify(statement)
    except zkproofs.InvalidProof as error:
        raise hmrt.InvalidModProof from error

    c_alpha = party_one_second_message.c_i_alpha + party_two_second_message.c_i_alpha
    c_alpha_tilde = c_alpha - pk.encrypt(alpha, randomness=0)

    c_alpha_random, ddh_proof_alpha = hmrt.rerandomize(pp, c_alpha)
    c_alpha_tilde_random, ddh_proof_alpha_tilde = hmrt.rerandomize(pp, c_alpha_tilde)
    partial_dec_c_alpha, proof_alpha = hmrt.partial_decrypt(keys, c_alpha_random)
    partial_dec_c_alpha_tilde, proof_alpha_tilde = hmrt.partial_decrypt(keys, c_alpha_tilde_random)

    message = CandidateGenerationThirdMsg(
        proof_alpha=proof_alpha,
        proof_alpha_tilde=proof_alpha_tilde,
        c_alpha_random=c_alpha_random,
        c_alpha_tilde_random=c_alpha_tilde_random,
        partial_dec_c_alpha=partial_dec_c_alpha,
        partial_dec_c_alpha_tilde=partial_dec_c_alpha_tilde,
        ddh_proof_alpha=ddh_proof_alpha,
        ddh_proof_alpha_tilde=ddh_proof_alpha_tilde,
    )
    return message, c_alpha, c_alpha_tilde


def verify_and_conclude(c_alpha, c_alpha_tilde, party_two_third_message, keys):
    """Last round of the trial division by `alpha`

    Returns:
        bool: `True` if the candidate passes this trial division

    Raises:
        hmrt.CandidateGenerationDecError
    """
    pp = keys.pp
    message = party_two_third_message
    try:
        message.ddh_proof_alpha.verify(
            hmrt.rerandomization_statement(pp, c_alpha, message.c_alpha_random))
        message.ddh_proof_alpha_tilde.verify(
            hmrt.rerandomization_statement(pp, c_alpha_tilde, message.c_alpha_tilde_random))
        message.proof_alpha.verify(hmrt.partial_decryption_statement(
            pp, keys.remote_elgamal_pubkey, message.c_alpha_random, message.partial_dec_c_alpha))
        message.proof_alpha_tilde.verify(hmrt.partial_decryption_statement(
            pp, keys.remote_elgamal_pubkey, message.c_alpha_tilde_random, message.partial_dec_c_alpha_tilde))
    except zkproofs.InvalidProof as error:
        raise hmrt.CandidateGenerationDecError from error

    divisible = hmrt.decrypts_to_zero(keys, message.c_alpha_random, message.partial_dec_c_alpha)
    degenerate = hmrt.decrypts_to_zero(keys, message.c_alpha_tilde_random, message.partial_dec_c_alpha_tilde)
    return not (divisible or degenerate)
