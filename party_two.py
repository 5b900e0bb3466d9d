#!/usr/bin/env python3
"""Party two of the two-party RSA candidate generation protocol

The protocol runs in three stages, each made of rounds where both parties
exchange one message and verify the message of the counterparty:

    key setup:
        `generate_local_keys()`, then `verify_counterparty_and_finalize()`
    candidate share generation:
        `generate_share()`, then `verify_and_normalize()`
    trial division, once per trial divisor `alpha`:
        `prepare_reduction()`, then `verify_and_combine()`, then
        `verify_and_conclude()`

Each round takes the verified output of the previous one as argument. Any
failed verification raises a `hmrt.TwoPartyRSAError`; whether to start again
with fresh values or to give up on the counterparty is up to the caller.

Party two owns the second half of the candidate, `c1 = 4⋅Enc(share_1)`.
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
    """Generate the local keys and the first message of the key setup

    Arguments:
        params (hmrt.Parameters): the parameters agreed upon by both parties

    Returns:
        tuple: the message (`messages.KeySetupFirstMsg`) to be sent to party
            one and the secret keys (`hmrt.PrivateKeys`), which must be kept
            and given to `verify_counterparty_and_finalize()`
    """
    pk, sk = generate_elgamal_keypair(params.group)
    dlog_proof = zkproofs.DLogProof.prove(
        zkproofs.DLogWitness(sk.x),
        zkproofs.DLogStatement(params.group, pk.h),
    )

    ek, dk = paillier.generate_paillier_keypair(params.paillier_modulus, safe_primes=False)
    correct_key_proof = paillier.CorrectKeyProof.prove(dk)

    message = KeySetupFirstMsg(ek, pk, correct_key_proof, dlog_proof)
    return message, hmrt.PrivateKeys(dk, sk)


def verify_counterparty_and_finalize(party_one_first_message, party_two_first_message,
                                     party_two_private, params):
    """Check the keys of party one and derive the joint key

    Arguments:
        party_one_first_message (messages.KeySetupFirstMsg): received
        party_two_first_message (messages.KeySetupFirstMsg): sent
        party_two_private (hmrt.PrivateKeys): from `generate_local_keys()`
        params (hmrt.Parameters): the parameters of the protocol

    Returns:
        hmrt.KeySetup: the keys of party two

    Raises:
        hmrt.InvalidElGamalKey: party one does not know the secret key
            corresponding to its ElGamal public key
        hmrt.InvalidPaillierKey: party one's Paillier key is not well-formed
    """
    dlog_statement = zkproofs.DLogStatement(params.group, party_one_first_message.pk.h)
    try:
        party_one_first_message.dlog_proof.verify(dlog_statement)
    except zkproofs.InvalidProof as error:
        raise hmrt.InvalidElGamalKey from error

    try:
        party_one_first_message.correct_key_proof.verify(party_one_first_message.ek)
    except paillier.InvalidKey as error:
        raise hmrt.InvalidPaillierKey from error

    return hmrt.KeySetup(
        local_paillier_pubkey=party_two_first_message.ek,
        local_elgamal_pubkey=party_two_first_message.pk,
        remote_paillier_pubkey=party_one_first_message.ek,
        remote_elgamal_pubkey=party_one_first_message.pk,
        params=params,
        private=party_two_private,
    )


def commit_to_share(keys, share, randomness=None):
    """Encrypt a given share under the joint key, with proofs

    Arguments:
        keys (hmrt.KeySetup): the keys of party two
        share (int): the share, lower than `2^(N/2 - 2)`
        randomness (int, optional): randomness of the encryption

    Returns:
        tuple: `(hmrt.CandidateWitness, messages.CandidateGenerationFirstMsg)`
    """
    pk = keys.joint_elgamal_pubkey
    if randomness is None:
        randomness = random.SystemRandom().randrange(keys.pp.q)

    # the randomness is kept in the witness for the proofs of the next rounds
    c_i = pk.encrypt(share, randomness)
    enc_statement, bound_statement = hmrt.share_statements(keys, c_i)
    pi_enc = zkproofs.HomoElGamalProof.prove(zkproofs.HomoElGamalWitness(share, randomness), enc_statement)
    pi_bound = zkproofs.RangeProof.prove(zkproofs.RangeWitness(share, randomness), bound_statement)

    witness = hmrt.CandidateWitness(share, randomness)
    return witness, CandidateGenerationFirstMsg(c_i, pi_enc, pi_bound)


def generate_share(keys):
    """Sample a fresh share of the candidate and encrypt it

    Arguments:
        keys (hmrt.KeySetup): the keys of party two

    Returns:
        tuple: the witness (`hmrt.CandidateWitness`), to be kept for the
            rest of the attempt, and the message
            (`messages.CandidateGenerationFirstMsg`) to be sent to party one
    """
    share = random.SystemRandom().getrandbits(keys.params.share_bit_length)
    return commit_to_share(keys, share)


def verify_and_normalize(keys, party_one_first_message, party_two_first_message):
    """Check the encrypted share of party one and build the candidate

    Arguments:
        keys (hmrt.KeySetup): the keys of party two
        party_one_first_message (messages.CandidateGenerationFirstMsg): received
        party_two_first_message (messages.CandidateGenerationFirstMsg): sent

    Returns:
        hmrt.CiphertextPair: the encrypted halves of the candidate

    Raises:
        hmrt.CandidateGenerationEncError: a proof of party one is invalid
    """
    enc_statement, bound_statement = hmrt.share_statements(keys, party_one_first_message.c_i)
    try:
        party_one_first_message.pi_enc.verify(enc_statement)
        party_one_first_message.pi_bound.verify(bound_statement)
    except zkproofs.InvalidProof as error:
        raise hmrt.CandidateGenerationEncError from error

    return hmrt.normalize_ciphertexts(keys, party_one_first_message.c_i, party_two_first_message.c_i)


def prepare_reduction(alpha, keys, c, w):
    """First round of the trial division by `alpha`

    Arguments:
        alpha (int): the trial divisor
        keys (hmrt.KeySetup): the keys of party two
        c (hmrt.CiphertextPair): from `verify_and_normalize()`
        w (hmrt.CandidateWitness): from `generate_share()`

    Returns:
        messages.CandidateGenerationSecondMsg: to be sent to party one

    Raises:
        hmrt.InvalidModProof: the proof could not be generated
    """
    hmrt.check_divisor(alpha)
    q = keys.pp.q

    # c1 encrypts 4⋅p_1 with randomness 4⋅r_1
    p_1 = w.share * 4 % q
    r_1 = w.randomness * 4 % q

    c_1_alpha, pi_mod = hmrt.encrypt_reduced_share(keys, c.c1, p_1, r_1, alpha)
    return CandidateGenerationSecondMsg(c_1_alpha, pi_mod)


def verify_and_combine(party_one_second_message, party_two_second_message, alpha, keys, c):
    """Second round of the trial division by `alpha`

    Check the reduction of party one, and compute encryptions of
    `N mod alpha` and `N mod alpha - alpha`. Then, rerandomize them and
    partially decrypt the results.

    Arguments:
        party_one_second_message (messages.CandidateGenerationSecondMsg): received
        party_two_second_message (messages.CandidateGenerationSecondMsg): sent
        alpha (int): the trial divisor
        keys (hmrt.KeySetup): the keys of party two
        c (hmrt.CiphertextPair): from `verify_and_normalize()`

    Returns:
        tuple: the message (`messages.CandidateGenerationThirdMsg`) to be sent
            to party one, `c_alpha` and `c_alpha_tilde`
            (`elgamal.ElGamalCiphertext`), to be kept for
            `verify_and_conclude()`

    Raises:
        hmrt.InvalidModProof: the proof of party one is invalid
    """
    hmrt.check_divisor(alpha)
    pp = keys.pp
    pk = keys.joint_elgamal_pubkey

    statement = hmrt.mod_statement(keys, c.c0, party_one_second_message.c_i_alpha, alpha)
    try:
        party_one_second_message.pi_mod.verify(statement)
    except zkproofs.InvalidProof as error:
        raise hmrt.InvalidModProof from error

    # the sum of the reductions is in [0, 2⋅alpha - 2]; it is a multiple of
    # alpha if and only if it is 0 or alpha
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


def verify_and_conclude(c_alpha, c_alpha_tilde, party_one_third_message, keys):
    """Last round of the trial division by `alpha`

    Check that party one rerandomized `c_alpha` and `c_alpha_tilde` and
    partially decrypted the results correctly, then complete the decryptions.

    Arguments:
        c_alpha (elgamal.ElGamalCiphertext): from `verify_and_combine()`
        c_alpha_tilde (elgamal.ElGamalCiphertext): from `verify_and_combine()`
        party_one_third_message (messages.CandidateGenerationThirdMsg): received
        keys (hmrt.KeySetup): the keys of party two

    Returns:
        bool: `False` if the candidate is divisible by `alpha` (either
            decryption is the identity), `True` if it passes this trial
            division

    Raises:
        hmrt.CandidateGenerationDecError: a proof of party one is invalid
    """
    pp = keys.pp
    message = party_one_third_message
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
