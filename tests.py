#!/usr/bin/env python3
import io
import copy
import json
import random
import functools
import contextlib
import dataclasses
import multiprocessing
import unittest
from unittest import mock

import util
import hmrt
import elgamal
import paillier
import zkproofs
import protocol
import party_one
import party_two

_N_BITS = 103
_GROUP_BITS = 256
_CANDIDATE_BITS = 64
_PAILLIER_BITS = 256
_RANGE_SECURITY = 40

_ROLES = (party_one, party_two)


@functools.lru_cache(maxsize=None)
def small_params():
    return hmrt.Parameters(
        elgamal.ElGamalPP.generate(_GROUP_BITS),
        candidate_bit_length=_CANDIDATE_BITS,
        paillier_modulus=_PAILLIER_BITS,
        range_security=_RANGE_SECURITY,
    )


def key_setup(params):
    sent = [role.generate_local_keys(params) for role in _ROLES]
    return [
        role.verify_counterparty_and_finalize(sent[1 - i][0], sent[i][0], sent[i][1], params)
        for i, role in enumerate(_ROLES)
    ]


def share_generation(keys, shares):
    sent = [role.commit_to_share(keys[i], shares[i]) for i, role in enumerate(_ROLES)]
    witnesses = [witness for witness, _ in sent]
    first = [message for _, message in sent]
    pairs = [
        role.verify_and_normalize(keys[i], first[1 - i], first[i])
        for i, role in enumerate(_ROLES)
    ]
    return witnesses, first, pairs


def reduce_and_combine(keys, witnesses, pairs, alpha):
    second = [
        role.prepare_reduction(alpha, keys[i], pairs[i], witnesses[i])
        for i, role in enumerate(_ROLES)
    ]
    combined = [
        role.verify_and_combine(second[1 - i], second[i], alpha, keys[i], pairs[i])
        for i, role in enumerate(_ROLES)
    ]
    return second, combined


def trial_division(keys, witnesses, pairs, alpha):
    _, combined = reduce_and_combine(keys, witnesses, pairs, alpha)
    return [
        role.verify_and_conclude(combined[i][1], combined[i][2], combined[1 - i][0], keys[i])
        for i, role in enumerate(_ROLES)
    ]


def int_fields(data, path=()):
    """Paths to the integers of a JSON-compatible structure"""
    if isinstance(data, dict):
        for key, value in data.items():
            yield from int_fields(value, path + (key,))
    elif isinstance(data, list):
        for index, value in enumerate(data):
            yield from int_fields(value, path + (index,))
    else:
        yield path


def flip_bit(data, path):
    data = copy.deepcopy(data)
    container = data
    for key in path[:-1]:
        container = container[key]
    container[path[-1]] ^= 1
    return data


def even_challenge_proof(proof_class, witness, statement, challenge):
    """Prove until the Fiat-Shamir challenge is even

    `challenge` computes the challenge of a proof. With an even challenge, an
    element multiplied by `-1` cannot be told apart from the original one in
    the verification equations.
    """
    while True:
        proof = proof_class.prove(witness, statement)
        e = challenge(proof)
        if e % 2 == 0:
            return proof, e


class TestUtil(unittest.TestCase):
    def test_arithmetic(self):
        self.assertEqual(util.powmod(3, 4, 7), 81 % 7)
        self.assertEqual(util.powmod(1, 12345, 7), 1)
        self.assertEqual(util.powmod(3, -1, 7), 5)
        self.assertEqual(util.invert(3, 7), 5)
        self.assertEqual(util.gcd(12, 18), 6)
        self.assertEqual(util.prod([2, 3, 7]), 42)
        self.assertEqual(util.prod([2, 3, 7], 5), 2)
        self.assertEqual(util.crt([2, 3], [5, 7]), 17)
        self.assertEqual(util.primorial(10), 2 * 3 * 5 * 7)

    def test_genprime(self):
        p = util.genprime(64)
        self.assertEqual(p.bit_length(), 64)
        self.assertTrue(util.is_prime(p))

        p = util.genprime(64, safe_prime=True)
        self.assertEqual(p.bit_length(), 64)
        self.assertTrue(util.is_prime(p))
        self.assertTrue(util.is_prime((p - 1) // 2))

    def test_hash(self):
        self.assertEqual(util.H('tag', 1, 2), util.H('tag', 1, 2))
        self.assertNotEqual(util.H('tag', 1, 2), util.H('tag', 2, 1))
        self.assertNotEqual(util.H('ab', 'c'), util.H('a', 'bc'))
        self.assertNotEqual(util.H([1, 2], 3), util.H(1, [2, 3]))
        for n_bits in (1, 7, 40, 256, 300):
            self.assertLess(util.H('tag', n_bits=n_bits), 2**n_bits)

    def test_run_protocol(self):
        def echo(value, rounds):
            for _ in range(rounds):
                value = yield value
            return value

        self.assertEqual(util.run_protocol(echo('a', 3), echo('b', 3)), ('b', 'a'))
        self.assertEqual(util.run_protocol(echo('a', 2), echo('b', 2)), ('a', 'b'))
        self.assertRaises(ValueError, util.run_protocol, echo('a', 2), echo('b', 3))


class TestElGamal(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.pp = small_params().group

    def test_group(self):
        pp = self.pp
        self.assertTrue(util.is_prime(pp.p))
        self.assertTrue(util.is_prime(pp.q))
        self.assertTrue(pp.contains(pp.g))
        self.assertFalse(pp.contains(pp.p - 1))
        self.assertFalse(pp.contains(0))
        self.assertRaises(ValueError, elgamal.ElGamalPP, pp.p, pp.q + 1, pp.g)

    def test_ffdhe2048(self):
        pp = elgamal.ElGamalPP.ffdhe2048()
        self.assertEqual(pp.p.bit_length(), 2048)
        self.assertTrue(util.is_prime(pp.p))
        self.assertTrue(util.is_prime(pp.q))
        self.assertTrue(pp.contains(pp.g))

    def test_encrypt(self):
        pk, sk = elgamal.generate_elgamal_keypair(self.pp)

        # check the ciphertexts are actually randomized
        c = pk.encrypt(12)
        d = pk.encrypt(12)
        self.assertTrue(c != d)

        # unless the randomness is given
        self.assertEqual(pk.encrypt(12, 42), pk.encrypt(12, 42))
        self.assertEqual(pk.encrypt(12, 0).c1, 1)

    def test_decrypt(self):
        pk, sk = elgamal.generate_elgamal_keypair(self.pp)
        self.assertEqual(sk.decrypt(pk.encrypt(-1)), -1)
        self.assertEqual(sk.decrypt(pk.encrypt(0)), 0)
        self.assertEqual(sk.decrypt(pk.encrypt(1)), 1)
        self.assertEqual(sk.decrypt(pk.encrypt(12)), 12)
        self.assertRaises(ValueError, sk.decrypt, pk.encrypt(1000), 100)

    def test_additive(self):
        pk, sk = elgamal.generate_elgamal_keypair(self.pp)
        a = pk.encrypt(42)
        b = pk.encrypt(9)

        # additions
        self.assertEqual(sk.decrypt(a + b), 51)

        # negation
        self.assertEqual(sk.decrypt(-a), -42)
        self.assertEqual(sk.decrypt(-b), -9)

        # subtraction
        self.assertEqual(sk.decrypt(a - b), 33)
        self.assertEqual(sk.decrypt(b - a), -33)

        # multiplication
        self.assertEqual(sk.decrypt(a * 3), 126)
        self.assertEqual(sk.decrypt(-2 * b), -18)
        self.assertEqual(sk.decrypt(a * 0), 0)

        # exceptions
        self.assertRaises(NotImplementedError, a.__mul__, b)

        # values under different groups
        other_pk, _ = elgamal.generate_elgamal_keypair(elgamal.ElGamalPP.generate(64))
        self.assertRaises(ValueError, a.__add__, other_pk.encrypt(1))
        self.assertRaises(ValueError, pk.__add__, other_pk)

    def test_joint_key(self):
        pk0, sk0 = elgamal.generate_elgamal_keypair(self.pp)
        pk1, sk1 = elgamal.generate_elgamal_keypair(self.pp)
        self.assertEqual(pk0 + pk1, pk1 + pk0)
        self.assertEqual((sk0 + sk1).public_key, pk0 + pk1)

        # both partial decryptions are needed
        c = (pk0 + pk1).encrypt(0)
        g_m = c.c2 * util.invert(sk0.partial_decrypt(c) * sk1.partial_decrypt(c), self.pp.p) % self.pp.p
        self.assertEqual(g_m, 1)
        self.assertNotEqual(c.c2 * util.invert(sk0.partial_decrypt(c), self.pp.p) % self.pp.p, 1)

    def test_json(self):
        pk, sk = elgamal.generate_elgamal_keypair(self.pp)
        c = pk.encrypt(12)
        data = json.loads(json.dumps(c.to_json()))
        self.assertEqual(elgamal.ElGamalCiphertext.from_json(data, self.pp), c)
        data = json.loads(json.dumps(pk.to_json()))
        self.assertEqual(elgamal.ElGamalPublicKey.from_json(data, self.pp), pk)


class TestPaillier(unittest.TestCase):
    def test_keygen(self):
        pk, sk = paillier.generate_paillier_keypair(_N_BITS)

        # check p and q are actually safe primes
        self.assertTrue(util.is_prime(sk.p))
        self.assertTrue(util.is_prime(sk.q))
        self.assertTrue(util.is_prime((sk.p-1) // 2))
        self.assertTrue(util.is_prime((sk.q-1) // 2))

        # check their sizes
        self.assertEqual(sk.p.bit_length() + sk.q.bit_length(), _N_BITS)

        # check consistency of n, nsquare and g
        self.assertEqual(pk.n, sk.p * sk.q)
        self.assertEqual(pk.nsquare, pk.n**2)
        self.assertEqual(pk.g, pk.n + 1)

    def test_decrypt(self):
        pk, sk = paillier.generate_paillier_keypair(_N_BITS, safe_primes=False)
        self.assertEqual(sk.decrypt(pk.encrypt(-1)), -1)
        self.assertEqual(sk.decrypt(pk.encrypt(0)), 0)
        self.assertEqual(sk.decrypt(pk.encrypt(12)), 12)
        self.assertEqual(sk.decrypt(pk.encrypt(-1), relative=False), pk.n - 1)

        # check the ciphertexts are randomized and in ℤ_n²
        c = pk.encrypt(12)
        self.assertNotEqual(c, pk.encrypt(12))
        self.assertGreater(c, 0)
        self.assertLess(c, pk.nsquare)

        # additive homomorphism
        self.assertEqual(sk.decrypt(pk.encrypt(42) * pk.encrypt(9) % pk.nsquare), 51)

    def test_correct_key_proof(self):
        pk, sk = paillier.generate_paillier_keypair(_PAILLIER_BITS, safe_primes=False)

        # valid proof
        proof = paillier.CorrectKeyProof.prove(sk)
        proof.verify(pk)

        # after serialization
        data = json.loads(json.dumps(proof.to_json()))
        paillier.CorrectKeyProof.from_json(data).verify(pk)

        # proof for another key
        other_pk, other_sk = paillier.generate_paillier_keypair(_PAILLIER_BITS, safe_primes=False)
        self.assertRaises(paillier.InvalidKey, proof.verify, other_pk)

        # tampered roots
        tampered = paillier.CorrectKeyProof(proof.salt, [proof.sigma_vec[0] + 1] + proof.sigma_vec[1:])
        self.assertRaises(paillier.InvalidKey, tampered.verify, pk)
        tampered = paillier.CorrectKeyProof(proof.salt, proof.sigma_vec[1:])
        self.assertRaises(paillier.InvalidKey, tampered.verify, pk)

        # modulus with a small factor
        self.assertRaises(paillier.InvalidKey, proof.verify, paillier.PaillierPublicKey(pk.n * 3))

        # unexpected generator
        self.assertRaises(paillier.InvalidKey, proof.verify, paillier.PaillierPublicKey(pk.n, pk.n + 2))


class TestProofs(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.pp = small_params().group
        cls.pk, cls.sk = elgamal.generate_elgamal_keypair(cls.pp)

    def test_dlog(self):
        statement = zkproofs.DLogStatement(self.pp, self.pk.h)
        proof = zkproofs.DLogProof.prove(zkproofs.DLogWitness(self.sk.x), statement)
        proof.verify(statement)

        # another public key
        other_pk, _ = elgamal.generate_elgamal_keypair(self.pp)
        self.assertRaises(zkproofs.InvalidProof, proof.verify, zkproofs.DLogStatement(self.pp, other_pk.h))

        # element out of the group
        statement = zkproofs.DLogStatement(self.pp, self.pp.p - 1)
        self.assertRaises(zkproofs.InvalidProof, proof.verify, statement)

    def test_homo_elgamal(self):
        c = self.pk.encrypt(12, 42)
        statement = zkproofs.HomoElGamalStatement(self.pk, c)
        proof = zkproofs.HomoElGamalProof.prove(zkproofs.HomoElGamalWitness(12, 42), statement)
        proof.verify(statement)

        # another ciphertext
        statement = zkproofs.HomoElGamalStatement(self.pk, c + self.pk.encrypt(1, 0))
        self.assertRaises(zkproofs.InvalidProof, proof.verify, statement)

        # wrong witness
        statement = zkproofs.HomoElGamalStatement(self.pk, c)
        proof = zkproofs.HomoElGamalProof.prove(zkproofs.HomoElGamalWitness(13, 42), statement)
        self.assertRaises(zkproofs.InvalidProof, proof.verify, statement)

    def test_range(self):
        # l = 100
        for x in (0, 57, 100):
            c = self.pk.encrypt(x, 42)
            statement = zkproofs.RangeStatement(self.pk, c, 300, _RANGE_SECURITY)
            proof = zkproofs.RangeProof.prove(zkproofs.RangeWitness(x, 42), statement)
            proof.verify(statement)

        # another ciphertext
        statement = zkproofs.RangeStatement(self.pk, self.pk.encrypt(57), 300, _RANGE_SECURITY)
        self.assertRaises(zkproofs.InvalidProof, proof.verify, statement)

        # another number of repetitions
        statement = zkproofs.RangeStatement(self.pk, c, 300, _RANGE_SECURITY + 1)
        self.assertRaises(zkproofs.InvalidProof, proof.verify, statement)

        # out of range
        c = self.pk.encrypt(101, 42)
        statement = zkproofs.RangeStatement(self.pk, c, 300, _RANGE_SECURITY)
        self.assertRaises(ValueError, zkproofs.RangeProof.prove, zkproofs.RangeWitness(101, 42), statement)

        # after serialization
        c = self.pk.encrypt(57, 42)
        statement = zkproofs.RangeStatement(self.pk, c, 300, _RANGE_SECURITY)
        proof = zkproofs.RangeProof.prove(zkproofs.RangeWitness(57, 42), statement)
        data = json.loads(json.dumps(proof.to_json()))
        zkproofs.RangeProof.from_json(data, self.pp).verify(statement)

    def test_ddh(self):
        pp = self.pp
        g2 = util.powmod(pp.g, 1234, pp.p)
        statement = zkproofs.DDHStatement(pp, pp.g, util.powmod(pp.g, 42, pp.p), g2, util.powmod(g2, 42, pp.p))
        proof = zkproofs.DDHProof.prove(zkproofs.DDHWitness(42), statement)
        proof.verify(statement)

        # distinct logarithms
        statement = statement._replace(h2=statement.h2 * pp.g % pp.p)
        self.assertRaises(zkproofs.InvalidProof, proof.verify, statement)

    def test_outside_of_group(self):
        pp = self.pp

        # DDH with h2 multiplied by -1
        g2 = util.powmod(pp.g, 1234, pp.p)
        statement = zkproofs.DDHStatement(
            pp, pp.g, util.powmod(pp.g, 42, pp.p), g2, pp.p - util.powmod(g2, 42, pp.p))
        proof, e = even_challenge_proof(
            zkproofs.DDHProof, zkproofs.DDHWitness(42), statement,
            lambda proof: zkproofs._challenge('ddh', pp, *statement[1:], proof.a1, proof.a2),
        )
        self.assertEqual(
            util.powmod(statement.g2, proof.response, pp.p),
            proof.a2 * util.powmod(statement.h2, e, pp.p) % pp.p,
        )
        self.assertRaises(zkproofs.InvalidProof, proof.verify, statement)

        # ciphertext with c2 multiplied by -1
        c = self.pk.encrypt(12, 42)
        forged = elgamal.ElGamalCiphertext(pp, c.c1, pp.p - c.c2)
        statement = zkproofs.HomoElGamalStatement(self.pk, forged)
        proof, e = even_challenge_proof(
            zkproofs.HomoElGamalProof, zkproofs.HomoElGamalWitness(12, 42), statement,
            lambda proof: zkproofs._challenge(
                'homo-elgamal', pp, self.pk.h, forged.c1, forged.c2, proof.a1, proof.a2),
        )
        self.assertRaises(zkproofs.InvalidProof, proof.verify, statement)

        # range proof on a ciphertext outside of the group
        statement = zkproofs.RangeStatement(self.pk, forged, 300, _RANGE_SECURITY)
        proof = zkproofs.RangeProof.prove(zkproofs.RangeWitness(12, 42), statement)
        self.assertRaises(zkproofs.InvalidProof, proof.verify, statement)

    def test_mod(self):
        c = self.pk.encrypt(23, 42)
        c_prime = self.pk.encrypt(3, 17)
        statement = zkproofs.ModStatement(self.pk, c, c_prime, 5, 2**10, _RANGE_SECURITY)
        proof = zkproofs.ModProof.prove(zkproofs.ModWitness(23, 42, 3, 17), statement)
        proof.verify(statement)

        # after serialization
        data = json.loads(json.dumps(proof.to_json()))
        zkproofs.ModProof.from_json(data, self.pp).verify(statement)

        # another remainder
        wrong = statement._replace(c_prime=self.pk.encrypt(4, 17))
        self.assertRaises(zkproofs.InvalidProof, proof.verify, wrong)

        # another modulus
        wrong = statement._replace(modulus_p=7)
        self.assertRaises(zkproofs.InvalidProof, proof.verify, wrong)
        wrong = statement._replace(modulus_p=0)
        self.assertRaises(zkproofs.InvalidProof, proof.verify, wrong)

        # invalid witnesses
        prove = zkproofs.ModProof.prove
        self.assertRaises(ValueError, prove, zkproofs.ModWitness(23, 42, 4, 17), statement)
        self.assertRaises(ValueError, prove, zkproofs.ModWitness(23, 42, 8, 17), statement)
        self.assertRaises(ValueError, prove, zkproofs.ModWitness(2**10 + 3, 42, 3, 17), statement)


class TestParameters(unittest.TestCase):
    def test_default(self):
        params = hmrt.Parameters.default()
        self.assertEqual(params.group, elgamal.ElGamalPP.ffdhe2048())
        self.assertEqual(params.candidate_bit_length, hmrt.CANDIDATE_BIT_LENGTH)
        self.assertEqual(params.paillier_modulus, hmrt.PAILLIER_MODULUS)
        self.assertEqual(params.range_security, hmrt.RANGE_PROOF_SECURITY)
        self.assertEqual(params.share_bit_length, hmrt.CANDIDATE_BIT_LENGTH // 2 - 2)

    def test_invalid(self):
        group = small_params().group
        self.assertRaises(ValueError, hmrt.Parameters, group, candidate_bit_length=group.q.bit_length() * 2)
        self.assertRaises(ValueError, hmrt.Parameters, group, candidate_bit_length=4)

    def test_read_only(self):
        params = small_params()
        for name in ('group', 'candidate_bit_length', 'paillier_modulus', 'range_security'):
            with self.assertRaises(AttributeError):
                setattr(params, name, None)
        self.assertEqual(params.range_security, _RANGE_SECURITY)
        self.assertEqual(params.candidate_bit_length, _CANDIDATE_BITS)


class TestHonestRun(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.params = small_params()
        cls.keys = key_setup(cls.params)

    def test_key_setup(self):
        keys = self.keys
        self.assertEqual(keys[0].joint_elgamal_pubkey, keys[1].joint_elgamal_pubkey)
        self.assertEqual(keys[0].local_elgamal_pubkey, keys[1].remote_elgamal_pubkey)
        self.assertEqual(keys[0].remote_paillier_pubkey, keys[1].local_paillier_pubkey)
        joint_sk = keys[0].private.sk + keys[1].private.sk
        self.assertEqual(joint_sk.public_key, keys[0].joint_elgamal_pubkey)

    def test_random_shares(self):
        keys = self.keys
        sent = [role.generate_share(keys[i]) for i, role in enumerate(_ROLES)]
        witnesses = [witness for witness, _ in sent]
        for witness in witnesses:
            self.assertLess(witness.share, 2**self.params.share_bit_length)

        pairs = [
            role.verify_and_normalize(keys[i], sent[1 - i][1], sent[i][1])
            for i, role in enumerate(_ROLES)
        ]
        self.assertEqual(pairs[0], pairs[1])

        # the candidate encrypts 4⋅(share_0 + share_1) + 3 with 4⋅(r_0 + r_1)
        n = 4 * (witnesses[0].share + witnesses[1].share) + 3
        r = 4 * (witnesses[0].randomness + witnesses[1].randomness)
        self.assertEqual(pairs[0].candidate, keys[0].joint_elgamal_pubkey.encrypt(n, r))

        # trial division agrees with the clear computation
        for alpha in (3, 5, 7, 11):
            results = trial_division(keys, witnesses, pairs, alpha)
            self.assertEqual(results, [n % alpha != 0] * 2)

    def test_scaling(self):
        keys = self.keys
        witnesses, first, pairs = share_generation(keys, (5, 7))
        joint_sk = keys[0].private.sk + keys[1].private.sk
        self.assertEqual(joint_sk.decrypt(pairs[0].c0), 4*5 + 3)
        self.assertEqual(joint_sk.decrypt(pairs[0].c1), 4*7)
        self.assertEqual(joint_sk.decrypt(pairs[0].candidate), 51)
        self.assertEqual(joint_sk.decrypt(pairs[0].candidate) % 4, 3)

    def test_divisibility(self):
        # N = 4⋅(5 + 7) + 3 = 51 = 3 × 17
        keys = self.keys
        witnesses, first, pairs = share_generation(keys, (5, 7))
        self.assertEqual(trial_division(keys, witnesses, pairs, 3), [False, False])
        self.assertEqual(trial_division(keys, witnesses, pairs, 5), [True, True])
        self.assertEqual(trial_division(keys, witnesses, pairs, 7), [True, True])
        self.assertEqual(trial_division(keys, witnesses, pairs, 17), [False, False])

    def test_degenerate(self):
        # the reductions are 23 and 28, which sum to alpha
        keys = self.keys
        witnesses, first, pairs = share_generation(keys, (5, 7))
        joint_sk = keys[0].private.sk + keys[1].private.sk

        _, combined = reduce_and_combine(keys, witnesses, pairs, 51)
        for _, c_alpha, c_alpha_tilde in combined:
            self.assertEqual(joint_sk.decrypt(c_alpha), 51)
            self.assertEqual(joint_sk.decrypt(c_alpha_tilde), 0)
        self.assertEqual(trial_division(keys, witnesses, pairs, 51), [False, False])

    def test_invalid_divisor(self):
        keys = self.keys
        witnesses, first, pairs = share_generation(keys, (5, 7))
        for role, key, pair, witness in zip(_ROLES, keys, pairs, witnesses):
            self.assertRaises(ValueError, role.prepare_reduction, 1, key, pair, witness)
            self.assertRaises(ValueError, role.prepare_reduction, 0, key, pair, witness)

    def test_share_out_of_range(self):
        keys = self.keys
        witnesses, first, pairs = share_generation(keys, (5, 7))
        witness = hmrt.CandidateWitness(self.params.share_bound, witnesses[0].randomness)
        for role, key, pair in zip(_ROLES, keys, pairs):
            self.assertRaises(hmrt.InvalidModProof, role.prepare_reduction, 3, key, pair, witness)

    def test_json(self):
        params = self.params
        pp = params.group
        keys = self.keys

        def transmit(message):
            data = json.loads(json.dumps(message.to_json()))
            received = type(message).from_json(data, pp)
            self.assertEqual(received.to_json(), message.to_json())
            return received

        sent = [role.generate_local_keys(params) for role in _ROLES]
        received = transmit(sent[0][0])
        party_two.verify_counterparty_and_finalize(received, sent[1][0], sent[1][1], params)

        witnesses, first, pairs = share_generation(keys, (5, 7))
        received = transmit(first[0])
        self.assertEqual(party_two.verify_and_normalize(keys[1], received, first[1]), pairs[1])

        second, combined = reduce_and_combine(keys, witnesses, pairs, 5)
        received = transmit(second[0])
        _, c_alpha, c_alpha_tilde = party_two.verify_and_combine(received, second[1], 5, keys[1], pairs[1])

        received = transmit(combined[0][0])
        self.assertTrue(party_two.verify_and_conclude(c_alpha, c_alpha_tilde, received, keys[1]))


class CheatingCounterpartyFixture:
    """The party at index `cheater` tampers with the messages it sends"""
    @classmethod
    def setUpClass(cls):
        cls.params = small_params()
        cls.keys = key_setup(cls.params)
        cls.honest = 1 - cls.cheater
        cls.role = _ROLES[cls.honest]

        # fewer repetitions keep the messages short for the bit flips
        cls.short_params = hmrt.Parameters(
            cls.params.group,
            candidate_bit_length=_CANDIDATE_BITS,
            paillier_modulus=_PAILLIER_BITS,
            range_security=8,
        )
        cls.short_keys = key_setup(cls.short_params)

    def assertFlippedFieldsRejected(self, message, error, check):
        """Flip the lowest bit of each integer of `message`, one at a time

        `error` is either the expected exception, or a dictionary giving it for
        each top-level field.
        """
        data = message.to_json()
        paths = list(int_fields(data))
        self.assertTrue(paths)
        for path in paths:
            tampered = type(message).from_json(flip_bit(data, path), self.short_params.group)
            expected = error[path[0]] if isinstance(error, dict) else error
            with self.subTest(path=path):
                self.assertRaises(expected, check, tampered)

    def test_invalid_elgamal_key(self):
        params = self.params
        own, private = self.role.generate_local_keys(params)
        theirs, _ = _ROLES[self.cheater].generate_local_keys(params)
        other, _ = _ROLES[self.cheater].generate_local_keys(params)

        tampered = dataclasses.replace(theirs, dlog_proof=other.dlog_proof)
        with self.assertRaises(hmrt.InvalidElGamalKey):
            self.role.verify_counterparty_and_finalize(tampered, own, private, params)

        tampered = dataclasses.replace(theirs, pk=other.pk)
        with self.assertRaises(hmrt.InvalidElGamalKey):
            self.role.verify_counterparty_and_finalize(tampered, own, private, params)

    def test_invalid_paillier_key(self):
        params = self.params
        own, private = self.role.generate_local_keys(params)
        theirs, _ = _ROLES[self.cheater].generate_local_keys(params)
        other, _ = _ROLES[self.cheater].generate_local_keys(params)

        tampered = dataclasses.replace(theirs, ek=other.ek)
        with self.assertRaises(hmrt.InvalidPaillierKey):
            self.role.verify_counterparty_and_finalize(tampered, own, private, params)

        tampered = dataclasses.replace(theirs, ek=paillier.PaillierPublicKey(theirs.ek.n * 3))
        with self.assertRaises(hmrt.InvalidPaillierKey):
            self.role.verify_counterparty_and_finalize(tampered, own, private, params)

    def test_invalid_share(self):
        keys = self.keys
        pk = keys[self.honest].joint_elgamal_pubkey
        _, own = self.role.commit_to_share(keys[self.honest], 7)
        _, theirs = _ROLES[self.cheater].commit_to_share(keys[self.cheater], 5)
        _, other = _ROLES[self.cheater].commit_to_share(keys[self.cheater], 5)

        tampered = dataclasses.replace(theirs, c_i=theirs.c_i + pk.encrypt(1, 0))
        with self.assertRaises(hmrt.CandidateGenerationEncError):
            self.role.verify_and_normalize(keys[self.honest], tampered, own)

        tampered = dataclasses.replace(theirs, pi_bound=other.pi_bound)
        with self.assertRaises(hmrt.CandidateGenerationEncError):
            self.role.verify_and_normalize(keys[self.honest], tampered, own)

    def test_invalid_reduction(self):
        keys = self.keys
        pk = keys[self.honest].joint_elgamal_pubkey
        witnesses, first, pairs = share_generation(keys, (5, 7))
        second, _ = reduce_and_combine(keys, witnesses, pairs, 3)
        own, theirs = second[self.honest], second[self.cheater]

        tampered = dataclasses.replace(theirs, c_i_alpha=theirs.c_i_alpha + pk.encrypt(1, 0))
        with self.assertRaises(hmrt.InvalidModProof):
            self.role.verify_and_combine(tampered, own, 3, keys[self.honest], pairs[self.honest])

        # reduction proved for another divisor
        theirs = _ROLES[self.cheater].prepare_reduction(
            5, keys[self.cheater], pairs[self.cheater], witnesses[self.cheater])
        with self.assertRaises(hmrt.InvalidModProof):
            self.role.verify_and_combine(theirs, own, 3, keys[self.honest], pairs[self.honest])

    def test_invalid_decryption(self):
        keys = self.keys
        pp = self.params.group
        witnesses, first, pairs = share_generation(keys, (5, 7))
        _, combined = reduce_and_combine(keys, witnesses, pairs, 5)
        _, c_alpha, c_alpha_tilde = combined[self.honest]
        theirs = combined[self.cheater][0]

        def conclude(message):
            return self.role.verify_and_conclude(c_alpha, c_alpha_tilde, message, keys[self.honest])

        self.assertTrue(conclude(theirs))

        tampered = dataclasses.replace(theirs, partial_dec_c_alpha=theirs.partial_dec_c_alpha * pp.g % pp.p)
        self.assertRaises(hmrt.CandidateGenerationDecError, conclude, tampered)

        tampered = dataclasses.replace(
            theirs, partial_dec_c_alpha_tilde=theirs.partial_dec_c_alpha_tilde * pp.g % pp.p)
        self.assertRaises(hmrt.CandidateGenerationDecError, conclude, tampered)

        # a ciphertext of zero in place of the rerandomization
        zero = keys[self.cheater].joint_elgamal_pubkey.encrypt(0)
        tampered = dataclasses.replace(theirs, c_alpha_random=zero)
        self.assertRaises(hmrt.CandidateGenerationDecError, conclude, tampered)

        tampered = dataclasses.replace(theirs, ddh_proof_alpha_tilde=theirs.ddh_proof_alpha)
        self.assertRaises(hmrt.CandidateGenerationDecError, conclude, tampered)

    def test_rerandomization_outside_of_group(self):
        # N = 51: the reductions modulo 3 sum to 3, so only c_alpha_tilde
        # decrypts to zero
        keys = self.keys
        pp = self.params.group
        witnesses, first, pairs = share_generation(keys, (5, 7))
        _, combined = reduce_and_combine(keys, witnesses, pairs, 3)
        _, c_alpha, c_alpha_tilde = combined[self.honest]
        theirs = combined[self.cheater][0]
        self.assertFalse(self.role.verify_and_conclude(c_alpha, c_alpha_tilde, theirs, keys[self.honest]))

        # once decrypted, the identity becomes -1
        r = random.SystemRandom().randrange(1, pp.q)
        c_random = c_alpha_tilde * r
        forged = elgamal.ElGamalCiphertext(pp, c_random.c1, pp.p - c_random.c2)
        statement = hmrt.rerandomization_statement(pp, c_alpha_tilde, forged)
        proof, e = even_challenge_proof(
            zkproofs.DDHProof, zkproofs.DDHWitness(r), statement,
            lambda proof: zkproofs._challenge('ddh', pp, *statement[1:], proof.a1, proof.a2),
        )
        self.assertEqual(
            util.powmod(statement.g2, proof.response, pp.p),
            proof.a2 * util.powmod(statement.h2, e, pp.p) % pp.p,
        )

        partial_dec, partial_dec_proof = hmrt.partial_decrypt(keys[self.cheater], forged)
        tampered = dataclasses.replace(
            theirs,
            c_alpha_tilde_random=forged,
            ddh_proof_alpha_tilde=proof,
            partial_dec_c_alpha_tilde=partial_dec,
            proof_alpha_tilde=partial_dec_proof,
        )
        with self.assertRaises(hmrt.CandidateGenerationDecError):
            self.role.verify_and_conclude(c_alpha, c_alpha_tilde, tampered, keys[self.honest])

    def test_flipped_key_setup_fields(self):
        params = self.short_params
        own, private = self.role.generate_local_keys(params)
        theirs, _ = _ROLES[self.cheater].generate_local_keys(params)
        errors = {
            'ek': hmrt.InvalidPaillierKey,
            'correct_key_proof': hmrt.InvalidPaillierKey,
            'pk': hmrt.InvalidElGamalKey,
            'dlog_proof': hmrt.InvalidElGamalKey,
        }
        self.assertFlippedFieldsRejected(
            theirs, errors,
            lambda message: self.role.verify_counterparty_and_finalize(message, own, private, params),
        )

    def test_flipped_share_fields(self):
        keys = self.short_keys
        _, own = self.role.commit_to_share(keys[self.honest], 7)
        _, theirs = _ROLES[self.cheater].commit_to_share(keys[self.cheater], 5)
        self.assertFlippedFieldsRejected(
            theirs, hmrt.CandidateGenerationEncError,
            lambda message: self.role.verify_and_normalize(keys[self.honest], message, own),
        )

    def test_flipped_reduction_fields(self):
        keys = self.short_keys
        witnesses, first, pairs = share_generation(keys, (5, 7))
        second, _ = reduce_and_combine(keys, witnesses, pairs, 5)
        own, theirs = second[self.honest], second[self.cheater]
        self.assertFlippedFieldsRejected(
            theirs, hmrt.InvalidModProof,
            lambda message: self.role.verify_and_combine(message, own, 5, keys[self.honest], pairs[self.honest]),
        )

    def test_flipped_decryption_fields(self):
        keys = self.short_keys
        witnesses, first, pairs = share_generation(keys, (5, 7))
        _, combined = reduce_and_combine(keys, witnesses, pairs, 5)
        _, c_alpha, c_alpha_tilde = combined[self.honest]
        self.assertFlippedFieldsRejected(
            combined[self.cheater][0], hmrt.CandidateGenerationDecError,
            lambda message: self.role.verify_and_conclude(c_alpha, c_alpha_tilde, message, keys[self.honest]),
        )

    def test_restart_after_abort(self):
        keys = self.keys
        pk = keys[self.honest].joint_elgamal_pubkey
        _, own = self.role.commit_to_share(keys[self.honest], 7)
        _, theirs = _ROLES[self.cheater].commit_to_share(keys[self.cheater], 5)
        tampered = dataclasses.replace(theirs, c_i=theirs.c_i + pk.encrypt(1, 0))
        with self.assertRaises(hmrt.CandidateGenerationEncError):
            self.role.verify_and_normalize(keys[self.honest], tampered, own)

        # fresh shares under the same keys
        witnesses, first, pairs = share_generation(keys, (5, 7))
        self.assertEqual(pairs[0], pairs[1])
        self.assertEqual(trial_division(keys, witnesses, pairs, 5), [True, True])


class TestPartyOneCheats(CheatingCounterpartyFixture, unittest.TestCase):
    cheater = 0


class TestPartyTwoCheats(CheatingCounterpartyFixture, unittest.TestCase):
    cheater = 1


class TestProtocol(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.params = small_params()
        cls.keys = util.run_protocol(
            protocol.key_setup_protocol(1, cls.params),
            protocol.key_setup_protocol(2, cls.params),
        )

    def run_candidate(self, divisors, batch_size=1):
        # N = 4⋅(5 + 7) + 3 = 51 = 3 × 17
        fixed_share_one = mock.patch.object(
            party_one, 'generate_share', lambda keys: party_one.commit_to_share(keys, 5))
        fixed_share_two = mock.patch.object(
            party_two, 'generate_share', lambda keys: party_two.commit_to_share(keys, 7))
        with fixed_share_one, fixed_share_two:
            return util.run_protocol(
                protocol.candidate_protocol(1, self.keys[0], divisors, batch_size),
                protocol.candidate_protocol(2, self.keys[1], divisors, batch_size),
            )

    def assertCandidate(self, candidate, divisors):
        (witness_one, pair), (witness_two, other_pair) = candidate
        self.assertEqual(pair, other_pair)
        n = 4 * (witness_one.share + witness_two.share) + 3
        for alpha in divisors:
            self.assertNotEqual(n % alpha, 0)

    def test_key_setup(self):
        self.assertEqual(self.keys[0].joint_elgamal_pubkey, self.keys[1].joint_elgamal_pubkey)
        self.assertRaises(ValueError, next, protocol.key_setup_protocol(3, self.params))

    def test_candidate(self):
        for batch_size in (1, 2, 5):
            self.assertEqual(self.run_candidate([5, 3, 7], batch_size), (None, None))
            self.assertEqual(self.run_candidate([5, 7, 11, 17], batch_size), (None, None))
            self.assertCandidate(self.run_candidate([5, 7, 11, 13], batch_size), [5, 7, 11, 13])
        self.assertCandidate(self.run_candidate([]), [])

        with self.assertRaises(ValueError):
            self.run_candidate([5], batch_size=0)

    def test_generate_candidate(self):
        divisors = [3, 5, 7, 11, 13]
        candidate = protocol.generate_candidate(self.params, divisors)
        self.assertGreaterEqual(candidate.attempts, 1)
        self.assertEqual(candidate.keys[0].joint_elgamal_pubkey, candidate.keys[1].joint_elgamal_pubkey)

        witness_one, witness_two = candidate.witnesses
        n = 4 * (witness_one.share + witness_two.share) + 3
        r = 4 * (witness_one.randomness + witness_two.randomness)
        self.assertEqual(candidate.ciphertexts.candidate, candidate.keys[0].joint_elgamal_pubkey.encrypt(n, r))
        for alpha in divisors:
            self.assertNotEqual(n % alpha, 0)

    def test_generate_candidate_batched(self):
        divisors = [3, 5, 7, 11, 13]
        with multiprocessing.Pool(2) as pool:
            candidate = protocol.generate_candidate(self.params, divisors, batch_size=3, pool=pool)
        witness_one, witness_two = candidate.witnesses
        n = 4 * (witness_one.share + witness_two.share) + 3
        for alpha in divisors:
            self.assertNotEqual(n % alpha, 0)

    def test_restart(self):
        verify_and_normalize = party_two.verify_and_normalize
        calls = []

        def flaky_verify_and_normalize(*args):
            calls.append(args)
            if len(calls) == 1:
                raise hmrt.CandidateGenerationEncError
            return verify_and_normalize(*args)

        with mock.patch.object(party_two, 'verify_and_normalize', flaky_verify_and_normalize):
            candidate = protocol.generate_candidate(self.params, [3])
        self.assertGreaterEqual(candidate.attempts, 2)

    def test_abort(self):
        def cheating_counterparty(*args):
            raise hmrt.CandidateGenerationDecError

        with mock.patch.object(party_one, 'verify_and_conclude', cheating_counterparty):
            with self.assertRaises(hmrt.CandidateGenerationDecError):
                protocol.generate_candidate(self.params, [3], max_attempts=10)

    def test_attempts_exhausted(self):
        def reject(*args):
            return False

        with mock.patch.object(party_one, 'verify_and_conclude', reject), \
                mock.patch.object(party_two, 'verify_and_conclude', reject):
            with self.assertRaises(hmrt.CandidateGenerationFailed):
                protocol.generate_candidate(self.params, [3], max_attempts=3)

    def test_debug(self):
        self.addCleanup(setattr, protocol, 'debug_level', protocol.debug_level)

        protocol.debug_level = 0
        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            protocol.generate_candidate(self.params, [3])
        self.assertEqual(output.getvalue(), '')

        protocol.debug_level = 2
        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            protocol.generate_candidate(self.params, [3])
        self.assertIn('candidate accepted', output.getvalue())
        self.assertIn('trial division by 3', output.getvalue())


if __name__ == '__main__':
    unittest.main()
