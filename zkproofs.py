#!/usr/bin/env python3
"""Zero-knowledge proofs over exponential ElGamal

Each proof family is an independent class offering:
    prove(witness, statement): build a proof (class method)
    verify(statement): check the proof, raise `InvalidProof` if it is not valid

All the proofs are made non-interactive with the Fiat-Shamir heuristic: the
challenge is the hash of the statement and of the commitments of the prover
(see `util.H()`). This way, proofs are plain values that can be embedded in
messages.

Proofs offered:
    DLogProof: knowledge of the discrete logarithm of a public key (Schnorr)
    HomoElGamalProof: knowledge of the message and randomness of a ciphertext
    RangeProof: the message of a ciphertext lies in a range (with slack)
    ModProof: a ciphertext encrypts the reduction of the message of another
    DDHProof: two pairs of elements share the same discrete logarithm
        (Chaum-Pedersen)
"""
import random
from collections import namedtuple

import util
from elgamal import ElGamalCiphertext

DLogStatement = namedtuple('DLogStatement', 'pp h')
DLogWitness = namedtuple('DLogWitness', 'x')

HomoElGamalStatement = namedtuple('HomoElGamalStatement', 'pk ciphertext')
HomoElGamalWitness = namedtuple('HomoElGamalWitness', 'm r')

RangeStatement = namedtuple('RangeStatement', 'pk ciphertext range sec_param')
RangeWitness = namedtuple('RangeWitness', 'x r')

ModStatement = namedtuple('ModStatement', 'pk c c_prime modulus_p upper_bound_m sec_param')
ModWitness = namedtuple('ModWitness', 'a r_a b r_b')

DDHStatement = namedtuple('DDHStatement', 'pp g1 h1 g2 h2')
DDHWitness = namedtuple('DDHWitness', 'x')


class InvalidProof(Exception):
    """Raised when the verification of a cryptographic proof fails"""


def _challenge(tag, pp, *values):
    """Fiat-Shamir challenge in ℤ_q"""
    return util.H(tag, pp.p, pp.q, pp.g, *values, n_bits=pp.q.bit_length() + 128) % pp.q


def _check_elements(pp, *elements):
    """Reject values outside of the subgroup of order `q`

    Elements of `ℤ_p*` outside of the subgroup, such as `-1`, would let a
    cheating prover pass the checks whenever the challenge is even.
    """
    for x in elements:
        if not pp.contains(x):
            raise InvalidProof('element outside of the group')


class DLogProof:
    """Schnorr proof of knowledge of `x` such that `h = g^x`

    Attributes:
        commitment (int): `g^k` for a random `k`
        response (int): `k + e x mod q` where `e` is the challenge
    """
    def __init__(self, commitment, response):
        self.commitment = commitment
        self.response = response

    @classmethod
    def prove(cls, witness, statement):
        pp = statement.pp
        k = random.SystemRandom().randrange(pp.q)
        commitment = util.powmod(pp.g, k, pp.p)
        challenge = _challenge('dlog', pp, statement.h, commitment)
        return cls(commitment, (k + challenge * witness.x) % pp.q)

    def verify(self, statement):
        pp = statement.pp
        _check_elements(pp, statement.h, self.commitment)
        challenge = _challenge('dlog', pp, statement.h, self.commitment)
        # check that g^s = t * h^e
        if util.powmod(pp.g, self.response, pp.p) != \
                self.commitment * util.powmod(statement.h, challenge, pp.p) % pp.p:
            raise InvalidProof

    def to_json(self):
        return [self.commitment, self.response]

    @classmethod
    def from_json(cls, data, pp=None):
        commitment, response = data
        return cls(int(commitment), int(response))


class HomoElGamalProof:
    """Proof of knowledge of `(m, r)` such that `c = (g^r, h^r g^m)`

    Attributes:
        a1 (int): `g^s` for a random `s`
        a2 (int): `h^s g^u` for random `s` and `u`
        z_m (int): `u + e m mod q`
        z_r (int): `s + e r mod q`
    """
    def __init__(self, a1, a2, z_m, z_r):
        self.a1 = a1
        self.a2 = a2
        self.z_m = z_m
        self.z_r = z_r

    @classmethod
    def prove(cls, witness, statement):
        pk, c = statement.pk, statement.ciphertext
        pp = pk.pp
        u = random.SystemRandom().randrange(pp.q)
        s = random.SystemRandom().randrange(pp.q)
        a1 = util.powmod(pp.g, s, pp.p)
        a2 = util.powmod(pk.h, s, pp.p) * util.powmod(pp.g, u, pp.p) % pp.p
        e = _challenge('homo-elgamal', pp, pk.h, c.c1, c.c2, a1, a2)
        return cls(a1, a2, (u + e * witness.m) % pp.q, (s + e * witness.r) % pp.q)

    def verify(self, statement):
        pk, c = statement.pk, statement.ciphertext
        pp = pk.pp
        _check_elements(pp, pk.h, c.c1, c.c2, self.a1, self.a2)
        e = _challenge('homo-elgamal', pp, pk.h, c.c1, c.c2, self.a1, self.a2)
        # g^z_r = a1 * c1^e
        if util.powmod(pp.g, self.z_r, pp.p) != self.a1 * util.powmod(c.c1, e, pp.p) % pp.p:
            raise InvalidProof
        # h^z_r g^z_m = a2 * c2^e
        left = util.powmod(pk.h, self.z_r, pp.p) * util.powmod(pp.g, self.z_m, pp.p) % pp.p
        if left != self.a2 * util.powmod(c.c2, e, pp.p) % pp.p:
            raise InvalidProof

    def to_json(self):
        return [self.a1, self.a2, self.z_m, self.z_r]

    @classmethod
    def from_json(cls, data, pp=None):
        return cls(*(int(x) for x in data))


class RangeProof:
    """Proof that the message of a ciphertext lies in a range

    Let `l = range / 3`. For each of the `sec_param` repetitions, the prover
    commits to two encrypted values `w1` and `w2`, one from `[0, l]` and the
    other from `[l, 2l]` with `|w1 - w2| = l`, in random order. For each
    repetition, the challenge asks either to open both values, or to open the
    encryption of `x + w_j` for one `j` such that `x + w_j` lies in `[l, 2l]`.

    The prover can only succeed if the message lies in `[0, l]`, and cheating
    remains undetected with probability `2^-sec_param` only if it lies in
    `[-l, 2l]`. This slack is inherent to the construction, so the bound
    enforced by the verifier is looser than the one the honest prover needs.

    Attributes:
        ciphertext_pairs (list): pairs of `ElGamalCiphertext` (encryptions of
            `w1` and `w2`), one per repetition
        responses (list): one tuple per repetition; `(w1, r1, w2, r2)` for a
            challenge bit 0, `(j, x + w_j, r + r_j)` for a challenge bit 1
    """
    def __init__(self, ciphertext_pairs, responses):
        self.ciphertext_pairs = ciphertext_pairs
        self.responses = responses

    @staticmethod
    def _challenge_bits(statement, ciphertext_pairs):
        pk, c = statement.pk, statement.ciphertext
        pp = pk.pp
        e = util.H(
            'range', pp.p, pp.q, pp.g, pk.h, c.c1, c.c2, statement.range,
            [c_w.to_json() for c_pair in ciphertext_pairs for c_w in c_pair],
            n_bits=statement.sec_param,
        )
        return [(e >> i) & 1 for i in range(statement.sec_param)]

    @classmethod
    def prove(cls, witness, statement):
        """Prove that the message of the ciphertext lies in `[0, range/3]`

        Raises:
            ValueError: if the witness does not satisfy this bound
        """
        pk = statement.pk
        q = pk.pp.q
        l = statement.range // 3
        x = witness.x
        if not 0 <= x <= l:
            raise ValueError('message out of the provable range')

        ciphertext_pairs = []
        openings = []
        for _ in range(statement.sec_param):
            w1 = random.SystemRandom().randrange(l, 2*l + 1)
            w2 = w1 - l
            if random.SystemRandom().getrandbits(1):
                w1, w2 = w2, w1
            r1 = random.SystemRandom().randrange(q)
            r2 = random.SystemRandom().randrange(q)
            ciphertext_pairs.append((pk.encrypt(w1, r1), pk.encrypt(w2, r2)))
            openings.append((w1, r1, w2, r2))

        responses = []
        for bit, (w1, r1, w2, r2) in zip(cls._challenge_bits(statement, ciphertext_pairs), openings):
            if bit == 0:
                responses.append((w1, r1, w2, r2))
            elif l <= x + w1 <= 2*l:
                responses.append((0, x + w1, (witness.r + r1) % q))
            else:
                responses.append((1, x + w2, (witness.r + r2) % q))
        return cls(ciphertext_pairs, responses)

    def verify(self, statement):
        pk, c = statement.pk, statement.ciphertext
        l = statement.range // 3
        if len(self.ciphertext_pairs) != statement.sec_param or \
                len(self.responses) != statement.sec_param:
            raise InvalidProof('wrong number of repetitions')
        _check_elements(pk.pp, pk.h, c.c1, c.c2, *(
            x for pair in self.ciphertext_pairs for c_w in pair for x in (c_w.c1, c_w.c2)
        ))

        bits = self._challenge_bits(statement, self.ciphertext_pairs)
        for bit, (c_w1, c_w2), response in zip(bits, self.ciphertext_pairs, self.responses):
            if bit == 0:
                if len(response) != 4:
                    raise InvalidProof
                w1, r1, w2, r2 = response
                low, high = sorted((w1, w2))
                if not (0 <= low <= l and high == low + l):
                    raise InvalidProof
                if pk.encrypt(w1, r1) != c_w1 or pk.encrypt(w2, r2) != c_w2:
                    raise InvalidProof
            else:
                if len(response) != 3:
                    raise InvalidProof
                j, z, r = response
                if j not in (0, 1) or not l <= z <= 2*l:
                    raise InvalidProof
                if pk.encrypt(z, r) != c + (c_w1, c_w2)[j]:
                    raise InvalidProof

    def to_json(self):
        return {
            'ciphertext_pairs': [[c_w1.to_json(), c_w2.to_json()] for c_w1, c_w2 in self.ciphertext_pairs],
            'responses': [list(response) for response in self.responses],
        }

    @classmethod
    def from_json(cls, data, pp):
        ciphertext_pairs = [
            (ElGamalCiphertext.from_json(c_w1, pp), ElGamalCiphertext.from_json(c_w2, pp))
            for c_w1, c_w2 in data['ciphertext_pairs']
        ]
        responses = [tuple(int(x) for x in response) for response in data['responses']]
        return cls(ciphertext_pairs, responses)


class DDHProof:
    """Chaum-Pedersen proof of knowledge of `x` such that `h1 = g1^x` and `h2 = g2^x`

    Attributes:
        a1 (int): `g1^k` for a random `k`
        a2 (int): `g2^k`
        response (int): `k + e x mod q`
    """
    def __init__(self, a1, a2, response):
        self.a1 = a1
        self.a2 = a2
        self.response = response

    @classmethod
    def prove(cls, witness, statement):
        pp = statement.pp
        k = random.SystemRandom().randrange(pp.q)
        a1 = util.powmod(statement.g1, k, pp.p)
        a2 = util.powmod(statement.g2, k, pp.p)
        e = _challenge('ddh', pp, statement.g1, statement.h1, statement.g2, statement.h2, a1, a2)
        return cls(a1, a2, (k + e * witness.x) % pp.q)

    def verify(self, statement):
        pp = statement.pp
        _check_elements(pp, statement.g1, statement.h1, statement.g2, statement.h2, self.a1, self.a2)
        e = _challenge('ddh', pp, statement.g1, statement.h1, statement.g2, statement.h2, self.a1, self.a2)
        # check that g1^s = a1 * h1^e
        if util.powmod(statement.g1, self.response, pp.p) != \
                self.a1 * util.powmod(statement.h1, e, pp.p) % pp.p:
            raise InvalidProof
        # check that g2^s = a2 * h2^e
        if util.powmod(statement.g2, self.response, pp.p) != \
                self.a2 * util.powmod(statement.h2, e, pp.p) % pp.p:
            raise InvalidProof

    def to_json(self):
        return [self.a1, self.a2, self.response]

    @classmethod
    def from_json(cls, data, pp=None):
        return cls(*(int(x) for x in data))


class ModProof:
    """Proof that `c'` encrypts `a mod p` where `c` encrypts `a`

    The prover encrypts the quotient `k = (a - b) / p` as `c_k`, then proves:
        * `b` lies in `[0, p)` (range proof on `c'`)
        * `k` lies in `[0, upper_bound / p]` (range proof on `c_k`)
        * `c - p⋅c_k - c'` is an encryption of zero, i.e. a pair `(g^w, h^w)`
          (DDH proof)

    The range proofs come with their slack (see `RangeProof`).

    Attributes:
        c_k (ElGamalCiphertext): encryption of the quotient
        pi_b (RangeProof): the remainder is in range
        pi_k (RangeProof): the quotient is in range
        pi_zero (DDHProof): the difference is an encryption of zero
    """
    def __init__(self, c_k, pi_b, pi_k, pi_zero):
        self.c_k = c_k
        self.pi_b = pi_b
        self.pi_k = pi_k
        self.pi_zero = pi_zero

    @staticmethod
    def _sub_statements(statement, c_k):
        pk = statement.pk
        p = statement.modulus_p
        if p <= 0:
            raise ValueError('the modulus must be positive')
        range_b = RangeStatement(pk, statement.c_prime, 3 * p, statement.sec_param)
        range_k = RangeStatement(pk, c_k, 3 * (statement.upper_bound_m // p + 1), statement.sec_param)
        d = statement.c - c_k * p - statement.c_prime
        zero = DDHStatement(pk.pp, pk.pp.g, d.c1, pk.h, d.c2)
        return range_b, range_k, zero

    @classmethod
    def prove(cls, witness, statement):
        """Prove the modular reduction

        Raises:
            ValueError: if the witness does not satisfy the statement
                numerically (remainder, quotient or bound)
        """
        pk = statement.pk
        q = pk.pp.q
        p = statement.modulus_p
        a, b = witness.a, witness.b
        if p <= 0:
            raise ValueError('the modulus must be positive')
        if not 0 <= a < statement.upper_bound_m:
            raise ValueError('message above the declared upper bound')
        if not 0 <= b < p or (a - b) % p != 0:
            raise ValueError('b is not the reduction of a')

        k = (a - b) // p
        r_k = random.SystemRandom().randrange(q)
        c_k = pk.encrypt(k, r_k)
        range_b, range_k, zero = cls._sub_statements(statement, c_k)

        pi_b = RangeProof.prove(RangeWitness(b, witness.r_b), range_b)
        pi_k = RangeProof.prove(RangeWitness(k, r_k), range_k)
        w = (witness.r_a - p * r_k - witness.r_b) % q
        pi_zero = DDHProof.prove(DDHWitness(w), zero)
        return cls(c_k, pi_b, pi_k, pi_zero)

    def verify(self, statement):
        if statement.modulus_p <= 0:
            raise InvalidProof('the modulus must be positive')
        range_b, range_k, zero = self._sub_statements(statement, self.c_k)
        self.pi_b.verify(range_b)
        self.pi_k.verify(range_k)
        self.pi_zero.verify(zero)

    def to_json(self):
        return {
            'c_k': self.c_k.to_json(),
            'pi_b': self.pi_b.to_json(),
            'pi_k': self.pi_k.to_json(),
            'pi_zero': self.pi_zero.to_json(),
        }

    @classmethod
    def from_json(cls, data, pp):
        return cls(
            ElGamalCiphertext.from_json(data['c_k'], pp),
            RangeProof.from_json(data['pi_b'], pp),
            RangeProof.from_json(data['pi_k'], pp),
            DDHProof.from_json(data['pi_zero'], pp),
        )
