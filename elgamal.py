#!/usr/bin/env python3
"""Implementation of the exponential ElGamal cryptosystem

Messages are encoded in the exponent (`Enc(m; r) = (g^r, h^r g^m)`), which
makes the cryptosystem additively homomorphic: the product of two ciphertexts
encrypts the sum of their messages. Decryption only yields `g^m`; recovering
`m` itself requires a discrete logarithm, which is only practical for small
values. The protocols built on top of it never need `m`, only whether `g^m` is
the identity (i.e. whether `m = 0`).

All the computations are done in the subgroup of order `q` of `Z_p^*`, where
`p = 2q + 1` is a safe prime.

The main entry points of this module are `ElGamalPP.ffdhe2048()` and
`generate_elgamal_keypair()`.
"""
import random

import util

# RFC 7919, Appendix A.1
_FFDHE2048_P = int(
    'FFFFFFFFFFFFFFFFADF85458A2BB4A9AAFDC5620273D3CF1'
    'D8B9C583CE2D3695A9E13641146433FBCC939DCE249B3EF9'
    '7D2FE363630C75D8F681B202AEC4617AD3DF1ED5D5FD6561'
    '2433F51F5F066ED0856365553DED1AF3B557135E7F57C935'
    '984F0C70E0E68B77E2A689DAF3EFE8721DF158A136ADE735'
    '30ACCA4F483A797ABC0AB182B324FB61D108A94BB2C8E3FB'
    'B96ADAB760D7F4681D4F42A3DE394DF4AE56EDE76372BB19'
    '0B07A7C8EE0A6D709E02FCE1CDF7E2ECC03404CD28342F61'
    '9172FE9CE98583FF8E4F1232EEF28183C3FE3B1B4C6FAD73'
    '3BB5FCBC2EC22005C58EF1837D1683B2C6F34A26C1B2EFFA'
    '886B423861285C97FFFFFFFFFFFFFFFF',
    16,
)


class ElGamalPP:
    """Public parameters (the group) of the ElGamal cryptosystem

    Attributes:
        p (int): safe prime modulus
        q (int): `(p - 1) / 2`, prime order of the subgroup in use
        g (int): generator of the subgroup of order `q`
    """
    def __init__(self, p, q, g):
        """Constructor

        Arguments:
            p (int): safe prime modulus
            q (int): order of the subgroup generated by `g`
            g (int): generator
        """
        if p != 2*q + 1:
            raise ValueError('p must be equal to 2q + 1')
        self.p = p
        self.q = q
        self.g = g

    @classmethod
    def ffdhe2048(cls):
        """The 2048 bit group from RFC 7919, agreed upon by both parties"""
        p = _FFDHE2048_P
        return cls(p, (p - 1) // 2, 2)

    @classmethod
    def generate(cls, n_bits):
        """Generate a fresh group

        Only meant for tests and benchmarks: parties must agree on the group,
        and should rather use a standard one such as `ffdhe2048()`.

        Arguments:
            n_bits (int): size of the safe prime `p`

        Returns:
            ElGamalPP: a group whose generator is the square of a random
                element (squares generate the subgroup of order `q`)
        """
        p = util.genprime(n_bits, safe_prime=True)
        q = (p - 1) // 2
        while True:
            g = util.powmod(random.SystemRandom().randrange(2, p - 1), 2, p)
            if g != 1:
                return cls(p, q, g)

    def contains(self, x):
        """Whether `x` is an element of the subgroup of order `q`"""
        return 0 < x < self.p and util.powmod(x, self.q, self.p) == 1

    def __eq__(self, other):
        if not isinstance(other, ElGamalPP):
            return NotImplemented
        return (self.p, self.q, self.g) == (other.p, other.q, other.g)

    def __hash__(self):
        return hash((self.p, self.q, self.g))

    def __repr__(self):
        return 'ElGamalPP(p=<{} bits>, g={})'.format(self.p.bit_length(), self.g)


def generate_elgamal_keypair(pp):
    """Generate a pair of keys for the ElGamal cryptosystem

    Arguments:
        pp (ElGamalPP): the group in which to generate the keys

    Returns:
        tuple: pair of two elements, usually named respectively `pk`
            (`ElGamalPublicKey`), and `sk` (`ElGamalSecretKey`)
    """
    x = random.SystemRandom().randrange(1, pp.q)
    sk = ElGamalSecretKey(pp, x)
    return sk.public_key, sk


class ElGamalPublicKey:
    """Public key for the ElGamal cryptosystem

    Attributes:
        pp (ElGamalPP): the group
        h (int): `g^x` where `x` is the secret exponent
    """
    def __init__(self, pp, h):
        self.pp = pp
        self.h = h

    def encrypt(self, m, randomness=None):
        """Encrypt a message m into a ciphertext

        Arguments:
            m (int): the message to be encrypted; it is used as an exponent,
                so it is implicitly reduced modulo `q`
            randomness (int, optional): the randomness `r` of the encryption;
                if not provided, a secure-random value is chosen; setting it
                to zero yields the deterministic encryption `(1, g^m)`, which
                anybody can compute

        Returns:
            ElGamalCiphertext: `(g^r, h^r g^m)`
        """
        pp = self.pp
        if randomness is None:
            randomness = random.SystemRandom().randrange(pp.q)
        c1 = util.powmod(pp.g, randomness % pp.q, pp.p)
        c2 = util.powmod(self.h, randomness % pp.q, pp.p) * util.powmod(pp.g, m % pp.q, pp.p) % pp.p
        return ElGamalCiphertext(pp, c1, c2)

    def __add__(self, other):
        """Combine two public keys into a joint public key

        A ciphertext under the joint key can only be decrypted by using both
        corresponding secret keys. The operation is commutative.

        Arguments:
            other (ElGamalPublicKey): the other public key

        Returns:
            ElGamalPublicKey: the public key for the sum of the secret exponents
        """
        if other.pp != self.pp:
            raise ValueError('cannot combine keys from different groups')
        return ElGamalPublicKey(self.pp, self.h * other.h % self.pp.p)

    def __eq__(self, other):
        if not isinstance(other, ElGamalPublicKey):
            return NotImplemented
        return self.pp == other.pp and self.h == other.h

    def __hash__(self):
        return hash((self.pp, self.h))

    def __repr__(self):
        return 'ElGamalPublicKey(h={:#x})'.format(self.h)

    def to_json(self):
        return self.h

    @classmethod
    def from_json(cls, data, pp):
        return cls(pp, int(data))


class ElGamalSecretKey:
    """Secret key for the ElGamal cryptosystem

    Attributes:
        pp (ElGamalPP): the group
        x (int): the secret exponent
        public_key (ElGamalPublicKey): the corresponding public key
    """
    def __init__(self, pp, x):
        self.pp = pp
        self.x = x
        self.public_key = ElGamalPublicKey(pp, util.powmod(pp.g, x, pp.p))

    def partial_decrypt(self, ciphertext):
        """Contribution of this key to the decryption of `ciphertext`

        Under a joint key, the ciphertext is decrypted by dividing `c2` by the
        product of the partial decryptions of all the parties.

        Returns:
            int: `c1^x`
        """
        return util.powmod(ciphertext.c1, self.x, self.pp.p)

    def decrypt(self, ciphertext, max_plaintext=2**16):
        """Decrypt a ciphertext whose message is small

        The message is recovered by exhaustive search of the discrete
        logarithm; this is only meant for testing.

        Arguments:
            ciphertext (ElGamalCiphertext): the ciphertext to be decrypted
            max_plaintext (int): bound on the absolute value of the message

        Returns:
            int: the message `m` such that `-max_plaintext <= m <= max_plaintext`

        Raises:
            ValueError: when no such message exists
        """
        pp = self.pp
        g_m = ciphertext.c2 * util.invert(self.partial_decrypt(ciphertext), pp.p) % pp.p
        g_minus_one = util.invert(pp.g, pp.p)
        positive = negative = 1
        for m in range(max_plaintext + 1):
            if positive == g_m:
                return m
            if negative == g_m:
                return -m
            positive = positive * pp.g % pp.p
            negative = negative * g_minus_one % pp.p
        raise ValueError('plaintext out of the searched range')

    def __add__(self, other):
        """Joint secret key (sum of the secret exponents)"""
        if other.pp != self.pp:
            raise ValueError('cannot combine keys from different groups')
        return ElGamalSecretKey(self.pp, (self.x + other.x) % self.pp.q)

    def __repr__(self):
        return 'ElGamalSecretKey(<hidden>)'


class ElGamalCiphertext:
    """Ciphertext from the exponential ElGamal cryptosystem

    Ciphertexts are immutable; homomorphic operations return new ciphertexts.
    None of them adds randomness: a ciphertext derived from public values is
    deterministic.

    Attributes:
        pp (ElGamalPP): the group
        c1 (int): `g^r`
        c2 (int): `h^r g^m`
    """
    def __init__(self, pp, c1, c2):
        self.pp = pp
        self.c1 = c1
        self.c2 = c2

    def __add__(a, b):
        """Homomorphically add two ElGamal ciphertexts together

        Arguments:
            a (ElGamalCiphertext): left operand
            b (ElGamalCiphertext): right operand

        Returns:
            ElGamalCiphertext: an encryption of the sum of the messages, with
                the sum of the randomness
        """
        if not isinstance(b, ElGamalCiphertext):
            return NotImplemented
        if b.pp != a.pp:
            raise ValueError('cannot sum values from different groups')
        p = a.pp.p
        return ElGamalCiphertext(a.pp, a.c1 * b.c1 % p, a.c2 * b.c2 % p)

    def __neg__(a):
        """Homomorphically negate an ElGamal ciphertext"""
        return a * -1

    def __sub__(a, b):
        """Homomorphically subtract two ElGamal ciphertexts"""
        if not isinstance(b, ElGamalCiphertext):
            return NotImplemented
        return a + -b

    def __mul__(a, b):
        """Homomorphically multiply an ElGamal ciphertext by an integer

        Arguments:
            a (ElGamalCiphertext): left operand
            b (int): right operand; it is an exponent and reduced modulo `q`

        Returns:
            ElGamalCiphertext: `(c1^b, c2^b)`, an encryption of the product of
                the message with `b`
        """
        if isinstance(b, ElGamalCiphertext):
            raise NotImplementedError('ElGamal is only additively homomorphic')
        pp = a.pp
        b %= pp.q
        return ElGamalCiphertext(pp, util.powmod(a.c1, b, pp.p), util.powmod(a.c2, b, pp.p))

    def __rmul__(a, b):
        return a * b

    def __eq__(self, other):
        if not isinstance(other, ElGamalCiphertext):
            return NotImplemented
        return self.pp == other.pp and (self.c1, self.c2) == (other.c1, other.c2)

    def __hash__(self):
        return hash((self.pp, self.c1, self.c2))

    def __repr__(self):
        return 'ElGamalCiphertext(c1={:#x}, c2={:#x})'.format(self.c1, self.c2)

    def to_json(self):
        return [self.c1, self.c2]

    @classmethod
    def from_json(cls, data, pp):
        c1, c2 = data
        return cls(pp, int(c1), int(c2))
