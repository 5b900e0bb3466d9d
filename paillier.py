#!/usr/bin/env python3
"""Implementation of the Paillier cryptosystem

The Paillier cryptosystem is a public key encryption system with the property
of being partially homomorphic for addition (i.e. we can combine the
ciphertexts of two messages to obtain a ciphertext of the sum of these two
messages).

In the two-party RSA protocol, each party publishes a Paillier public key
during the key setup, along with a `CorrectKeyProof` showing that the key was
honestly generated (i.e. that the modulus is coprime to its Euler totient, so
that it cannot hide a factoring back-door). The candidate generation itself
only needs the key generation and the proof. Encryption and decryption serve
the phases following the trial division, where two candidates are multiplied
into the modulus and tested for biprimality: each party then sends values
encrypted under its own Paillier key to the counterparty. These phases live
outside of this code base.

The main entry points of this module are `generate_paillier_keypair()` and
`CorrectKeyProof`.
"""
import random

import util

# number of N-th roots revealed in the proof of correct key
_CORRECT_KEY_M = 11

# the modulus must not have any prime factor lower than this bound
_CORRECT_KEY_ALPHA = 6370

_CORRECT_KEY_TAG = 'paillier-correct-key'


def generate_paillier_keypair(n_bits=2048, safe_primes=True):
    """Generate a pair of keys for the Paillier cryptosystem

    Arguments:
        n_bits (int, optional): the number of bits for the parameter n; they
            security corresponds to the difficulty of factoring `n` (as in
            RSA); as of 2018, NIST and ANSSI recommend at least 2048 bits and
            NSA 3072 bits
        safe_primes (bool, optional): whether `p` and `q` must be safe primes;
            generating safe primes takes much more time (generating a 2048 bit
            keypair takes one minute with safe primes, but a fraction of a
            second without)

    Returns:
        tuple: pair of two elements, usually named respectively `pk`
            (`PaillierPublicKey`), and `sk` (`PaillierSecretKey`)

        The public key (`pk`) allows to encrypt messages (relative integers);
        the secret key (`sk`) allows to decrypt ciphertexts generated using
        that public key (but not using another).
    """
    while True:
        p = util.genprime(n_bits // 2, safe_primes)
        q = util.genprime(n_bits - n_bits // 2, safe_primes)
        if p != q:
            break
    g = 1 + p*q
    sk = PaillierSecretKey(p, q, g)
    return sk.public_key, sk


class PaillierPublicKey:
    """Public key for the Paillier cryptosystem

    Attributes:
        n (int): parameter `n` from the Paillier cryptosystem, should be the
            product of two large primes of the same size
        g (int): parameter `g` from the Paillier cryptsystem; in
            `generate_paillier_keypair()`, `g` is set to `1 + n`
        nsquare (int): cached value of `n × n`
    """

    def __init__(self, n, g=None):
        """Constructor

        Arguments:
            n (int): parameter from the Paillier cryptosystem
            g (int, optional): parameter from the Paillier cryptosystem,
                defaults to `1 + n`
        """
        self.n = n
        self.nsquare = n * n
        self.g = 1 + n if g is None else g

    def encrypt(self, m, randomization=None):
        """Encrypt a message m into a raw ciphertext

        Arguments:
            m (int): the message to be encrypted; note that values will be
                reduced modulo `n`
            randomization (int, optional): the randomization factor; if not
                provided, a secure-random value is chosen

        Returns:
            int: the raw ciphertext `g^m r^n mod n²`
        """
        n2 = self.nsquare
        m %= self.n

        # if g is of the form 1 + n, then we can avoid the exponentiation
        if self.g == 1 + self.n:
            raw_value = (1 + self.n * m) % n2
        else:
            raw_value = util.powmod(self.g, m, n2)

        if randomization is None:
            randomization = random.SystemRandom().randrange(1, self.n)
        return raw_value * util.powmod(randomization, self.n, n2) % n2

    def __eq__(self, other):
        if not isinstance(other, PaillierPublicKey):
            return NotImplemented
        return (self.n, self.g) == (other.n, other.g)

    def __hash__(self):
        return hash((self.n, self.g))

    def __repr__(self):
        return 'PaillierPublicKey(n=<{} bits>)'.format(self.n.bit_length())

    def to_json(self):
        return {'n': self.n, 'g': self.g}

    @classmethod
    def from_json(cls, data):
        return cls(int(data['n']), int(data['g']))

    @staticmethod
    def L(u, n):
        """As defined in the Paillier cryptosystem

        Used for decryption operations.

        Arguments:
            u (int): ciphertext (or g) to a secret exponent
            n (int): modulus currently in use
        """
        return (u - 1) // n


class PaillierSecretKey:
    """Secret key for the Paillier cryptsystem

    Attributes:
        p (int): first prime in the factorization of `n`
        q (int): second prime in the factorization of `n`
        public_key (PaillierPublicKey): the corresponding public key
        hp (int): cached value used during decryption
        hq (int): cached value used during decryption
    """
    def __init__(self, p, q, g):
        """Constructor

        Arguments:
            p (int): parameter from the Paillier cryptosystem
            q (int): parameter from the Paillier cryptosystem
            g (int): parameter from the Paillier cryptosystem
        """

        self.p = p
        self.q = q
        self.public_key = pk = PaillierPublicKey(p*q, g)

        # pre-computations
        self.hp = util.invert(pk.L(util.powmod(pk.g, p-1, p*p), p), p)
        self.hq = util.invert(pk.L(util.powmod(pk.g, q-1, q*q), q), q)

    def decrypt(self, raw_ciphertext, relative=True):
        """Decrypt a raw ciphertext

        Arguments:
            raw_ciphertext (int): the ciphertext to be decrypted
            relative (bool): whether the result should be interpreted as a
                relative integer (i.e. in [-n/2, n/2] rather than in [0, n])

        Returns:
            int: the message represented in the ciphertext
        """
        pk = self.public_key
        p, q = self.p, self.q
        m_mod_p = pk.L(util.powmod(raw_ciphertext, p-1, p*p), p) * self.hp % p
        m_mod_q = pk.L(util.powmod(raw_ciphertext, q-1, q*q), q) * self.hq % q
        plaintext = util.crt([m_mod_p, m_mod_q], [p, q])
        if relative and plaintext >= pk.n//2:
            plaintext -= pk.n
        return plaintext

    def __repr__(self):
        return 'PaillierSecretKey(<hidden>)'


class InvalidKey(Exception):
    """Raised when the verification of a proof of correct key fails"""


def _correct_key_challenges(n, salt):
    """Elements of ℤ_n* whose N-th roots are revealed by the proof"""
    n_bits = n.bit_length() + 128
    return [
        util.H(_CORRECT_KEY_TAG, n, salt, i, n_bits=n_bits) % n
        for i in range(_CORRECT_KEY_M)
    ]


class CorrectKeyProof:
    """Non-interactive proof that a Paillier modulus is well-formed

    If `gcd(n, φ(n)) = 1`, then `x ↦ x^n` is a permutation of ℤ_n*, and every
    element has an N-th root; otherwise, only a fraction of them do. The prover
    reveals the N-th roots of `_CORRECT_KEY_M` elements derived from the hash
    of the public key. The verifier also checks that `n` has no small prime
    factor, which would allow `gcd(n, φ(n)) ≠ 1` with many N-th roots.

    Attributes:
        salt (int): random value making the challenges unique to this proof
        sigma_vec (list): the N-th roots (int) of the challenges
    """
    def __init__(self, salt, sigma_vec):
        self.salt = salt
        self.sigma_vec = sigma_vec

    @classmethod
    def prove(cls, sk):
        """Prove that the public key of `sk` is well-formed

        Arguments:
            sk (PaillierSecretKey): the secret key

        Returns:
            CorrectKeyProof: the proof
        """
        n = sk.public_key.n
        phi = (sk.p - 1) * (sk.q - 1)
        n_inv = util.invert(n, phi)
        salt = random.SystemRandom().getrandbits(256)
        sigma_vec = [
            util.powmod(rho, n_inv, n)
            for rho in _correct_key_challenges(n, salt)
        ]
        return cls(salt, sigma_vec)

    def verify(self, pk):
        """Check the proof against the public key `pk`

        Raises:
            InvalidKey: if the proof is not valid
        """
        n = pk.n
        if n <= 1 or pk.g != 1 + n:
            raise InvalidKey('malformed public key')
        if util.gcd(n, util.primorial(_CORRECT_KEY_ALPHA)) != 1:
            raise InvalidKey('modulus has small prime factors')
        if len(self.sigma_vec) != _CORRECT_KEY_M:
            raise InvalidKey('wrong number of roots')
        rho_vec = _correct_key_challenges(n, self.salt)
        for sigma, rho in zip(self.sigma_vec, rho_vec):
            if not 0 < sigma < n or util.powmod(sigma, n, n) != rho:
                raise InvalidKey('invalid N-th root')

    def to_json(self):
        return {'salt': self.salt, 'sigma_vec': self.sigma_vec}

    @classmethod
    def from_json(cls, data):
        return cls(int(data['salt']), [int(sigma) for sigma in data['sigma_vec']])
