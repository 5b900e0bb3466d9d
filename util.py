#!/usr/bin/env python3
"""Some utilities (mostly arithmetic and protocol plumbing)"""
import random
import hashlib

import gmpy2


def powmod(x, y, m):
    """Computes `x^y mod m`

    The method `powmod()` from `gmpy2` is faster than Python's builtin
    `powmod()`. However, it does add some overhead which should be skipped for
    `x = 1`.

    Arguments:
        x (int): base of the exponentiation
        y (int): exponent
        m (int): modulus

    Returns:
        int: the result of `x^y mod m`
    """
    if x == 1:
        return 1
    elif y < 0:
        return invert(powmod(x, -y, m), m)
    else:
        return int(gmpy2.powmod(x, y, m))


def invert(x, m):
    """Computes the invert of `x` modulo `m`

    This is a wrapper for `invert() from `gmpy2`.

    Arguments:
        x (int): element to be inverted
        m (int): modulus

    Returns:
        int: y such that `x × y = 1 mod m`
    """
    return int(gmpy2.invert(x, m))


def gcd(x, y):
    """Wrapper for `gcd()` from `gmpy2`"""
    return int(gmpy2.gcd(x, y))


def is_prime(x):
    """Tests whether `x` is probably prime

    This is a wrapper for `is_prime() from `gmpy2`.

    Arguments:
        x (int): the candidate prime

    Returns:
        bool: `True` if `x` is probably prime else `False`
    """
    return bool(gmpy2.is_prime(x))


def primorial(n):
    """Product of all the primes lower or equal to `n`"""
    return int(gmpy2.primorial(n))


def genprime(n_bits, safe_prime=False):
    """Generate a probable prime number of n_bits

    This method is based on `next_prime()` from `gmpy2` and adds the safe prime
    feature.

    Arguments:
        n_bits (int): the size of the prime to be generated, in bits
        safe_prime (bool): whether the returned value should be a safe prime a
            just a common prime

    Returns:
        int: a probable prime `x` from `[2^(n_bits-1), 2^n_bits]`

        Is `safe_prime` is `True`, then `x` is also a probable safe prime
    """
    if safe_prime:
        # q of the form 2*p + 1 such that p is prime as well
        while True:
            p = genprime(n_bits - 1)
            q = 2*p + 1
            if q.bit_length() == n_bits and is_prime(q):
                return q
    # just a random prime
    while True:
        n = random.SystemRandom().randrange(2**(n_bits-1), 2**n_bits) | 1
        p = int(gmpy2.next_prime(n))
        if p.bit_length() == n_bits:
            return p


def crt(residues, moduli):
    """Applies the Chinese Remainder Theorem on given residues

    Arguments:
        residues (list): the residues (int)
        moduli (list): the corresponding modulis (int) in the same order

    Returns:
        int: `x` such that `x < ∏ moduli` and `x % modulus = residue` for
        residue, modulus in `zip(moduli, redidues)`
    """
    product = prod(moduli)
    r = 0
    for residue, modulus in zip(residues, moduli):
        NX = product // modulus
        r += residue * NX * invert(NX, modulus)
        r %= product
    return r


def prod(elements_iterable, modulus=None):
    """Computes the product of the given elements

    Arguments:
        elements_iterable (iterable): values (int) to be multiplied together
        modulus (int): if provided, the result will be given modulo this value

    Returns:
        int: the product of the elements from elements_iterable

        If modulus is not None, then the result is reduced modulo the provided
        value.
    """
    elements_iterator = iter(elements_iterable)
    product = next(elements_iterator)
    for element in elements_iterator:
        product *= element
        if modulus is not None:
            product %= modulus
    return product


def _hash_update(h, value):
    if isinstance(value, (list, tuple)):
        h.update(b'[%d]' % len(value))
        for element in value:
            _hash_update(h, element)
        return
    if isinstance(value, str):
        data = b's' + value.encode()
    else:
        value = int(value)
        data = b'i' + value.to_bytes(value.bit_length() // 8 + 1, 'big', signed=True)
    h.update(len(data).to_bytes(8, 'big'))
    h.update(data)


def H(*values, n_bits=256):
    """Hash values into an integer (Fiat-Shamir heuristic)

    Each value is encoded with its length so that distinct sequences of values
    never share an encoding.

    Arguments:
        values: integers, strings (domain separation tags), or (nested) lists
            and tuples of those
        n_bits (int, optional): size of the output

    Returns:
        int: a pseudo-random integer from `[0, 2^n_bits)`
    """
    h = hashlib.shake_256()
    _hash_update(h, list(values))
    digest = h.digest((n_bits + 7) // 8)
    return int.from_bytes(digest, 'big') >> (-n_bits % 8)


def run_protocol(party_a, party_b):
    """Run two symmetric protocols against each other

    Each protocol is a generator which yields its outbound message for the
    current round and receives the message of the counterparty for the same
    round. The generators are advanced in lock-step until both return.

    Arguments:
        party_a (generator): the first party
        party_b (generator): the second party

    Returns:
        tuple: the values returned by `party_a` and `party_b`

    Raises:
        ValueError: if one party stops before the other one
    """
    message_a = next(party_a)
    message_b = next(party_b)
    while True:
        done_a = done_b = False
        try:
            next_a = party_a.send(message_b)
        except StopIteration as stop:
            done_a, result_a = True, stop.value
        try:
            next_b = party_b.send(message_a)
        except StopIteration as stop:
            done_b, result_b = True, stop.value
        if done_a and done_b:
            return result_a, result_b
        if done_a or done_b:
            raise ValueError('protocols ended at different rounds')
        message_a, message_b = next_a, next_b
