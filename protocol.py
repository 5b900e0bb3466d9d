#!/usr/bin/env python3
"""Orchestration of the two-party RSA candidate generation

The rounds of each party (see `party_one` and `party_two`) are chained into
generators: a protocol yields the message it sends at the current round and
receives the message of the counterparty in return. Since a generator can only
be resumed where it stopped, the rounds cannot be skipped nor reordered, and a
message can only be processed once the previous one has been verified.

Two protocols are offered:
    key_setup_protocol: returns the keys of the party
    candidate_protocol: generates a candidate and runs the trial division for
        the given divisors; returns `None` if the candidate is rejected

`generate_candidate()` runs both parties locally (with `util.run_protocol()`)
and implements the restart policy: key setup once, then new candidates until
one passes all the trial divisions.
"""
import time
import itertools

import hmrt
import util
import party_one
import party_two

# debug_level = 0: quiet
# debug_level = 1: attempts and their outcome
# debug_level = 2: result of each trial division
# debug_level = 3: timings
debug_level = 0

_ROLES = {1: party_one, 2: party_two}


def debug(level, message):
    """Debug helper: display message if the debug level is high enough"""
    if level > debug_level:
        return
    print(message)


def _role(party):
    try:
        return _ROLES[party]
    except KeyError:
        raise ValueError('party must be 1 or 2') from None


def _starmap(pool, function, arguments):
    if pool is None:
        return list(itertools.starmap(function, arguments))
    return pool.starmap(function, arguments)


def key_setup_protocol(party, params):
    """Key setup protocol

    Arguments:
        party (int): 1 for party one, 2 for party two
        params (hmrt.Parameters): the parameters agreed upon by both parties

    Returns:
        generator: the corresponding protocol

        The generator itself returns the keys of the party (`hmrt.KeySetup`).
    """
    role = _role(party)
    own_message, private = role.generate_local_keys(params)
    counterparty_message = yield own_message
    return role.verify_counterparty_and_finalize(counterparty_message, own_message, private, params)


def candidate_protocol(party, keys, divisors, batch_size=1, pool=None):
    """Candidate generation protocol, with trial division

    Divisors are handled `batch_size` at a time: the messages of the trial
    divisions of a batch are sent together, so that each batch only needs
    three rounds. The protocol stops after the first batch where a divisor
    divides the candidate.

    Arguments:
        party (int): 1 for party one, 2 for party two
        keys (hmrt.KeySetup): the keys of the party
        divisors (list): the trial divisors (int), usually small primes
        batch_size (int, optional): number of divisors per batch
        pool (multiprocessing.Pool, optional): if provided, the trial
            divisions of a batch are computed in parallel

    Returns:
        generator: the corresponding protocol

        The generator itself returns `None` if the candidate was rejected;
        otherwise, the witness of the party (`hmrt.CandidateWitness`) and the
        encrypted candidate (`hmrt.CiphertextPair`).
    """
    if batch_size < 1:
        raise ValueError('batch_size must be positive')
    role = _role(party)
    divisors = list(divisors)

    witness, own_first = role.generate_share(keys)
    counterparty_first = yield own_first
    c = role.verify_and_normalize(keys, counterparty_first, own_first)

    for start in range(0, len(divisors), batch_size):
        batch = divisors[start:start + batch_size]

        own_second = _starmap(pool, role.prepare_reduction, [
            (alpha, keys, c, witness)
            for alpha in batch
        ])
        counterparty_second = yield own_second
        if len(counterparty_second) != len(batch):
            raise ValueError('expected {} messages'.format(len(batch)))

        combined = _starmap(pool, role.verify_and_combine, [
            (theirs, ours, alpha, keys, c)
            for theirs, ours, alpha in zip(counterparty_second, own_second, batch)
        ])
        own_third = [message for message, _, _ in combined]
        counterparty_third = yield own_third
        if len(counterparty_third) != len(batch):
            raise ValueError('expected {} messages'.format(len(batch)))

        results = _starmap(pool, role.verify_and_conclude, [
            (c_alpha, c_alpha_tilde, theirs, keys)
            for (_, c_alpha, c_alpha_tilde), theirs in zip(combined, counterparty_third)
        ])
        for alpha, passed in zip(batch, results):
            debug(2, 'Party {}: trial division by {}: {}'.format(party, alpha, 'pass' if passed else 'fail'))
        if not all(results):
            return None

    return witness, c


class Candidate:
    """Candidate which passed every trial division

    Only meant for the local simulation of both parties: in an actual
    deployment, each party only knows its own keys and witness.

    Attributes:
        keys (tuple): keys of party one and party two (`hmrt.KeySetup`)
        witnesses (tuple): witnesses of party one and party two
            (`hmrt.CandidateWitness`)
        ciphertexts (hmrt.CiphertextPair): the encrypted candidate
        attempts (int): number of candidates generated
    """
    def __init__(self, keys, witnesses, ciphertexts, attempts):
        self.keys = keys
        self.witnesses = witnesses
        self.ciphertexts = ciphertexts
        self.attempts = attempts


def generate_candidate(params, divisors, max_attempts=None, batch_size=1, pool=None):
    """Generate a candidate passing the trial divisions, simulating both parties

    A rejected candidate, or an invalid encrypted share, leads to a new attempt
    with fresh shares (but the same keys). Any other failure aborts.

    Arguments:
        params (hmrt.Parameters): the parameters of the protocol
        divisors (list): the trial divisors (int)
        max_attempts (int, optional): give up after this number of candidates
        batch_size (int, optional): see `candidate_protocol()`
        pool (multiprocessing.Pool, optional): see `candidate_protocol()`

    Returns:
        Candidate: the surviving candidate

    Raises:
        hmrt.CandidateGenerationFailed: no candidate within `max_attempts`
        hmrt.TwoPartyRSAError: a verification failed
    """
    divisors = list(divisors)

    start = time.time()
    keys = util.run_protocol(key_setup_protocol(1, params), key_setup_protocol(2, params))
    debug(3, 'Key setup took: {:.1f} s'.format(time.time() - start))

    attempts = itertools.count(1) if max_attempts is None else range(1, max_attempts + 1)
    for attempt in attempts:
        start = time.time()
        try:
            results = util.run_protocol(
                candidate_protocol(1, keys[0], divisors, batch_size, pool),
                candidate_protocol(2, keys[1], divisors, batch_size, pool),
            )
        except hmrt.CandidateGenerationEncError:
            debug(1, 'Attempt {}: invalid encrypted share, restarting'.format(attempt))
            continue
        debug(3, 'Attempt {} took: {:.1f} s'.format(attempt, time.time() - start))

        if results == (None, None):
            debug(1, 'Attempt {}: candidate rejected'.format(attempt))
            continue
        if None in results:
            raise ValueError('parties disagree on the trial division')

        (witness_one, c_one), (witness_two, c_two) = results
        assert c_one == c_two
        debug(1, 'Attempt {}: candidate accepted'.format(attempt))
        return Candidate(keys, (witness_one, witness_two), c_one, attempt)

    raise hmrt.CandidateGenerationFailed('no candidate after {} attempts'.format(max_attempts))
