"""Rotation-invariant binary codes ("necklaces") that identify ring markers."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace

from .structs import Decoded

_log = logging.getLogger(__name__)

_NO_CANDIDATE = 10000
_NO_DISTANCE = 10000


def hamming(a, b):
    """Number of bit positions in which two non-negative codes differ."""
    if a < 0 or b < 0:
        raise ValueError("hamming distance is defined for non-negative codes only")
    return bin(a ^ b).count("1")


@dataclass(frozen=True)
class NecklaceEntry:
    """Identifier assigned to one raw code and its rotation from the canonical code."""

    id: int
    rotation: int
    hamming: int = 0


_UNKNOWN = NecklaceEntry(-1, -1, 0)


class Necklace:
    """Table mapping every raw code of ``id_bits`` bits to a marker identifier."""

    def __init__(self, id_bits, id_samples, minimal_hamming=1, debug=False):
        if id_bits < 1:
            raise ValueError("id_bits must be positive")
        self.length = id_bits
        self.id_samples = id_samples
        self.debug = debug
        self.id_length = 2**id_bits
        self._entries = self._build(minimal_hamming)
        self.max_id = max(0, max(entry.id for entry in self._entries))
        self.probabilities = [1.0 / self.max_id] * self.max_id if self.max_id else []

    def _rotate(self, code):
        bit = code & 1
        return (code >> 1) | (bit << (self.length - 1))

    @staticmethod
    def _nearest_root(code, roots):
        return min(roots, key=lambda root: hamming(code, root), default=_NO_CANDIDATE)

    def _build(self, minimal_hamming):
        entries = [_UNKNOWN] * self.id_length
        roots = []
        next_id = 0
        for code in range(self.id_length):
            temp = code
            rotations = 0
            seen = []
            symmetric = False
            min_ham = 1000
            while True:
                nearest = self._nearest_root(temp, roots)
                ham = hamming(temp, nearest)
                if min_ham > ham:
                    min_ham = ham
                    if min_ham == 0:
                        root = entries[nearest]
                        entries[code] = NecklaceEntry(
                            root.id, root.rotation + rotations, entries[code].hamming
                        )
                bit = temp & 1
                temp = self._rotate(temp)
                if (bit or code == 0) and temp in seen:
                    symmetric = True
                seen.append(temp)
                more = rotations < self.length - 1
                rotations += 1
                if not more or symmetric:
                    break

            if min_ham >= minimal_hamming and not symmetric:
                entries[code] = NecklaceEntry(next_id, 0, min_ham)
                if self.debug:
                    _log.debug("adding %d as %d", code, next_id)
                next_id += 1
            elif min_ham > 0:
                entries[code] = NecklaceEntry(-1, -1, min_ham)
            if symmetric:
                entries[code] = replace(entries[code], id=-1, rotation=-1)
            if code >= 1 and entries[code].rotation == 0:
                roots.append(code)
        return entries

    def get(self, sequence, probabilistic=False, confidence=1.0):
        """Look up a raw code; optionally refine a Bayesian estimate of the identity."""
        if sequence <= 0 or sequence >= self.id_length:
            return _UNKNOWN
        entry = self._entries[sequence]
        if not probabilistic:
            return entry

        n = self.max_id
        if n > 1:
            oe = self.observation_estimation(confidence)
            other = (1.0 - oe) / (n - 1)
            likelihoods = [oe if entry.id == i else other for i in range(n)]
            evidence = sum(l * p for l, p in zip(likelihoods, self.probabilities))
            low, high = 1.0 / n, 1.0 - 1.0 / n
            updated = []
            for likelihood, prior in zip(likelihoods, self.probabilities):
                posterior = likelihood / evidence * prior
                if posterior <= low:
                    posterior = low
                if posterior > high:
                    posterior = high
                updated.append(posterior)
            self.probabilities = updated
        return replace(entry, id=self.estimated_id())

    def verify_hamming(self, codes, id_bits):
        """Smallest rotation-aware Hamming distance between any two of the codes."""
        codes = list(codes)
        overall = _NO_DISTANCE
        for i, a in enumerate(codes):
            for j, b in enumerate(codes):
                minimal = _NO_DISTANCE
                if i != j:
                    temp = b
                    for _ in range(id_bits):
                        minimal = min(minimal, hamming(a, temp))
                        temp = self._rotate(temp)
                overall = min(overall, minimal)
        return overall

    def observation_estimation(self, confidence):
        """Probability that an observation with this confidence is correct."""
        if self.max_id == 0:
            raise ValueError("no identifiers to estimate")
        n = float(self.max_id)
        return math.atan2(confidence - 400.0, 80.0) * ((1.0 - 1.0 / n) / math.pi) + (
            (n + 1.0) / (2.0 * n)
        )

    def estimated_id(self):
        """Identifier with the highest probability (the first one on ties)."""
        best = 0
        for index, probability in enumerate(self.probabilities):
            if probability > self.probabilities[best]:
                best = index
        return best

    def decode(self, code, max_index, segment_v0, segment_v1):
        """Decode a string of ``2 * id_bits`` sampled bits into an identifier and angle."""
        span = 2 * self.length
        if len(code) < span:
            raise ValueError(f"code must hold at least {span} samples")

        edge_index = 0
        for a in range(span):
            if code[a] == "0" and code[(a + 1) % span] == "0":
                edge_index = a
        edge_index = 1 - (edge_index % 2)

        real_code = "".join(code[edge_index : edge_index + span : 2])
        value = 0
        for ch in real_code:
            value = value * 2 + (1 if ch == "1" else 0)
        entry = self.get(value)

        angle = 2 * math.pi * (
            -float(max_index) / self.id_samples
            - float(edge_index) / self.length / 2.0
            + float(entry.rotation) / self.length
        ) + math.atan2(segment_v1, segment_v0)
        angle += 2 * math.pi * ((self.id_samples // self.length) / 2.0) / 2.0 / self.id_samples
        if math.isinf(angle):
            raise ValueError("segment orientation must be finite")
        while angle > math.pi:
            angle -= 2 * math.pi
        while angle < -math.pi:
            angle += 2 * math.pi

        if self.debug:
            _log.debug("decoded %s as %d at %.3f", real_code, entry.id, angle)
        return Decoded(angle=angle, id=entry.id, edge_index=edge_index, code=real_code)