"""Ordinal ranking of where a coordinate came from."""
from __future__ import annotations

from enum import IntEnum


class AccuracySource(IntEnum):
    """Provenance of a latitude/longitude pair, most accurate first.

    Ordered by accuracy, not precision: a city centre can be closer to the
    truth than a postal code spanning several towns, but statistically most
    people live in large cities with many codes.
    """

    Axiomatic = 0
    DirectEntry = 1
    PostalAddress = 2
    UserGuess = 3
    PostalCode = 4
    City = 5
    IPGuess = 6
    Country = 7
    Continent = 8
    Earth = 9

    def is_more_accurate_than(self, other: "AccuracySource") -> bool:
        return self < other


def rank(name: str) -> int:
    """Return the ordinal for an accuracy name; unknown names raise ``KeyError``."""
    return int(AccuracySource[name])


def name(ordinal: int) -> str:
    """Return the accuracy name for an ordinal; out-of-range values raise ``ValueError``."""
    return AccuracySource(ordinal).name
