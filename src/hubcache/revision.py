"""Revision as a tagged union decided once, where user input enters the library.

A ``CommitRevision`` is immutable and self-describing, so it never needs a
ref lookup. A ``NamedRevision`` (branch or tag) always goes through
``refs/``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

from .constants import DEFAULT_REVISION, REGEX_COMMIT_HASH
from .validators import validate_revision


@dataclass(frozen=True, slots=True)
class NamedRevision:
    name: str

    @property
    def value(self) -> str:
        return self.name

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class CommitRevision:
    commit_hash: str

    @property
    def value(self) -> str:
        return self.commit_hash

    def __str__(self) -> str:
        return self.commit_hash


Revision: TypeAlias = NamedRevision | CommitRevision


def parse_revision(revision: str | Revision | None) -> Revision:
    if isinstance(revision, (NamedRevision, CommitRevision)):
        return revision
    value = validate_revision(DEFAULT_REVISION if revision is None else revision)
    # Snapshot folders are named after the lowercase hash.
    if is_commit_hash(value.lower()):
        return CommitRevision(commit_hash=value.lower())
    return NamedRevision(name=value)


def is_commit_hash(value: str) -> bool:
    return REGEX_COMMIT_HASH.match(value) is not None
