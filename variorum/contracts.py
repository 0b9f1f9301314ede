"""
Apparatus Contracts

Immutable data structures and error taxonomy for apparatus resolution.

BOUNDARY: Variorum Resolution Layer
All apparatus data leaves the parser and the resolver through these contracts.

ERROR TAXONOMY:
===============
1. Schema errors - malformed <app>/<rdgGrp>/<rdg>/<ptr> structure (fatal)
2. Integrity errors - dereference found zero or many anchors (fatal)
3. Fetch errors - transport or XML parse failure (fatal at the barrier)
4. Invariant errors - impossible pipeline states (logic errors)
Recoverable string-range failures are NOT exceptions here: they become
DroppedPointer records.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple, Any
from enum import Enum, auto
import re


XML_NS = 'http://www.w3.org/XML/1998/namespace'
XML_ID = f'{{{XML_NS}}}id'


# =============================================================================
# ENUMS
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for resolution failures.
    Every failure state is enumerated.
    """
    # Fetch errors
    FETCH_FAILED = auto()
    PARSE_FAILED = auto()

    # Schema errors
    MISSING_IDENTIFIER = auto()
    INVALID_PARENT = auto()
    MISSING_WITNESS = auto()
    UNKNOWN_EDITION = auto()
    MISSING_GROUP_IDENTIFIER = auto()
    MISSING_TARGET = auto()
    MALFORMED_TARGET = auto()
    INVALID_ORDINAL = auto()

    # Resolution errors
    DANGLING_POINTER = auto()
    AMBIGUOUS_POINTER = auto()
    RANGE_UNRESOLVED = auto()

    # Lifecycle errors
    SPINE_NOT_INITIALIZED = auto()
    UNKNOWN_SPINE = auto()
    PIPELINE_INVARIANT = auto()


class FetchStatus(Enum):
    """Status of a document fetch attempt."""
    SUCCESS = "success"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"
    PARSE_ERROR = "parse_error"


class SpineState(Enum):
    """Lifecycle of a spine chunk."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class DropReason(Enum):
    """Why a string-range pointer was excluded during rewrite."""
    NO_MATCH = "no_match"
    MULTIPLE_MATCHES = "multiple_matches"
    NOT_AN_ELEMENT = "not_an_element"
    INVALID_XPATH = "invalid_xpath"
    DOCUMENT_UNAVAILABLE = "document_unavailable"


class RangeFailurePolicy(Enum):
    """
    What the range-rewrite phase does with an unresolvable pointer.

    DROP keeps the apparatus and removes the pointer (default).
    RAISE aborts the chunk, matching the dereference phase.
    """
    DROP = "drop"
    RAISE = "raise"


# =============================================================================
# ERRORS
# =============================================================================

class VariorumError(Exception):
    """Base for every resolution failure. Carries an explicit ErrorCode."""

    code: ErrorCode = ErrorCode.PIPELINE_INVARIANT

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ', '.join(f'{k}={v!r}' for k, v in self.context.items())
        return f'{self.message} ({details})'


class FetchError(VariorumError):
    """Network or transport failure while fetching a document."""

    code = ErrorCode.FETCH_FAILED

    def __init__(
        self,
        url: str,
        message: str,
        status: FetchStatus = FetchStatus.NETWORK_ERROR,
        http_status: Optional[int] = None
    ):
        super().__init__(message, url=url, status=status.value)
        self.url = url
        self.status = status
        self.http_status = http_status


class ParseError(VariorumError):
    """Document was fetched but is not well-formed XML."""

    code = ErrorCode.PARSE_FAILED

    def __init__(self, url: str, message: str):
        super().__init__(message, url=url)
        self.url = url
        self.status = FetchStatus.PARSE_ERROR


class ApparatusSchemaError(VariorumError):
    """Structural error in the apparatus encoding. Aborts the chunk."""


class MissingIdentifier(ApparatusSchemaError):
    code = ErrorCode.MISSING_IDENTIFIER


class InvalidParent(ApparatusSchemaError):
    code = ErrorCode.INVALID_PARENT


class MissingWitness(ApparatusSchemaError):
    code = ErrorCode.MISSING_WITNESS


class UnknownEdition(ApparatusSchemaError):
    code = ErrorCode.UNKNOWN_EDITION

    def __init__(self, edition_code: str, message: Optional[str] = None):
        super().__init__(message or f'No edition with code {edition_code!r}', edition=edition_code)
        self.edition_code = edition_code


class MissingGroupIdentifier(ApparatusSchemaError):
    code = ErrorCode.MISSING_GROUP_IDENTIFIER


class MissingTarget(ApparatusSchemaError):
    code = ErrorCode.MISSING_TARGET


class MalformedTarget(ApparatusSchemaError):
    code = ErrorCode.MALFORMED_TARGET


class InvalidOrdinal(ApparatusSchemaError):
    code = ErrorCode.INVALID_ORDINAL


class PointerIntegrityError(VariorumError):
    """A direct pointer does not name exactly one element. Aborts the chunk."""


class DanglingPointer(PointerIntegrityError):
    code = ErrorCode.DANGLING_POINTER


class AmbiguousPointer(PointerIntegrityError):
    code = ErrorCode.AMBIGUOUS_POINTER


class RangeResolutionError(VariorumError):
    """A string-range expression could not be anchored to a single element."""

    code = ErrorCode.RANGE_UNRESOLVED

    def __init__(self, reason: DropReason, message: str, **context: Any):
        super().__init__(message, **context)
        self.reason = reason


class SpineNotInitialized(VariorumError):
    code = ErrorCode.SPINE_NOT_INITIALIZED


class UnknownSpine(VariorumError):
    code = ErrorCode.UNKNOWN_SPINE


class PipelineInvariantError(VariorumError):
    """A phase observed state that an earlier phase must have prevented."""

    code = ErrorCode.PIPELINE_INVARIANT


# =============================================================================
# EDITION DESCRIPTORS
# =============================================================================

@dataclass(frozen=True)
class Edition:
    """A witness edition of the text and the chunks it provides."""
    code: str
    name: str
    chunks: FrozenSet[int] = field(default_factory=frozenset)

    def provides(self, chunk: int) -> bool:
        return chunk in self.chunks


# =============================================================================
# POINTER CONTRACTS
# =============================================================================

STRING_RANGE_PATTERN = re.compile(
    r'^string-range\((?P<xpath>.+),(?P<start>\d+),(?P<length>\d+)\)$'
)

# Upstream xpaths use a prefix that is the default namespace of the witnesses
INVALID_NAMESPACE_TOKEN = 'tei:'


@dataclass(frozen=True)
class StringRange:
    """
    A string-range(xpath,start,length) pointer fragment.

    Only the xpath is used to pick an anchor element. start and length are
    validated by the grammar and otherwise not persisted.
    """
    xpath: str
    start: int
    length: int

    @classmethod
    def parse(cls, fragment: str) -> Optional['StringRange']:
        """Return the parsed range, or None if the fragment is a plain id."""
        match = STRING_RANGE_PATTERN.match(fragment)
        if not match:
            return None
        return cls(
            xpath=match.group('xpath'),
            start=int(match.group('start')),
            length=int(match.group('length'))
        )

    @property
    def patched_xpath(self) -> str:
        return self.xpath.replace(INVALID_NAMESPACE_TOKEN, '')


@dataclass(frozen=True)
class Pointer:
    """
    One <ptr> inside <rdg> inside <rdgGrp>.

    Pointers are values: each pipeline phase returns a new Pointer
    instead of changing this one.
    """
    group_id: str
    edition: Edition
    referenced_url: str
    referenced_target: str
    ptr_element: Any = field(default=None, compare=False, repr=False)
    dereferenced: Any = field(default=None, compare=False, repr=False)

    @property
    def target(self) -> str:
        return f'{self.referenced_url}#{self.referenced_target}'

    @property
    def string_range(self) -> Optional[StringRange]:
        return StringRange.parse(self.referenced_target)

    @property
    def is_string_range(self) -> bool:
        return self.string_range is not None

    @property
    def is_dereferenced(self) -> bool:
        return self.dereferenced is not None


@dataclass(frozen=True)
class Apparatus:
    """Content of one <app> entry: id, optional ordinal and its pointers."""
    id: str
    n: Optional[int]
    pointers: Tuple[Pointer, ...]
    element: Any = field(default=None, compare=False, repr=False)

    def with_pointers(self, pointers: Tuple[Pointer, ...]) -> 'Apparatus':
        """Return a new Apparatus holding the given pointers."""
        return Apparatus(id=self.id, n=self.n, pointers=tuple(pointers), element=self.element)

    def group_ids(self) -> Tuple[str, ...]:
        """Reading group ids in first-seen order."""
        seen = []
        for ptr in self.pointers:
            if ptr.group_id not in seen:
                seen.append(ptr.group_id)
        return tuple(seen)

    def pointers_for_edition(self, edition_code: str) -> Tuple[Pointer, ...]:
        return tuple(p for p in self.pointers if p.edition.code == edition_code)


# =============================================================================
# DIAGNOSTIC CONTRACTS (failures are first-class data)
# =============================================================================

@dataclass(frozen=True)
class DroppedPointer:
    """A pointer excluded by the range-rewrite phase, with reproduction context."""
    apparatus_id: str
    group_id: str
    referenced_url: str
    expression: str
    reason: DropReason
    message: str

    def to_dict(self) -> dict:
        return {
            'apparatus_id': self.apparatus_id,
            'group_id': self.group_id,
            'referenced_url': self.referenced_url,
            'expression': self.expression,
            'reason': self.reason.value,
            'message': self.message,
        }


@dataclass(frozen=True)
class ResolutionStats:
    """Counts recorded when a chunk reaches READY."""
    chunk: int
    apparatus_count: int
    pointer_count: int
    referenced_documents: int
    rewritten_ranges: int
    synthesized_ids: int
    dropped_pointers: int

    def to_dict(self) -> dict:
        return {
            'chunk': self.chunk,
            'apparatus_count': self.apparatus_count,
            'pointer_count': self.pointer_count,
            'referenced_documents': self.referenced_documents,
            'rewritten_ranges': self.rewritten_ranges,
            'synthesized_ids': self.synthesized_ids,
            'dropped_pointers': self.dropped_pointers,
        }
