"""
Variorum Apparatus Resolver

Resolves a TEI critical apparatus spread over several hosted XML
documents into dereferenced, back-linked variant readings.

DIRECTION OF DEPENDENCY:
========================
fetcher, registry -> parser -> spine -> service -> api, report

DESIGN PRINCIPLES:
==================
1. Contracts are immutable values
2. Fetches are single-flight and cached for the process lifetime
3. Schema and integrity failures abort a chunk; string-range misses do not
4. Shared state lives in an explicit VariorumContext, never a global
"""

from .contracts import (
    Edition,
    Apparatus,
    Pointer,
    StringRange,
    SpineState,
    DroppedPointer,
    DropReason,
    ResolutionStats,
    RangeFailurePolicy,
    ErrorCode,
    FetchStatus,
    VariorumError,
    FetchError,
    ParseError,
    ApparatusSchemaError,
    MissingIdentifier,
    InvalidParent,
    MissingWitness,
    UnknownEdition,
    MissingGroupIdentifier,
    MissingTarget,
    MalformedTarget,
    InvalidOrdinal,
    PointerIntegrityError,
    DanglingPointer,
    AmbiguousPointer,
    SpineNotInitialized,
    UnknownSpine,
    PipelineInvariantError,
)

from .fetcher import DocumentCache
from .identifiers import IdGenerator, SequenceIdGenerator
from .parser import ApparatusParser
from .registry import EditionRegistry
from .spine import ResolverConfig, SpineResolver
from .service import VariorumContext, create_context
