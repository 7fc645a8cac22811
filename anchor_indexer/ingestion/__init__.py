"""Record ingestion - upstream client, canonical schemas, lexicon adapters."""

from anchor_indexer.ingestion.schemas import (
    AddressFields,
    AddressPointer,
    CanonicalCheckin,
    SourceLexicon,
)

__all__ = [
    "AddressFields",
    "AddressPointer",
    "CanonicalCheckin",
    "SourceLexicon",
]
