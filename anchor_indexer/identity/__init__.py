"""Identity resolution - DIDs to hosting servers, record URIs to parts."""

from anchor_indexer.identity.resolver import EndpointResolver, AtUri, parse_at_uri

__all__ = ["EndpointResolver", "AtUri", "parse_at_uri"]
