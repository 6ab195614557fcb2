"""Template source resolution -- descriptors, git access, cache and resolver.

Quick usage::

    from stencil.config import Config
    from stencil.source import SourceDescriptor, SourceResolver

    resolver = SourceResolver(Config.from_env())
    resolved = await resolver.resolve(SourceDescriptor(origin="gh:acme/tpl", ref="v1"))
    try:
        ...  # use resolved.path
    finally:
        resolved.cleanup()
"""

from stencil.source.cache import CacheEntry, CacheLock
from stencil.source.descriptor import SourceDescriptor, is_remote, normalize_origin
from stencil.source.resolver import ResolvedSource, SourceResolver, select_ref

__all__ = [
    "CacheEntry",
    "CacheLock",
    "ResolvedSource",
    "SourceDescriptor",
    "SourceResolver",
    "is_remote",
    "normalize_origin",
    "select_ref",
]
