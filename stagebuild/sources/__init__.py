"""Source retrieval.

This module handles:
- Cached, retried downloads of source archives and asset files
- Extraction with top-level directory validation
- Shallow git checkouts
"""

from stagebuild.sources.fetch import FetchError, FetchResult, IntegrityError

__all__ = ["FetchError", "FetchResult", "IntegrityError"]
