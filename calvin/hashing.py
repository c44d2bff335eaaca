"""Content addressing helpers.

Digests are `sha256:<hex>` strings over raw bytes. They are the only equality
test the engine uses for "unchanged"; timestamps never matter.
"""

from __future__ import annotations

import hashlib


DIGEST_PREFIX = "sha256:"


def sha256_bytes(b: bytes) -> str:
    return DIGEST_PREFIX + hashlib.sha256(b).hexdigest()


def normalize_digest(digest: str) -> str:
    """Accept bare hex digests (older ledgers) as well as prefixed ones."""

    if digest.startswith(DIGEST_PREFIX):
        return digest
    return DIGEST_PREFIX + digest
