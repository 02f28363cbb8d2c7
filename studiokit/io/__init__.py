"""External collaborators: source fetching, patching and archive handling."""

from .archive import UnsafeArchive, looks_like_archive, unpack
from .fetch import HttpSourceFetcher, SourceFetcher, file_digest, verify_checksum
from .patch import CommandPatchApplier, PatchApplier

__all__ = [
    "CommandPatchApplier",
    "HttpSourceFetcher",
    "PatchApplier",
    "SourceFetcher",
    "UnsafeArchive",
    "file_digest",
    "looks_like_archive",
    "unpack",
    "verify_checksum",
]
