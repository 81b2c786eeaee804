"""Helper utilities shared across compliance components."""

from .checksum import sha256_of_file, sha256_of_payload
from .citations import make_label, regulation_label

__all__ = ["sha256_of_file", "sha256_of_payload", "make_label", "regulation_label"]
