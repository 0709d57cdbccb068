"""credvault: self-sovereign credential wallet core.

DID derivation, credential canonicalization, Ed25519 signing and
verification, vault encryption and content-addressed publication.
"""

__version__ = "0.1.0"
