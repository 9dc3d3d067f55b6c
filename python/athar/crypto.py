"""Cryptographic utilities for Athar."""
import base64
import binascii
import hashlib
import json
import uuid
from typing import Tuple

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm

from .types import ContentDigest


class CryptoUtils:
    """Utility class for cryptographic operations."""

    @staticmethod
    def digest(content: bytes) -> ContentDigest:
        """SHA-256 digest of raw bytes."""
        if not isinstance(content, (bytes, bytearray, memoryview)):
            raise ValueError(f"Expected bytes, got {type(content).__name__}")
        return ContentDigest(value=hashlib.sha256(bytes(content)).digest())

    @staticmethod
    def generate_key_pair() -> Tuple[str, str]:
        """Generate RSA key pair.

        Returns:
            Tuple of (public_key_pem, private_key_pem)
        """
        private_key = rsa.generate_private_key(
            public_exponent=65537,
            key_size=2048
        )

        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        ).decode()

        public_pem = CryptoUtils._public_pem(private_key.public_key())
        return public_pem, private_pem

    @staticmethod
    def get_public_key_from_private_key(private_key_pem: str) -> str:
        """Extract public key (PEM) from a private key (PEM)."""
        private_key = serialization.load_pem_private_key(
            private_key_pem.encode(),
            password=None
        )
        return CryptoUtils._public_pem(private_key.public_key())

    @staticmethod
    def sign_content(content: str, private_key_pem: str) -> str:
        """Sign content with private key.

        Args:
            content: Content to sign
            private_key_pem: Private key in PEM format

        Returns:
            Base64-encoded signature
        """
        private_key = serialization.load_pem_private_key(
            private_key_pem.encode(),
            password=None
        )

        signature = private_key.sign(
            content.encode(),
            padding.PKCS1v15(),
            hashes.SHA256()
        )
        return base64.b64encode(signature).decode()

    @staticmethod
    def verify_signature(content: str, signature: str, public_key_pem: str) -> bool:
        """Verify a base64 signature with a PEM public key."""
        try:
            public_key = serialization.load_pem_public_key(public_key_pem.encode())
            signature_bytes = base64.b64decode(signature, validate=True)
            public_key.verify(
                signature_bytes,
                content.encode(),
                padding.PKCS1v15(),
                hashes.SHA256()
            )
            return True
        except (InvalidSignature, UnsupportedAlgorithm, binascii.Error, ValueError, TypeError):
            return False

    @staticmethod
    def generate_uuid() -> str:
        """Generate UUID for registration IDs."""
        return f"urn:uuid:{uuid.uuid4()}"

    @staticmethod
    def canonical_json(data: dict) -> str:
        """Create canonical JSON representation for hashing."""
        return json.dumps(data, sort_keys=True, separators=(',', ':'))

    @staticmethod
    def _public_pem(public_key) -> str:
        return public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode()
