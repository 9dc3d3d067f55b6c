"""Registration of originals for later tamper comparison."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .codec import serialize_payload
from .crypto import CryptoUtils
from .diff import PixelDiffEngine
from .hashing import ContentHasher, PerceptualHasher
from .inspector import FormatInspector
from .types import Payload, PixelBuffer, RegisteredOriginal, RegistrationSignature

logger = logging.getLogger(__name__)


def registration_record(original: RegisteredOriginal) -> Dict[str, Any]:
    """Fields covered by a registration signature."""
    return {
        "id": original.id,
        "content_digest": original.content_digest.hex() if original.content_digest else None,
        "fingerprint": original.fingerprint,
        "width": original.width,
        "height": original.height,
        "file_size": original.file_size,
        "container": original.container.value,
        "created_at": original.created_at,
        "payload": serialize_payload(original.payload) if original.payload else None,
    }


def verify_registration(original: RegisteredOriginal, trust_store: List[str]) -> bool:
    """Check that a trusted key signed this registration.

    Args:
        original: Registered original carrying signatures
        trust_store: PEM public keys to accept

    Returns:
        True if at least one signature is valid and made by a trusted key
    """
    if not original.signatures:
        return False

    canonical = CryptoUtils.canonical_json(registration_record(original))
    trusted = {key.strip() for key in trust_store}
    for sig in original.signatures:
        if sig.public_key.strip() not in trusted:
            logger.debug(f"Signature by {sig.signer} uses an untrusted key")
            continue
        if CryptoUtils.verify_signature(canonical, sig.signature, sig.public_key):
            return True
        logger.warning(f"Registration signature by {sig.signer} does not verify")
    return False


class RegistrationBuilder:
    """Builder for ``RegisteredOriginal`` records."""

    def __init__(self, content: bytes, pixels: PixelBuffer):
        """Initialize registration builder.

        Args:
            content: Raw file bytes of the original
            pixels: Decoded pixels of the original
        """
        self._id = CryptoUtils.generate_uuid()
        self._content = content
        self._pixels = pixels
        self._created_at = datetime.now(timezone.utc).isoformat()
        self._payload: Optional[Payload] = None
        self._signing: List[tuple] = []

    def with_payload(self, payload: Payload) -> "RegistrationBuilder":
        """Record the payload embedded in the original.

        Returns:
            Self for chaining
        """
        self._payload = payload
        return self

    def sign(self, private_key: str, signer: str) -> "RegistrationBuilder":
        """Sign the registration when it is built.

        Args:
            private_key: Private key in PEM format
            signer: Signer identifier

        Returns:
            Self for chaining
        """
        self._signing.append((private_key, signer))
        return self

    def build(self) -> RegisteredOriginal:
        """Build the registered original with digest, fingerprint and thumbnail."""
        signals = FormatInspector().inspect(self._content)
        original = RegisteredOriginal(
            id=self._id,
            content_digest=ContentHasher.digest(self._content),
            fingerprint=PerceptualHasher().fingerprint(self._pixels),
            width=self._pixels.width,
            height=self._pixels.height,
            file_size=len(self._content),
            container=signals.container,
            thumbnail=PixelDiffEngine().make_thumbnail(self._pixels),
            payload=self._payload,
            created_at=self._created_at,
        )

        canonical = CryptoUtils.canonical_json(registration_record(original))
        for private_key, signer in self._signing:
            original.signatures.append(RegistrationSignature(
                algorithm="RSA-SHA256",
                public_key=CryptoUtils.get_public_key_from_private_key(private_key),
                signature=CryptoUtils.sign_content(canonical, private_key),
                timestamp=datetime.now(timezone.utc).isoformat(),
                signer=signer,
            ))

        logger.debug(f"Registered {original.id} ({original.width}x{original.height}, {original.file_size} bytes)")
        return original
