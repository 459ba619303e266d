"""
Signed settlement reports.

The ledger signs the canonical JSON form of each SettlementReport so the
accounting can be checked independently of the process that produced it.
"""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)


def canonical_json(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


class ReportSigner:
    """ECDSA P-256 / SHA-256 signer for settlement reports."""

    def __init__(self, private_key: Optional[ec.EllipticCurvePrivateKey] = None) -> None:
        self.private_key = private_key or ec.generate_private_key(ec.SECP256R1())
        self.public_key = self.private_key.public_key()

    @classmethod
    def from_pem(cls, pem: bytes, password: Optional[bytes] = None) -> "ReportSigner":
        key = serialization.load_pem_private_key(pem, password=password)
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ValueError("Report signing key must be an elliptic-curve private key")
        return cls(key)

    def public_key_pem(self) -> str:
        pem = self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return pem.decode()

    def sign(self, report: Dict[str, Any]) -> Dict[str, Any]:
        """Return the report together with its digest, signature and public key."""
        body = canonical_json(report)
        signature = self.private_key.sign(body, ec.ECDSA(hashes.SHA256()))
        return {
            "report": report,
            "digest": hashlib.sha256(body).hexdigest(),
            "signature": base64.b64encode(signature).decode(),
            "public_key": self.public_key_pem(),
        }

    def verify(self, report: Dict[str, Any], signature: str) -> bool:
        try:
            self.public_key.verify(
                base64.b64decode(signature),
                canonical_json(report),
                ec.ECDSA(hashes.SHA256()),
            )
            return True
        except (InvalidSignature, ValueError) as exc:
            logger.warning("Settlement report signature rejected: %s", exc)
            return False
