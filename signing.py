"""Claim encoding, content identifiers and secp256k1 signatures."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping

from ecdsa import SECP256k1, BadSignatureError, MalformedPointError, SigningKey, VerifyingKey
from ecdsa.util import sigdecode_der, sigencode_der

from errors import SigningFailure
from models import Claim, ClaimType

LOGGER = logging.getLogger(__name__)


def derive_public_key(private_key: str) -> str:
    """Return the compressed public key (hex) for a hex private key."""
    signing_key = _load_signing_key(private_key)
    return signing_key.get_verifying_key().to_string("compressed").hex()


def encode_claim(claim_type: ClaimType, public_key: str, attributes: Mapping[str, str]) -> bytes:
    """Canonical signable encoding: sorted-key, compact UTF-8 JSON."""
    payload = {
        "type": str(claim_type),
        "publicKey": public_key,
        "attributes": dict(attributes),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def claim_id(message: bytes) -> str:
    return hashlib.sha256(message).hexdigest()


class ClaimCodec:
    """Builds signed claims for one key pair.

    Signatures are deterministic (RFC 6979), so identical inputs yield an
    identical identifier and signature.
    """

    def __init__(self, private_key: str) -> None:
        self._signing_key = _load_signing_key(private_key)
        self.public_key = self._signing_key.get_verifying_key().to_string("compressed").hex()

    def build(self, claim_type: ClaimType, attributes: Mapping[str, str]) -> Claim:
        message = encode_claim(claim_type, self.public_key, attributes)
        identifier = claim_id(message)
        try:
            signature = self._signing_key.sign_digest_deterministic(
                bytes.fromhex(identifier),
                hashfunc=hashlib.sha256,
                sigencode=sigencode_der,
            )
        except (ValueError, RuntimeError) as exc:
            raise SigningFailure(f"Could not sign {claim_type} claim {identifier}: {exc}") from exc

        LOGGER.debug("Signed %s claim id=%s", claim_type, identifier)
        return Claim(
            type=claim_type,
            public_key=self.public_key,
            attributes=dict(attributes),
            message=message,
            id=identifier,
            signature=signature.hex(),
        )


def verify_claim(claim: Claim) -> bool:
    """Check a claim's identifier and signature against its public key."""
    if claim.id != claim_id(claim.message):
        return False
    try:
        verifying_key = VerifyingKey.from_string(bytes.fromhex(claim.public_key), curve=SECP256k1)
        return verifying_key.verify_digest(
            bytes.fromhex(claim.signature),
            bytes.fromhex(claim.id),
            sigdecode=sigdecode_der,
        )
    except (BadSignatureError, MalformedPointError, ValueError):
        return False


def _load_signing_key(private_key: str) -> SigningKey:
    try:
        secret = bytes.fromhex(private_key.strip())
        if len(secret) != SECP256k1.baselen:
            raise ValueError(f"expected {SECP256k1.baselen} bytes, got {len(secret)}")
        return SigningKey.from_string(secret, curve=SECP256k1)
    except (ValueError, MalformedPointError) as exc:
        raise SigningFailure(f"Invalid private key: {exc}") from exc
