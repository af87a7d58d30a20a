"""SignatureVerifier 인증서 체인 / 서명 검증 테스트"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from jwt.utils import base64url_encode
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from jws_helpers import make_chain

from iap_guard.services.signature_verifier import (
    SignatureVerificationError,
    SignatureVerifier,
    load_root_certificates,
)


def test_verify_returns_claims_for_trusted_chain(chain, verifier):
    token = chain.sign({"notificationType": "DID_RENEW", "data": {"bundleId": "com.example.app"}})

    claims = verifier.verify(token)

    assert claims["notificationType"] == "DID_RENEW"


def test_verify_rejects_untrusted_root(chain):
    other = make_chain("Other")
    verifier = SignatureVerifier([other.root])

    with pytest.raises(SignatureVerificationError) as exc_info:
        verifier.verify(chain.sign({"a": 1}))

    assert exc_info.value.reason == "untrusted_root"


def test_verify_fails_closed_without_roots(chain):
    verifier = SignatureVerifier([])

    with pytest.raises(SignatureVerificationError) as exc_info:
        verifier.verify(chain.sign({"a": 1}))

    assert exc_info.value.reason == "no_trusted_roots"


def test_verify_rejects_tampered_payload(chain, verifier):
    token = chain.sign({"notificationType": "DID_RENEW"})
    header, payload, signature = token.split(".")
    forged = base64url_encode(b'{"notificationType":"REFUND"}').decode("ascii")

    with pytest.raises(SignatureVerificationError) as exc_info:
        verifier.verify(f"{header}.{forged}.{signature}")

    assert exc_info.value.reason == "invalid_signature"


def test_verify_rejects_leaf_not_issued_by_intermediate(chain, verifier):
    """다른 키로 서명한 토큰에 신뢰 체인을 붙여도 통과하지 않는다"""
    rogue_key = ec.generate_private_key(ec.SECP256R1())
    token = jwt.encode({"a": 1}, rogue_key, algorithm="ES256", headers={"x5c": chain.x5c()})

    with pytest.raises(SignatureVerificationError):
        verifier.verify(token)


def test_verify_rejects_broken_chain(chain, verifier):
    other = make_chain("Other")
    x5c = chain.x5c()
    x5c[1] = other.x5c()[1]
    token = jwt.encode({"a": 1}, chain.leaf_key, algorithm="ES256", headers={"x5c": x5c})

    with pytest.raises(SignatureVerificationError) as exc_info:
        verifier.verify(token)

    assert exc_info.value.reason == "broken_chain"


def test_verify_rejects_missing_chain(chain, verifier):
    token = jwt.encode({"a": 1}, chain.leaf_key, algorithm="ES256")

    with pytest.raises(SignatureVerificationError) as exc_info:
        verifier.verify(token)

    assert exc_info.value.reason == "missing_chain"


def test_verify_rejects_non_es256_algorithm(verifier):
    token = jwt.encode({"a": 1}, "secret-secret-secret-secret-secret", algorithm="HS256")

    with pytest.raises(SignatureVerificationError) as exc_info:
        verifier.verify(token)

    assert exc_info.value.reason == "unsupported_algorithm"


@pytest.mark.parametrize("token", ["", "not-a-jws", None])
def test_verify_rejects_malformed_input(verifier, token):
    with pytest.raises(SignatureVerificationError):
        verifier.verify(token)


def test_verify_rejects_expired_leaf():
    expired = make_chain("Expired", leaf_not_after=datetime.now(timezone.utc) - timedelta(minutes=1))
    verifier = SignatureVerifier([expired.root])

    with pytest.raises(SignatureVerificationError) as exc_info:
        verifier.verify(expired.sign({"a": 1}))

    assert exc_info.value.reason == "expired_certificate"


def test_verify_rejects_bundle_mismatch(chain, verifier):
    token = chain.sign({"data": {"bundleId": "com.someone.else"}})

    with pytest.raises(SignatureVerificationError) as exc_info:
        verifier.verify(token)

    assert exc_info.value.reason == "bundle_mismatch"


def test_load_root_certificates_reads_pem_and_der(tmp_path, chain):
    pem_path = tmp_path / "root.pem"
    der_path = tmp_path / "root.cer"
    pem_path.write_bytes(chain.root.public_bytes(serialization.Encoding.PEM))
    der_path.write_bytes(chain.root.public_bytes(serialization.Encoding.DER))

    roots = load_root_certificates([str(pem_path), str(der_path)])

    assert [cert.subject for cert in roots] == [chain.root.subject, chain.root.subject]
