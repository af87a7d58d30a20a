"""App Store 서명 페이로드(JWS) 검증

App Store Server Notifications V2 의 `signedPayload` 와 내부 `signedTransactionInfo`
는 ES256 JWS 이며 헤더의 `x5c` 에 leaf → intermediate → root 인증서 체인이 담겨 있다.
체인이 신뢰하는 루트로 끝나는지 확인한 뒤 leaf 공개키로 서명을 검증한다.
"""
from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import jwt
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes

from iap_guard.core.models import utcnow


logger = logging.getLogger(__name__)


class SignatureVerificationError(Exception):
    """서명 또는 인증서 체인 검증 실패"""

    def __init__(self, message: str, *, reason: str = "invalid_signature") -> None:
        super().__init__(message)
        self.reason = reason


def load_root_certificates(paths: Iterable[str]) -> List[x509.Certificate]:
    """PEM 또는 DER 형식의 루트 인증서 파일을 읽어온다."""

    certificates: List[x509.Certificate] = []
    for raw_path in paths:
        data = Path(raw_path).expanduser().read_bytes()
        if b"-----BEGIN CERTIFICATE-----" in data:
            certificates.append(x509.load_pem_x509_certificate(data))
        else:
            certificates.append(x509.load_der_x509_certificate(data))
        logger.info("[APPLE] 루트 인증서 로드: %s", raw_path)
    return certificates


class SignatureVerifier:
    """x5c 인증서 체인 기반 JWS 서명 검증기"""

    ALGORITHM = "ES256"

    def __init__(
        self,
        trusted_roots: Sequence[x509.Certificate],
        *,
        expected_bundle_id: Optional[str] = None,
    ) -> None:
        self.trusted_roots = list(trusted_roots)
        self.expected_bundle_id = expected_bundle_id
        self._root_fingerprints = {cert.fingerprint(hashes.SHA256()) for cert in self.trusted_roots}

    def verify(self, token: str, *, at: Optional[datetime] = None) -> Dict[str, Any]:
        """서명을 검증하고 검증된 클레임을 반환한다.

        검증 실패 시 항상 SignatureVerificationError 를 발생시킨다.
        """

        if not token or not isinstance(token, str):
            raise SignatureVerificationError("서명된 페이로드가 비어 있습니다", reason="missing_payload")

        if not self.trusted_roots:
            raise SignatureVerificationError("신뢰할 루트 인증서가 설정되지 않았습니다", reason="no_trusted_roots")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.exceptions.InvalidTokenError as exc:
            raise SignatureVerificationError(f"JWS 헤더 파싱 실패: {exc}", reason="malformed") from exc

        if header.get("alg") != self.ALGORITHM:
            raise SignatureVerificationError(
                f"지원하지 않는 서명 알고리즘: {header.get('alg')}", reason="unsupported_algorithm"
            )

        chain = self._load_chain(header.get("x5c"))
        self._verify_chain(chain, at or utcnow())

        try:
            claims = jwt.decode(
                token,
                key=chain[0].public_key(),
                algorithms=[self.ALGORITHM],
                options={"verify_aud": False},
            )
        except jwt.exceptions.InvalidTokenError as exc:
            raise SignatureVerificationError(f"JWS 서명 검증 실패: {exc}") from exc

        self._verify_bundle_id(claims)
        return claims

    def _load_chain(self, x5c: Any) -> List[x509.Certificate]:
        if not isinstance(x5c, list) or not x5c:
            raise SignatureVerificationError("x5c 인증서 체인이 없습니다", reason="missing_chain")

        chain: List[x509.Certificate] = []
        for encoded in x5c:
            try:
                chain.append(x509.load_der_x509_certificate(base64.b64decode(encoded)))
            except (binascii.Error, TypeError, ValueError) as exc:
                raise SignatureVerificationError(f"x5c 인증서 파싱 실패: {exc}", reason="malformed_chain") from exc
        return chain

    def _verify_chain(self, chain: List[x509.Certificate], at: datetime) -> None:
        for cert in chain:
            if not cert.not_valid_before_utc <= at <= cert.not_valid_after_utc:
                raise SignatureVerificationError(
                    f"인증서 유효기간이 아닙니다: {cert.subject.rfc4514_string()}", reason="expired_certificate"
                )

        for child, issuer in zip(chain, chain[1:]):
            try:
                child.verify_directly_issued_by(issuer)
            except (ValueError, TypeError, InvalidSignature) as exc:
                raise SignatureVerificationError(f"인증서 체인 검증 실패: {exc}", reason="broken_chain") from exc

        anchor = chain[-1]
        if anchor.fingerprint(hashes.SHA256()) in self._root_fingerprints:
            return

        for root in self.trusted_roots:
            try:
                anchor.verify_directly_issued_by(root)
                return
            except (ValueError, TypeError, InvalidSignature):
                continue

        raise SignatureVerificationError("신뢰할 수 없는 루트 인증서입니다", reason="untrusted_root")

    def _verify_bundle_id(self, claims: Dict[str, Any]) -> None:
        if not self.expected_bundle_id:
            return

        data = claims.get("data") if isinstance(claims.get("data"), dict) else {}
        bundle_id = claims.get("bundleId") or data.get("bundleId")
        if bundle_id and bundle_id != self.expected_bundle_id:
            raise SignatureVerificationError(
                f"번들 ID 불일치: {bundle_id}", reason="bundle_mismatch"
            )
