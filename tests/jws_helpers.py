"""테스트용 인증서 체인 및 ES256 JWS 생성 헬퍼"""
import base64
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _build_cert(
    subject: str,
    public_key,
    issuer: str,
    issuer_key,
    *,
    ca: bool,
    not_before: datetime,
    not_after: datetime,
) -> x509.Certificate:
    return (
        x509.CertificateBuilder()
        .subject_name(_name(subject))
        .issuer_name(_name(issuer))
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .sign(issuer_key, hashes.SHA256())
    )


@dataclass
class CertChain:
    root: x509.Certificate
    intermediate: x509.Certificate
    leaf: x509.Certificate
    leaf_key: ec.EllipticCurvePrivateKey

    def x5c(self) -> List[str]:
        return [
            base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode("ascii")
            for cert in (self.leaf, self.intermediate, self.root)
        ]

    def sign(self, payload: Dict[str, Any], *, headers: Optional[Dict[str, Any]] = None) -> str:
        jws_headers = {"x5c": self.x5c()}
        jws_headers.update(headers or {})
        return jwt.encode(payload, self.leaf_key, algorithm="ES256", headers=jws_headers)


def make_chain(
    prefix: str = "Test",
    *,
    leaf_not_after: Optional[datetime] = None,
) -> CertChain:
    """루트 → 중간 → leaf 로 이어지는 P-256 인증서 체인"""
    now = datetime.now(timezone.utc)
    not_before = now - timedelta(days=1)
    not_after = now + timedelta(days=365)

    root_key = ec.generate_private_key(ec.SECP256R1())
    intermediate_key = ec.generate_private_key(ec.SECP256R1())
    leaf_key = ec.generate_private_key(ec.SECP256R1())

    root_name = f"{prefix} Root CA"
    intermediate_name = f"{prefix} Intermediate CA"
    root = _build_cert(
        root_name, root_key.public_key(), root_name, root_key,
        ca=True, not_before=not_before, not_after=not_after,
    )
    intermediate = _build_cert(
        intermediate_name, intermediate_key.public_key(), root_name, root_key,
        ca=True, not_before=not_before, not_after=not_after,
    )
    leaf = _build_cert(
        f"{prefix} Signing Leaf", leaf_key.public_key(), intermediate_name, intermediate_key,
        ca=False, not_before=not_before, not_after=leaf_not_after or not_after,
    )
    return CertChain(root=root, intermediate=intermediate, leaf=leaf, leaf_key=leaf_key)


def to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def transaction_claims(
    transaction_id: str,
    product_id: str = "com.example.premium.monthly",
    *,
    original_transaction_id: Optional[str] = None,
    expires: Optional[datetime] = None,
    purchased: Optional[datetime] = None,
    **extra: Any,
) -> Dict[str, Any]:
    purchased = purchased or datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "transactionId": transaction_id,
        "originalTransactionId": original_transaction_id or transaction_id,
        "productId": product_id,
        "bundleId": "com.example.app",
        "purchaseDate": to_millis(purchased),
        "type": "Auto-Renewable Subscription",
        "environment": "Sandbox",
    }
    if expires is not None:
        claims["expiresDate"] = to_millis(expires)
    claims.update(extra)
    return claims


def signed_notification(
    chain: CertChain,
    notification_type: str,
    *,
    subtype: Optional[str] = None,
    notification_uuid: str = "uuid-1",
    transaction: Optional[Dict[str, Any]] = None,
    renewal: Optional[Dict[str, Any]] = None,
    transaction_chain: Optional[CertChain] = None,
) -> Dict[str, str]:
    """웹훅 요청 본문 {"signedPayload": ...} 생성"""
    data: Dict[str, Any] = {"bundleId": "com.example.app", "environment": "Sandbox"}
    inner_chain = transaction_chain or chain
    if transaction is not None:
        data["signedTransactionInfo"] = inner_chain.sign(transaction)
    if renewal is not None:
        data["signedRenewalInfo"] = inner_chain.sign(renewal)

    payload: Dict[str, Any] = {
        "notificationType": notification_type,
        "notificationUUID": notification_uuid,
        "data": data,
        "version": "2.0",
    }
    if subtype:
        payload["subtype"] = subtype
    return {"signedPayload": chain.sign(payload)}
