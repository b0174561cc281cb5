"""
证书解析与自洽性校验的测试。
"""

import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from src.server.selfsigned import core
from src.server.selfsigned.errors import InvalidRequest
from src.server.selfsigned.schemas import (
    CertificateRequest,
    IssuedCertificate,
    KeyAlgorithm,
    ValidationReason,
)


@pytest.fixture(scope="module")
def issued() -> IssuedCertificate:
    return core.issue(
        CertificateRequest(
            common_name="node.example.com",
            organization="Example Corp",
            country="JP",
            email="admin@example.com",
            validity_days=90,
            key_size=2048,
            algorithm=KeyAlgorithm.ECDSA,
        )
    )


def _ca_signed_certificate() -> x509.Certificate:
    """生成一张由另一把 CA 密钥签发的证书（非自签名）。"""
    ca_key = ec.generate_private_key(ec.SECP256R1())
    node_key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "node-1")]))
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Dev CA")]))
        .public_key(node_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=30))
        .sign(ca_key, hashes.SHA256())
    )


def test_inspect_pem_text(issued):
    """测试 PEM 文本输入"""
    details = core.inspect_certificate(issued.certificate_pem)
    assert details.subject == {
        "commonName": "node.example.com",
        "organization": "Example Corp",
        "country": "JP",
        "email": "admin@example.com",
    }
    assert details.issuer == details.subject
    assert details.key_algorithm == KeyAlgorithm.ECDSA
    assert details.key_size == 256
    assert details.signature_hash == "sha256"
    assert details.self_signed is True
    assert details.signature_valid is True
    assert details.not_valid_after - details.not_valid_before == timedelta(days=90)


def test_inspect_pem_with_surrounding_text(issued):
    details = core.inspect_certificate("subject=...\n" + issued.certificate_pem + "\ntrailer")
    assert details.self_signed is True


def test_inspect_base64_pem_and_der(issued):
    """测试 Base64(PEM) 与 Base64(DER) 输入"""
    cert = x509.load_pem_x509_certificate(issued.certificate_pem.encode("ascii"))
    pem_b64 = base64.b64encode(issued.certificate_pem.encode("ascii")).decode("ascii")
    der_b64 = base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode("ascii")

    assert core.inspect_certificate(pem_b64).serial_number == format(cert.serial_number, "x")
    assert core.inspect_certificate(der_b64).serial_number == format(cert.serial_number, "x")


def test_inspect_ca_signed_certificate():
    """测试非自签名证书"""
    cert = _ca_signed_certificate()
    details = core.inspect_certificate(cert.public_bytes(serialization.Encoding.PEM).decode("ascii"))
    assert details.self_signed is False
    assert details.signature_valid is False
    assert details.issuer == {"commonName": "Dev CA"}


@pytest.mark.parametrize("garbage", ["", "not a certificate", "-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----"])
def test_inspect_rejects_garbage(garbage):
    with pytest.raises(InvalidRequest) as ei:
        core.inspect_certificate(garbage)
    assert ei.value.fields == ["certificate"]
    assert ei.value.errors[0].reason == ValidationReason.INVALID_FORMAT


def test_verify_issued_consistent(issued):
    assert core.verify_issued(issued) is True


def test_verify_issued_detects_mismatched_public_key(issued):
    """测试公钥与证书不匹配时返回 False"""
    other = core.issue(
        CertificateRequest(
            common_name="other",
            country="JP",
            email="admin@example.com",
            validity_days=1,
            key_size=2048,
            algorithm=KeyAlgorithm.ECDSA,
        )
    )
    tampered = issued.model_copy(update={"public_key_pem": other.public_key_pem})
    assert core.verify_issued(tampered) is False

    tampered = issued.model_copy(update={"private_key_pem": other.private_key_pem})
    assert core.verify_issued(tampered) is False


def test_verify_issued_invalid_pem(issued):
    tampered = issued.model_copy(update={"certificate_pem": "garbage"})
    assert core.verify_issued(tampered) is False


def _certificate_with_unsupported_key() -> MagicMock:
    certificate = MagicMock(spec=x509.Certificate)
    certificate.public_key.side_effect = UnsupportedAlgorithm("unknown key type")
    return certificate


def test_inspect_unsupported_public_key():
    """测试公钥类型无法识别时返回字段错误而不是抛出库异常"""
    with patch(
        "src.server.selfsigned.core.load_certificate",
        return_value=_certificate_with_unsupported_key(),
    ):
        with pytest.raises(InvalidRequest) as ei:
            core.inspect_certificate("ignored")
    assert ei.value.fields == ["certificate"]
    assert ei.value.errors[0].reason == ValidationReason.UNSUPPORTED_VALUE


def test_verify_issued_unsupported_public_key(issued):
    """测试证书公钥无法加载时 verify_issued 返回 False"""
    with patch(
        "src.server.selfsigned.core.x509.load_pem_x509_certificate",
        return_value=_certificate_with_unsupported_key(),
    ):
        assert core.verify_issued(issued) is False
