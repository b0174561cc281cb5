"""
自签名证书签发的核心逻辑实现。
包括请求校验、密钥生成、组装主题 DN、设置有效期、签名以及 PEM 序列化。

本模块不做任何网络或文件 I/O，也不保存任何状态：每次签发都生成全新的密钥材料。
"""

import base64
import binascii
import ipaddress
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Tuple, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)
from cryptography.x509.oid import NameOID
from loguru import logger
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from src.server.config import config
from .errors import InvalidRequest, KeyGenerationError, SigningError
from .schemas import (
    ALLOWED_KEY_SIZES,
    CertificateDetails,
    CertificateRequest,
    FieldError,
    IssuedCertificate,
    KeyAlgorithm,
    ValidationReason,
)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]

# 主题 DN 的固定顺序
SUBJECT_ATTRIBUTES: Tuple[Tuple[str, x509.ObjectIdentifier], ...] = (
    ("common_name", NameOID.COMMON_NAME),
    ("organization", NameOID.ORGANIZATION_NAME),
    ("organizational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("locality", NameOID.LOCALITY_NAME),
    ("state", NameOID.STATE_OR_PROVINCE_NAME),
    ("country", NameOID.COUNTRY_NAME),
    ("email", NameOID.EMAIL_ADDRESS),
)

# RFC 5280 附录 A 的 ub-* 上限
NAME_LENGTH_LIMITS: Dict[str, int] = {
    "common_name": 64,
    "organization": 64,
    "organizational_unit": 64,
    "locality": 128,
    "state": 128,
    "email": 255,
}

# ECDSA 下 key_size 到曲线的映射；1024 没有同等强度的曲线，用 P-256 替代
EC_CURVES: Dict[int, type] = {
    1024: ec.SECP256R1,
    2048: ec.SECP256R1,
    4096: ec.SECP521R1,
}

_COUNTRY_RE = re.compile(r"[A-Z]{2}")
_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_HOSTNAME_RE = re.compile(
    r"(\*\.)?[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*"
)
_PEM_CERT_RE = re.compile(
    r"-----BEGIN CERTIFICATE-----[\s\S]*?-----END CERTIFICATE-----"
)

# snake_case 与 camelCase 字段名统一映射为 camelCase
_WIRE_NAMES: Dict[str, str] = {
    **{name: to_camel(name) for name in CertificateRequest.model_fields},
    **{to_camel(name): to_camel(name) for name in CertificateRequest.model_fields},
}

_PYDANTIC_REASONS: Dict[str, ValidationReason] = {
    "missing": ValidationReason.REQUIRED,
    "int_parsing": ValidationReason.NOT_AN_INTEGER,
    "int_from_float": ValidationReason.NOT_AN_INTEGER,
    "int_type": ValidationReason.NOT_AN_INTEGER,
    "bool_not_int": ValidationReason.NOT_AN_INTEGER,
    "string_unicode": ValidationReason.INVALID_FORMAT,
    "enum": ValidationReason.UNSUPPORTED_VALUE,
}


def _field_error(field: str, reason: ValidationReason, message: str) -> FieldError:
    return FieldError(field=to_camel(field), reason=reason, message=message)


def _is_blank(value: str) -> bool:
    return not value or not value.strip()


def issuance_time() -> datetime:
    """
    当前 UTC 时间，向上取整到整秒。
    X.509 的时间只精确到秒，向上取整保证 notBefore 不早于调用时刻。
    """
    now = datetime.now(timezone.utc)
    if now.microsecond:
        now = now.replace(microsecond=0) + timedelta(seconds=1)
    return now


def validity_window(start: datetime, validity_days: int) -> Tuple[datetime, datetime]:
    """
    计算有效期 [start, start + validity_days 天]。
    时间统一按 UTC 计算，UTC 没有夏令时，日历日即 24 小时。
    :raises OverflowError: 结束时间超出可表示范围。
    """
    return start, start + timedelta(days=validity_days)


def check_request(request: CertificateRequest) -> List[FieldError]:
    """
    检查请求的全部字段，返回错误列表（每个字段最多一条，取第一个失败规则）。
    """
    errors: List[FieldError] = []

    # 孤立代理字符等无法编码为 UTF-8 的值在签名时才会失败，这里提前拒绝
    for name, _ in SUBJECT_ATTRIBUTES:
        try:
            getattr(request, name).encode("utf-8")
        except UnicodeEncodeError:
            errors.append(_field_error(name, ValidationReason.INVALID_FORMAT, "包含无法编码的字符"))
    unencodable = {e.field for e in errors}

    if "commonName" not in unencodable and _is_blank(request.common_name):
        errors.append(_field_error("common_name", ValidationReason.REQUIRED, "Common Name 为必填项"))

    if "country" not in unencodable:
        if _is_blank(request.country):
            errors.append(_field_error("country", ValidationReason.REQUIRED, "国家代码为必填项"))
        elif not _COUNTRY_RE.fullmatch(request.country):
            errors.append(
                _field_error(
                    "country",
                    ValidationReason.INVALID_FORMAT,
                    "请输入两位大写字母的国家代码（例如 JP）",
                )
            )

    if "email" not in unencodable:
        if _is_blank(request.email):
            errors.append(_field_error("email", ValidationReason.REQUIRED, "邮箱地址为必填项"))
        elif not _EMAIL_RE.fullmatch(request.email) or not request.email.isascii():
            errors.append(_field_error("email", ValidationReason.INVALID_FORMAT, "请输入有效的邮箱地址"))

    failed = {e.field for e in errors}
    for name, limit in NAME_LENGTH_LIMITS.items():
        if to_camel(name) in failed:
            continue
        if len(getattr(request, name)) > limit:
            errors.append(
                _field_error(name, ValidationReason.TOO_LONG, f"长度不能超过 {limit} 个字符")
            )

    if request.validity_days <= 0:
        errors.append(
            _field_error("validity_days", ValidationReason.NOT_POSITIVE, "有效期天数必须为正整数")
        )
    else:
        try:
            # 预留一天，避免签发时刻晚于校验时刻导致越界
            validity_window(issuance_time(), request.validity_days + 1)
        except OverflowError:
            errors.append(
                _field_error("validity_days", ValidationReason.OUT_OF_RANGE, "有效期天数过大")
            )

    if request.key_size not in ALLOWED_KEY_SIZES:
        sizes = "、".join(str(s) for s in ALLOWED_KEY_SIZES)
        errors.append(
            _field_error("key_size", ValidationReason.UNSUPPORTED_VALUE, f"密钥长度必须为 {sizes} 之一")
        )

    try:
        KeyAlgorithm(request.algorithm)
    except ValueError:
        errors.append(
            _field_error("algorithm", ValidationReason.UNSUPPORTED_VALUE, "算法必须为 RSA 或 ECDSA")
        )

    return errors


def validate_request(request: CertificateRequest) -> None:
    """
    校验请求，不做任何密码学运算。
    :raises InvalidRequest: 任一字段不合法。
    """
    errors = check_request(request)
    if errors:
        raise InvalidRequest(errors)


def parse_request(data: Mapping[str, Any]) -> CertificateRequest:
    """
    从表单原始数据构造并校验请求。字段名可用 camelCase 或 snake_case，数字可为字符串。
    :raises InvalidRequest: 类型转换失败、缺少字段或字段不合法。
    """
    try:
        request = CertificateRequest.model_validate(dict(data))
    except ValidationError as e:
        errors: List[FieldError] = []
        seen = set()
        for err in e.errors():
            loc = str(err["loc"][0]) if err["loc"] else "request"
            field = _WIRE_NAMES.get(loc, loc)
            if field in seen:
                continue
            seen.add(field)
            reason = _PYDANTIC_REASONS.get(err["type"], ValidationReason.INVALID_FORMAT)
            errors.append(FieldError(field=field, reason=reason, message=err["msg"]))
        raise InvalidRequest(errors) from e
    validate_request(request)
    return request


def generate_key_pair(algorithm: KeyAlgorithm, key_size: int) -> PrivateKey:
    """
    生成密钥对。RSA 下 key_size 即模数位数；ECDSA 下按 EC_CURVES 选择曲线。
    :raises KeyGenerationError: 底层库无法生成对应密钥。
    """
    algorithm = KeyAlgorithm(algorithm)
    try:
        if algorithm == KeyAlgorithm.RSA:
            if key_size < 2048:
                logger.warning(f"RSA-{key_size} 强度不足，仅建议用于测试环境")
            return rsa.generate_private_key(
                public_exponent=config.rsa_public_exponent,
                key_size=key_size,
            )

        curve_cls = EC_CURVES.get(key_size)
        if curve_cls is None:
            raise KeyGenerationError(f"没有与密钥长度 {key_size} 对应的椭圆曲线")
        if key_size == 1024:
            logger.warning("ECDSA 没有与 1024 位对应的曲线，改用 P-256")
        return ec.generate_private_key(curve_cls())
    except (ValueError, UnsupportedAlgorithm) as e:
        logger.error(f"密钥生成失败 ({algorithm.value}, {key_size}): {e}")
        raise KeyGenerationError(f"无法生成 {algorithm.value} {key_size} 密钥: {e}") from e


def signature_hash_for(private_key: PrivateKey) -> hashes.HashAlgorithm:
    """RSA 与 P-256 使用 SHA-256，P-521 使用 SHA-512。"""
    if isinstance(private_key, ec.EllipticCurvePrivateKey) and private_key.curve.key_size > 384:
        return hashes.SHA512()
    return hashes.SHA256()


def build_subject(request: CertificateRequest) -> x509.Name:
    """
    按固定顺序组装主题 DN，空值属性直接省略。
    """
    return x509.Name(
        [
            x509.NameAttribute(oid, getattr(request, field))
            for field, oid in SUBJECT_ATTRIBUTES
            if not _is_blank(getattr(request, field))
        ]
    )


def subject_alt_name_for(common_name: str) -> x509.GeneralName | None:
    """Common Name 是 IP 时返回 IPAddress，是主机名时返回 DNSName，否则返回 None。"""
    value = common_name.strip()
    try:
        return x509.IPAddress(ipaddress.ip_address(value))
    except ValueError:
        pass
    if _HOSTNAME_RE.fullmatch(value):
        return x509.DNSName(value)
    return None


def _add_extensions(
    builder: x509.CertificateBuilder, request: CertificateRequest, private_key: PrivateKey
) -> x509.CertificateBuilder:
    builder = builder.add_extension(
        x509.BasicConstraints(ca=False, path_length=None), critical=True
    ).add_extension(
        x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
        critical=False,
    )
    alt_name = subject_alt_name_for(request.common_name)
    if alt_name is not None:
        builder = builder.add_extension(x509.SubjectAlternativeName([alt_name]), critical=False)
    return builder


def sign_certificate(
    builder: x509.CertificateBuilder, private_key: PrivateKey
) -> x509.Certificate:
    """
    :raises SigningError: 签名失败。
    """
    try:
        return builder.sign(private_key=private_key, algorithm=signature_hash_for(private_key))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.error(f"证书签名失败: {e}")
        raise SigningError(f"证书签名失败: {e}") from e


def serialize(private_key: PrivateKey, certificate: x509.Certificate) -> IssuedCertificate:
    """将私钥、公钥、证书分别序列化为 PEM 文本。"""
    private_format = (
        PrivateFormat.PKCS8
        if config.private_key_format == "pkcs8"
        else PrivateFormat.TraditionalOpenSSL
    )
    private_pem = private_key.private_bytes(
        encoding=Encoding.PEM,
        format=private_format,
        encryption_algorithm=NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=Encoding.PEM,
        format=PublicFormat.SubjectPublicKeyInfo,
    )
    return IssuedCertificate(
        private_key_pem=private_pem.decode("ascii"),
        public_key_pem=public_pem.decode("ascii"),
        certificate_pem=certificate.public_bytes(Encoding.PEM).decode("ascii"),
    )


def issue(request: CertificateRequest) -> IssuedCertificate:
    """
    签发一张自签名证书。
    :param request: 证书签发请求。
    :return: 私钥、公钥、证书三段 PEM。
    :raises InvalidRequest: 请求不合法（此时不会生成任何密钥）。
    :raises KeyGenerationError: 密钥生成失败。
    :raises SigningError: 签名失败。
    """
    validate_request(request)

    private_key = generate_key_pair(request.algorithm, request.key_size)
    subject = build_subject(request)
    not_before, not_after = validity_window(issuance_time(), request.validity_days)

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    if config.include_extensions:
        builder = _add_extensions(builder, request, private_key)

    certificate = sign_certificate(builder, private_key)
    issued = serialize(private_key, certificate)

    logger.info(
        f"已签发自签名证书: CN={request.common_name}, "
        f"{KeyAlgorithm(request.algorithm).value}-{request.key_size}, "
        f"serial={certificate.serial_number:x}, 有效期 {request.validity_days} 天"
    )
    return issued


def _public_key_der(key) -> bytes:
    return key.public_bytes(encoding=Encoding.DER, format=PublicFormat.SubjectPublicKeyInfo)


def _self_signature_valid(certificate: x509.Certificate) -> bool:
    try:
        certificate.verify_directly_issued_by(certificate)
        return True
    except (ValueError, TypeError, InvalidSignature, UnsupportedAlgorithm):
        return False


def verify_issued(issued: IssuedCertificate) -> bool:
    """
    检查签发结果是否自洽：证书公钥、公钥 PEM、私钥对应的公钥三者一致，且证书签名可被该公钥验证。
    """
    try:
        certificate = x509.load_pem_x509_certificate(issued.certificate_pem.encode("ascii"))
        public_key = serialization.load_pem_public_key(issued.public_key_pem.encode("ascii"))
        private_key = serialization.load_pem_private_key(
            issued.private_key_pem.encode("ascii"), password=None
        )
        certificate_key = certificate.public_key()
    except (ValueError, TypeError, UnsupportedAlgorithm):
        return False

    expected = _public_key_der(public_key)
    if _public_key_der(certificate_key) != expected:
        return False
    if _public_key_der(private_key.public_key()) != expected:
        return False
    return _self_signature_valid(certificate)


def load_certificate(certificate_input: str) -> x509.Certificate:
    """
    从输入中解析证书，兼容：
    1) PEM 文本（取第一个证书块）
    2) Base64 编码的 PEM 文本
    3) Base64 编码的 DER
    :raises InvalidRequest: 无法识别/解析证书。
    """
    text = certificate_input.strip()

    if "-----BEGIN CERTIFICATE-----" in text:
        match = _PEM_CERT_RE.search(text)
        if match:
            try:
                return x509.load_pem_x509_certificate(match.group(0).encode("ascii"))
            except (ValueError, UnicodeEncodeError):
                pass
    else:
        try:
            decoded = base64.b64decode("".join(text.split()), validate=True)
        except (binascii.Error, ValueError):
            decoded = b""
        if decoded:
            try:
                return x509.load_pem_x509_certificate(decoded)
            except ValueError:
                pass
            try:
                return x509.load_der_x509_certificate(decoded)
            except ValueError:
                pass

    raise InvalidRequest(
        [_field_error("certificate", ValidationReason.INVALID_FORMAT, "无法从输入中解析证书")]
    )


_ATTRIBUTE_KEYS = {oid: to_camel(field) for field, oid in SUBJECT_ATTRIBUTES}


def _name_to_dict(name: x509.Name) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for attribute in name:
        key = _ATTRIBUTE_KEYS.get(attribute.oid, attribute.rfc4514_attribute_name)
        value = attribute.value
        result[key] = value if isinstance(value, str) else value.hex()
    return result


def inspect_certificate(certificate_input: str) -> CertificateDetails:
    """
    解析证书并返回摘要信息。
    :param certificate_input: 证书内容（PEM 文本 或 Base64 编码的 PEM/DER）。
    :raises InvalidRequest: 无法解析证书，或证书使用了不支持的公钥类型。
    """
    certificate = load_certificate(certificate_input)
    try:
        public_key = certificate.public_key()
    except (ValueError, UnsupportedAlgorithm):
        public_key = None

    if isinstance(public_key, rsa.RSAPublicKey):
        key_algorithm, key_size = KeyAlgorithm.RSA, public_key.key_size
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        key_algorithm, key_size = KeyAlgorithm.ECDSA, public_key.curve.key_size
    else:
        raise InvalidRequest(
            [_field_error("certificate", ValidationReason.UNSUPPORTED_VALUE, "不支持的公钥类型")]
        )

    try:
        hash_algorithm = certificate.signature_hash_algorithm
        signature_hash = hash_algorithm.name if hash_algorithm else None
    except UnsupportedAlgorithm:
        signature_hash = None

    return CertificateDetails(
        subject=_name_to_dict(certificate.subject),
        issuer=_name_to_dict(certificate.issuer),
        serial_number=format(certificate.serial_number, "x"),
        not_valid_before=certificate.not_valid_before_utc,
        not_valid_after=certificate.not_valid_after_utc,
        key_algorithm=key_algorithm,
        key_size=key_size,
        signature_hash=signature_hash,
        self_signed=certificate.issuer == certificate.subject,
        signature_valid=_self_signature_valid(certificate),
    )
