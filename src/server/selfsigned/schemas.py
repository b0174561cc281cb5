"""
自签名证书签发服务的数据模型定义。

对外（HTTP / 表单）使用 camelCase 字段名，Python 内部使用 snake_case，两者均可用于构造。
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError
from pydantic.alias_generators import to_camel

ALLOWED_KEY_SIZES: Tuple[int, ...] = (1024, 2048, 4096)


class KeyAlgorithm(str, Enum):
    RSA = "RSA"
    ECDSA = "ECDSA"


class ValidationReason(str, Enum):
    """字段校验失败的机器可读原因。"""

    REQUIRED = "required"
    INVALID_FORMAT = "invalid_format"
    NOT_POSITIVE = "not_positive"
    NOT_AN_INTEGER = "not_an_integer"
    UNSUPPORTED_VALUE = "unsupported_value"
    TOO_LONG = "too_long"
    OUT_OF_RANGE = "out_of_range"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CertificateRequest(_CamelModel):
    """
    证书签发请求。字段含义与原表单一致，语义校验由 core.validate_request 负责。
    """

    model_config = ConfigDict(frozen=True)

    common_name: str
    organization: str = ""
    organizational_unit: str = ""
    locality: str = ""
    state: str = ""
    country: str
    email: str
    validity_days: int
    key_size: int
    algorithm: KeyAlgorithm = KeyAlgorithm.RSA

    @field_validator("validity_days", "key_size", mode="before")
    @classmethod
    def reject_bool(cls, value: Any) -> Any:
        """JSON 的 true/false 不是整数，宽松模式下会被当作 1/0。"""
        if isinstance(value, bool):
            raise PydanticCustomError("bool_not_int", "Input should be a valid integer, not a boolean")
        return value


class IssuedCertificate(_CamelModel):
    """
    签发结果：私钥、公钥与证书三段 PEM 文本。
    """

    model_config = ConfigDict(frozen=True)

    private_key_pem: str
    public_key_pem: str
    certificate_pem: str


class FieldError(_CamelModel):
    """单个字段的校验失败。"""

    field: str = Field(description="失败字段（camelCase）")
    reason: ValidationReason
    message: str


class ValidationResult(_CamelModel):
    valid: bool
    errors: List[FieldError] = Field(default_factory=list)


class FormDefaults(_CamelModel):
    """表单初始值。"""

    common_name: str
    country: str
    validity_days: int
    key_size: int
    algorithm: KeyAlgorithm
    key_sizes: List[int] = Field(default_factory=lambda: list(ALLOWED_KEY_SIZES))
    algorithms: List[KeyAlgorithm] = Field(default_factory=lambda: list(KeyAlgorithm))


class InspectRequest(_CamelModel):
    """
    客户端上传证书内容（PEM 文本、Base64 PEM 或 Base64 DER）。
    """

    certificate: str


class CertificateDetails(_CamelModel):
    """
    解析证书得到的摘要信息。
    """

    subject: Dict[str, str]
    issuer: Dict[str, str]
    serial_number: str = Field(description="十六进制序列号")
    not_valid_before: datetime
    not_valid_after: datetime
    key_algorithm: KeyAlgorithm
    key_size: int
    signature_hash: str | None = None
    self_signed: bool
    signature_valid: bool
