"""
自签名证书签发的异常定义。

InvalidRequest 继承 ValueError，KeyGenerationError / SigningError 继承 RuntimeError，
路由层据此分别映射为 4xx 与 5xx。
"""

from __future__ import annotations

from typing import List

from .schemas import FieldError


class CertificateError(Exception):
    """证书签发相关错误的基类。"""


class InvalidRequest(CertificateError, ValueError):
    """请求字段校验失败，携带逐字段的错误列表。"""

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        fields = ", ".join(e.field for e in self.errors)
        super().__init__(f"请求校验失败: {fields}")

    @property
    def fields(self) -> List[str]:
        return [e.field for e in self.errors]


class KeyGenerationError(CertificateError, RuntimeError):
    """无法为指定的算法/长度生成密钥。"""


class SigningError(CertificateError, RuntimeError):
    """证书签名失败。"""


class IssuanceTimeout(CertificateError, TimeoutError):
    """签发超过调用方设定的截止时间。"""
