"""
自签名证书签发服务的业务逻辑层。
此模块封装了核心逻辑，提供更清晰的接口供路由层与命令行调用。
"""

import asyncio
import socket
from typing import Any, Mapping

from loguru import logger

from src.server.config import config
from . import core
from .errors import InvalidRequest, IssuanceTimeout
from .schemas import (
    CertificateDetails,
    CertificateRequest,
    FormDefaults,
    IssuedCertificate,
    KeyAlgorithm,
    ValidationResult,
)


def default_common_name() -> str:
    """
    获取本机对外的 IPv4 地址作为默认 Common Name。
    通过 UDP connect 探测路由（不会实际发送数据包），失败时回退到主机名，再回退到 localhost。
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            address = s.getsockname()[0]
        if address and not address.startswith("127.") and address != "0.0.0.0":
            return address
    except OSError as e:
        logger.debug(f"探测本机 IP 地址失败: {e}")

    hostname = socket.gethostname()
    return hostname or "localhost"


def get_form_defaults() -> FormDefaults:
    """
    表单初始值：配置中的默认值 + 自动探测的 Common Name。
    """
    return FormDefaults(
        common_name=default_common_name(),
        country=config.default_country,
        validity_days=config.default_validity_days,
        key_size=config.default_key_size,
        algorithm=KeyAlgorithm(config.default_algorithm),
    )


def validate_form_service(data: Mapping[str, Any]) -> ValidationResult:
    """
    校验表单数据，不抛出异常。
    :param data: 表单原始数据（camelCase 字段名）。
    :return: 校验结果与逐字段错误。
    """
    try:
        core.parse_request(data)
    except InvalidRequest as e:
        return ValidationResult(valid=False, errors=e.errors)
    return ValidationResult(valid=True)


def issue_certificate_service(req: CertificateRequest) -> IssuedCertificate:
    """
    处理签发证书的业务逻辑。
    :param req: 证书签发请求。
    :return: 三段 PEM。
    :raises InvalidRequest: 请求不合法。
    :raises KeyGenerationError / SigningError: 签发过程失败。
    """
    try:
        return core.issue(req)
    except InvalidRequest as e:
        logger.warning(f"拒绝签发请求: {e}")
        raise


async def issue_certificate_async(
    req: CertificateRequest, timeout: float | None = None
) -> IssuedCertificate:
    """
    在工作线程中签发证书，超过截止时间则放弃结果。
    密钥生成无法中途取消，超时后线程会继续运行到结束，结果被丢弃。
    :param timeout: 截止时间（秒），默认取 config.issue_timeout_seconds。
    :raises IssuanceTimeout: 超过截止时间。
    """
    deadline = config.issue_timeout_seconds if timeout is None else timeout
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(issue_certificate_service, req), timeout=deadline
        )
    except asyncio.TimeoutError as e:
        logger.error(
            f"签发超时 ({deadline}s): {KeyAlgorithm(req.algorithm).value}-{req.key_size}"
        )
        raise IssuanceTimeout(f"证书签发超过 {deadline} 秒") from e


def inspect_certificate_service(certificate: str) -> CertificateDetails:
    """
    解析证书内容并返回摘要。
    :raises InvalidRequest: 无法解析证书。
    """
    return core.inspect_certificate(certificate)
