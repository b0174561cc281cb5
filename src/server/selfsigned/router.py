"""
自签名证书签发服务的 FastAPI 路由定义。
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException

from . import core, services
from .errors import InvalidRequest, IssuanceTimeout, KeyGenerationError, SigningError
from .schemas import (
    CertificateDetails,
    FormDefaults,
    InspectRequest,
    IssuedCertificate,
    ValidationResult,
)

router = APIRouter(prefix="/certificates", tags=["Self-signed Certificates"])


def _invalid_request_detail(e: InvalidRequest) -> Dict[str, Any]:
    return {
        "message": str(e),
        "errors": [err.model_dump(by_alias=True, mode="json") for err in e.errors],
    }


@router.get("/defaults", response_model=FormDefaults)
async def get_defaults() -> FormDefaults:
    """
    获取表单初始值（包括自动探测的 Common Name）。
    """
    return services.get_form_defaults()


@router.post("/validate", response_model=ValidationResult)
async def validate_form(data: Dict[str, Any] = Body(...)) -> ValidationResult:
    """
    逐字段校验表单，不签发证书。
    """
    return services.validate_form_service(data)


@router.post("/issue", response_model=IssuedCertificate)
async def issue_certificate(data: Dict[str, Any] = Body(...)) -> IssuedCertificate:
    """
    签发自签名证书，返回私钥、公钥与证书的 PEM 文本。
    类型错误与字段错误一样返回 400；密钥生成在工作线程中执行，不阻塞事件循环。
    """
    try:
        req = core.parse_request(data)
        return await services.issue_certificate_async(req)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=_invalid_request_detail(e))
    except IssuanceTimeout as e:
        raise HTTPException(status_code=504, detail=str(e))
    except (KeyGenerationError, SigningError) as e:
        raise HTTPException(status_code=500, detail=f"证书签发失败: {str(e)}")


@router.post("/inspect", response_model=CertificateDetails)
async def inspect_certificate(req: InspectRequest) -> CertificateDetails:
    """
    客户端上传证书内容，返回主题、有效期、密钥与签名信息。
    """
    try:
        return services.inspect_certificate_service(req.certificate)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=_invalid_request_detail(e))
