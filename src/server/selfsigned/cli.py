"""
命令行签发自签名证书，并把三段 PEM 写入输出目录。

用法: selfsigned-issue --cn 192.168.1.10 --email admin@example.com --out certs
"""

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from src.server.config import config
from . import core, services
from .errors import CertificateError, InvalidRequest
from .schemas import ALLOWED_KEY_SIZES, IssuedCertificate, KeyAlgorithm


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="selfsigned-issue",
        description="Generate an RSA/ECDSA key pair and a self-signed X.509 certificate.",
    )
    parser.add_argument("--cn", "--common-name", dest="common_name", default=None,
                        help="Common Name (default: local IP address)")
    parser.add_argument("--org", dest="organization", default="")
    parser.add_argument("--ou", dest="organizational_unit", default="")
    parser.add_argument("--locality", default="")
    parser.add_argument("--state", default="")
    parser.add_argument("--country", default=None, help="two-letter country code")
    parser.add_argument("--email", default="")
    parser.add_argument("--days", dest="validity_days", default=None)
    parser.add_argument("--key-size", dest="key_size", default=None,
                        help=f"one of {', '.join(str(s) for s in ALLOWED_KEY_SIZES)}")
    parser.add_argument("--algorithm", default=None,
                        choices=[a.value for a in KeyAlgorithm])
    parser.add_argument("--out", default=".", help="output directory")
    parser.add_argument("--force", action="store_true", help="overwrite existing files")
    return parser


def write_artifacts(issued: IssuedCertificate, out_dir: Path, force: bool = False) -> List[Path]:
    """
    把证书、私钥、公钥写入 out_dir，私钥文件权限为 0600。
    :raises FileExistsError: 目标文件已存在且未指定 force。
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    targets = [
        (out_dir / config.certificate_filename, issued.certificate_pem),
        (out_dir / config.private_key_filename, issued.private_key_pem),
        (out_dir / config.public_key_filename, issued.public_key_pem),
    ]
    if not force:
        for path, _ in targets:
            if path.exists():
                raise FileExistsError(f"文件已存在: {path}")

    private_path = out_dir / config.private_key_filename
    for path, content in targets:
        if path == private_path:
            _write_private(path, content)
        else:
            path.write_text(content, encoding="ascii")
    return [path for path, _ in targets]


def _write_private(path: Path, content: str) -> None:
    """以 0600 创建私钥文件；覆盖已有文件时先收紧权限再写入内容。"""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.fchmod(fd, 0o600)
    with os.fdopen(fd, "w", encoding="ascii") as f:
        f.write(content)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    data = {
        "commonName": args.common_name if args.common_name is not None else services.default_common_name(),
        "organization": args.organization,
        "organizationalUnit": args.organizational_unit,
        "locality": args.locality,
        "state": args.state,
        "country": args.country if args.country is not None else config.default_country,
        "email": args.email,
        "validityDays": args.validity_days if args.validity_days is not None else config.default_validity_days,
        "keySize": args.key_size if args.key_size is not None else config.default_key_size,
        "algorithm": args.algorithm or config.default_algorithm,
    }

    try:
        request = core.parse_request(data)
        issued = services.issue_certificate_service(request)
    except InvalidRequest as e:
        for err in e.errors:
            print(f"{err.field}: {err.message} ({err.reason.value})", file=sys.stderr)
        return 2
    except CertificateError as e:
        logger.error(f"证书签发失败: {e}")
        return 1

    try:
        paths = write_artifacts(issued, Path(args.out), force=args.force)
    except (FileExistsError, OSError) as e:
        logger.error(f"写入文件失败: {e}")
        return 1

    for path in paths:
        print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
