"""上传边界适配

历史数据中的文件名曾被按 latin-1 解码存储（UTF-8 字节被逐字节当作单字节字符），
decode_legacy_filename 将其还原为 UTF-8。新上传统一 UTF-8，
该函数仅用于兼容旧客户端，待存量文件名迁移完成后移除。
"""

from typing import NamedTuple

from fastapi import UploadFile


class UploadedFile(NamedTuple):
    """已读取的上传文件"""

    name: str
    content: bytes


def decode_legacy_filename(name: str) -> str:
    """latin-1 误解码的文件名还原为 UTF-8；本身已是正确文本时原样返回"""
    try:
        return name.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return name


async def read_uploads(files: list[UploadFile] | None) -> list[UploadedFile]:
    """读取上传文件内容（跳过空文件名）"""
    uploaded: list[UploadedFile] = []
    for upload in files or []:
        if not upload.filename:
            continue
        content = await upload.read()
        uploaded.append(UploadedFile(decode_legacy_filename(upload.filename), content))
    return uploaded
