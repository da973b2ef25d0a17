"""附件文件存储 -- 本地文件系统实现

核心只保存返回的存储引用与原始文件名，从不解析文件内容。
存储引用为相对于附件根目录的路径：<task_id>/<ULID><suffix>。
"""

import hashlib
from pathlib import Path, PurePosixPath

from ulid import ULID


def compute_hash_and_size(content: bytes) -> tuple[str, int]:
    """计算 SHA-256 hash 和内容大小

    Returns:
        (sha256_hex, size_bytes) 元组
    """
    return hashlib.sha256(content).hexdigest(), len(content)


class LocalAttachmentStore:
    """附件存储的本地文件系统实现"""

    def __init__(self, attachments_dir: Path) -> None:
        self._attachments_dir = attachments_dir

    @property
    def root(self) -> Path:
        return self._attachments_dir

    def put(self, task_id: str, filename: str, content: bytes) -> str:
        """写入附件文件

        Args:
            task_id: 所属任务 ID（用作子目录）
            filename: 原始文件名（仅取扩展名）
            content: 文件内容

        Returns:
            存储引用
        """
        suffix = PurePosixPath(filename).suffix[:16]
        storage_ref = f"{task_id}/{ULID()}{suffix}"
        file_path = self._resolve(storage_ref)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(content)
        return storage_ref

    def get(self, storage_ref: str) -> bytes | None:
        """读取附件内容，不存在时返回 None"""
        file_path = self._resolve(storage_ref)
        if not file_path.is_file():
            return None
        return file_path.read_bytes()

    def delete(self, storage_ref: str) -> None:
        """删除附件文件；任务目录为空时一并移除"""
        file_path = self._resolve(storage_ref)
        file_path.unlink(missing_ok=True)
        task_dir = file_path.parent
        if (
            task_dir != self._attachments_dir.resolve()
            and task_dir.is_dir()
            and not any(task_dir.iterdir())
        ):
            task_dir.rmdir()

    def _resolve(self, storage_ref: str) -> Path:
        """解析存储引用，拒绝越出附件根目录的路径"""
        root = self._attachments_dir.resolve()
        file_path = (root / storage_ref).resolve()
        if root not in file_path.parents:
            raise ValueError(f"Invalid storage reference: {storage_ref}")
        return file_path
