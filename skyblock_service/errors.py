"""
错误分类
每种错误带有一个封闭的 ErrorKind 标签，调用方按 kind 分支而不是按类型判断。
"""

from enum import Enum
from typing import List, Optional, Sequence


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    TRANSPORT = "transport"
    VALIDATION = "validation"
    MEMBERSHIP = "membership"
    STORE = "store"


class ResolutionError(Exception):
    """解析管线中所有错误的基类"""

    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class NotFoundError(ResolutionError):
    """上游不存在该身份（长期负缓存）"""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, key: str, message: Optional[str] = None):
        super().__init__(message or f"未在上游找到: {key}")
        self.key = key


class TransportError(ResolutionError):
    """上游可达但返回错误状态；status 为 None 表示网络层失败"""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, status: Optional[int] = None, cause: str = ""):
        super().__init__(message)
        self.status = status
        self.cause = cause

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"status": self.status, "cause": self.cause})
        return data


class ValidationError(ResolutionError):
    """上游响应结构不符（从不缓存）"""

    kind = ErrorKind.VALIDATION

    def __init__(self, violations: Sequence[str], message: Optional[str] = None):
        self.violations: List[str] = list(violations)
        super().__init__(message or "; ".join(self.violations))

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["violations"] = self.violations
        return data


class NonexistentProfileError(ValidationError):
    """上游 200 但档案不存在：该 ID 永远无法解析"""

    def __init__(self, profile_id: str, violations: Sequence[str]):
        super().__init__(violations)
        self.profile_id = profile_id


class MembershipError(ResolutionError):
    """父文档有效，但其中找不到目标实体（从不缓存）"""

    kind = ErrorKind.MEMBERSHIP


class PlayerNotInProfileError(MembershipError):
    def __init__(self, identity_id: str, profile_id: str):
        super().__init__(f"玩家 {identity_id} 不在档案 {profile_id} 中")
        self.identity_id = identity_id
        self.profile_id = profile_id


class StoreError(ResolutionError):
    """本地 / 远程存储读写失败（从不缓存，不自动重试）"""

    kind = ErrorKind.STORE
