"""
Layer 3 – 数据处理层
用 pydantic 对上游原始载荷做结构校验，拒绝畸形响应进入管线，
并将校验通过的载荷转换为领域模型。
"""

import logging
from typing import Annotated, Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from skyblock_service.errors import ValidationError
from skyblock_service.models.entities import Identity, ProfileDetail, ProfileSummary

logger = logging.getLogger(__name__)

PROFILE_LABELS = (
    "Apple", "Banana", "Blueberry", "Coconut", "Cucumber", "Grapes",
    "Kiwi", "Lemon", "Lime", "Mango", "Orange", "Papaya", "Pear",
    "Peach", "Pineapple", "Pomegranate", "Raspberry", "Strawberry",
    "Tomato", "Watermelon", "Zucchini",
    "Not Allowed To Quit SkyBlock Ever Again",
    "Complain Everyday",
    "Restored",
    "TEST",
)

ProfileLabel = Literal[PROFILE_LABELS]  # type: ignore[valid-type]
UpstreamMode = Literal["ironman", "bingo", "stranded"]
IdentityId = Annotated[str, Field(pattern=r"^[0-9a-fA-F]{32}$")]
MemberId = Annotated[str, Field(pattern=r"^[a-f0-9]{32}$")]


# ── 上游载荷结构 ──────────────────────────────────────────

class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class IdentityPayload(_Payload):
    id: IdentityId
    name: str = Field(min_length=1, max_length=16)


class ProfileSummaryPayload(_Payload):
    profile_id: UUID
    cute_name: ProfileLabel
    game_mode: Optional[UpstreamMode] = None
    selected: bool


class ProfileDetailPayload(_Payload):
    profile_id: UUID
    members: Dict[MemberId, Any]
    game_mode: Optional[UpstreamMode] = None


_profile_list_adapter = TypeAdapter(List[ProfileSummaryPayload])


def join_errors(exc: PydanticValidationError) -> List[str]:
    """逐条保留 pydantic 的违规信息，不做汇总"""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return messages


class ProcessingLayer:
    """数据处理层：上游载荷校验 + 领域模型转换"""

    def to_identity(self, payload: Any) -> Identity:
        try:
            data = IdentityPayload.model_validate(payload)
        except PydanticValidationError as exc:
            logger.error("身份查询响应不符合结构")
            raise ValidationError(join_errors(exc)) from exc
        return Identity(id=data.id.lower(), name=data.name)

    def to_profile_list(self, payload: Any) -> List[ProfileSummary]:
        if payload is None:
            return []
        try:
            items = _profile_list_adapter.validate_python(payload)
        except PydanticValidationError as exc:
            logger.error("档案列表响应不符合结构")
            raise ValidationError(join_errors(exc)) from exc
        return [
            ProfileSummary(
                profile_id=str(item.profile_id),
                label=item.cute_name,
                mode=item.game_mode or "normal",
                is_active=item.selected,
            )
            for item in items
        ]

    def to_profile_detail(self, payload: Any) -> ProfileDetail:
        try:
            data = ProfileDetailPayload.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(join_errors(exc)) from exc
        return ProfileDetail(
            profile_id=str(data.profile_id),
            members=dict(data.members),
            mode=data.game_mode or "normal",
        )


# ── 模块级别单例 ──────────────────────────────────────────
_processing: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processing
    if _processing is None:
        _processing = ProcessingLayer()
    return _processing
