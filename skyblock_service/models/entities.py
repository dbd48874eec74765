"""领域模型：身份、档案、成员派生指标"""

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

GameMode = Literal["normal", "ironman", "bingo", "stranded"]


class _Frozen(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Identity(_Frozen):
    """玩家身份，按 id 唯一"""
    id: str
    name: str


class ProfileSummary(_Frozen):
    profile_id: str
    label: str
    mode: GameMode = "normal"
    is_active: bool = False


class ProfileDetail(_Frozen):
    profile_id: str
    members: Dict[str, Any] = Field(default_factory=dict)
    mode: GameMode = "normal"


class ResourceTriple(_Frozen):
    kind: str
    owned: int
    consumed_elsewhere: int
    total: int

    @classmethod
    def of(cls, kind: str, owned: int, consumed_elsewhere: int) -> "ResourceTriple":
        return cls(
            kind=kind,
            owned=owned,
            consumed_elsewhere=consumed_elsewhere,
            total=owned + consumed_elsewhere,
        )


class MemberMetrics(_Frozen):
    level: int
    node_levels: Dict[str, int] = Field(default_factory=dict)
    resources: List[ResourceTriple] = Field(default_factory=list)
    budget: int
