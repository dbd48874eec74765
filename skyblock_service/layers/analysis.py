"""
Layer 4 – 指标分析层
从已校验的成员载荷计算派生指标：
  经验 → 等级、等级 + 节点状态 → 令牌预算、原始计数器 → 资源三元组。
纯函数，无缓存、无持久化。
"""

import logging
from bisect import bisect_left
from itertools import accumulate
from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from skyblock_service.errors import ValidationError
from skyblock_service.layers.processing import join_errors
from skyblock_service.models.entities import MemberMetrics, ResourceTriple

logger = logging.getLogger(__name__)

# 每级所需经验（非累计）
LEVEL_XP = [0, 3000, 9000, 25000, 60000, 100000, 150000, 210000, 290000, 400000]
CUMULATIVE_XP = list(accumulate(LEVEL_XP))
MAX_LEVEL = len(CUMULATIVE_XP)

# 按等级的累计令牌奖励
LEVEL_TOKENS = [1, 3, 5, 7, 9, 11, 14, 16, 18, 20]

CORE_NODE = "special_0"
CORE_NODE_BONUS = {1: 1, 5: 1, 7: 1, 10: 2}

RESOURCE_KINDS = ("mithril", "gemstone", "glacite")


class MiningCore(BaseModel):
    model_config = ConfigDict(extra="allow")

    experience: float = 0
    nodes: Dict[str, int] = Field(default_factory=dict)
    powder_mithril: int = 0
    powder_spent_mithril: int = 0
    powder_gemstone: int = 0
    powder_spent_gemstone: int = 0
    powder_glacite: int = 0
    powder_spent_glacite: int = 0


class MemberPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mining_core: MiningCore = Field(default_factory=MiningCore)


def level_from_experience(experience: float) -> int:
    """累计阈值中严格小于 experience 的个数；超出表尾时停在最高等级"""
    return bisect_left(CUMULATIVE_XP, experience)


def core_node_bonus(node_level: int) -> int:
    return sum(bonus for threshold, bonus in CORE_NODE_BONUS.items() if node_level >= threshold)


def budget_for(level: int, node_levels: Mapping[str, int]) -> int:
    base = LEVEL_TOKENS[min(max(level, 0), len(LEVEL_TOKENS) - 1)]
    return base + core_node_bonus(node_levels.get(CORE_NODE, 0) or 0)


def resource_triples(core: Mapping[str, Any]) -> List[ResourceTriple]:
    triples = []
    for kind in RESOURCE_KINDS:
        owned = int(core.get(f"powder_{kind}") or 0)
        spent = int(core.get(f"powder_spent_{kind}") or 0)
        triples.append(ResourceTriple.of(kind, owned, spent))
    return triples


def compute_member_metrics(member: Any) -> MemberMetrics:
    """成员原始载荷 → MemberMetrics"""
    try:
        core = MemberPayload.model_validate(member or {}).mining_core
    except PydanticValidationError as exc:
        raise ValidationError(join_errors(exc)) from exc
    level = level_from_experience(core.experience)
    nodes = dict(core.nodes)
    return MemberMetrics(
        level=level,
        node_levels=nodes,
        resources=resource_triples(core.model_dump()),
        budget=budget_for(level, nodes),
    )
