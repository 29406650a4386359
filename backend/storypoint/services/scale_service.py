"""
打分刻度服务

把会话的刻度配置解析为升序整数序列，并把一组投票换算为刻度上的估算值。
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Union

logger = logging.getLogger(__name__)

FIBONACCI_SCALE: List[int] = [1, 2, 3, 5, 8, 13, 21, 34, 55, 89]
MAX_SCALE_SIZE = 100

SCALE_FIBONACCI = "fibonacci"
SCALE_CUSTOM = "custom"


@dataclass
class ScaleConfig:
    """刻度配置：内置斐波那契，或调用方提供的自定义取值"""
    kind: str = SCALE_FIBONACCI
    custom_values: Union[str, Sequence[Union[int, str]], None] = field(default=None)


def _split_custom_values(raw: Union[str, Sequence[Union[int, str]], None]) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return raw.split(",")
    return [str(item) for item in raw]


def resolve(config: ScaleConfig) -> List[int]:
    """解析刻度配置，返回升序序列"""
    if config.kind != SCALE_CUSTOM:
        return list(FIBONACCI_SCALE)

    values = set()
    for entry in _split_custom_values(config.custom_values):
        entry = entry.strip()
        # 只保留正整数
        if not (entry.isascii() and entry.isdigit()):
            continue
        number = int(entry)
        if number > 0:
            values.add(number)

    if not values:
        logger.info("自定义刻度没有有效取值，回退到斐波那契刻度")
        return list(FIBONACCI_SCALE)

    return sorted(values)[:MAX_SCALE_SIZE]


def estimate(votes: Iterable[int], scale: Sequence[int]) -> int:
    """
    计算最终估算：取平均值后向上取到刻度上的下一个值

    没有投票时返回0；平均值超过所有刻度时返回刻度最大值。
    例如 [3, 5, 8] 的平均值约为5.33，在斐波那契刻度上得到8。
    """
    values = list(votes)
    if not values:
        return 0

    total = sum(values)
    count = len(values)
    ordered = sorted(scale)
    for candidate in ordered:
        # candidate >= total / count，用整数比较避免浮点误差
        if candidate * count >= total:
            return candidate
    return ordered[-1]


def parse_stored_scale(raw: str) -> List[int]:
    """读取会话中以JSON保存的刻度"""
    if not raw:
        return list(FIBONACCI_SCALE)
    try:
        values = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"会话刻度无法解析，使用斐波那契刻度: {raw!r}")
        return list(FIBONACCI_SCALE)
    if not isinstance(values, list) or not values:
        return list(FIBONACCI_SCALE)
    return [int(value) for value in values]
