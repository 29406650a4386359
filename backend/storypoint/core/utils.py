"""
工具函数模块
"""

from typing import Optional
from datetime import datetime


def format_timestamp_with_timezone(timestamp: Optional[datetime]) -> Optional[str]:
    """格式化时间戳，确保包含UTC时区标识符"""
    if not timestamp:
        return None
    if timestamp.tzinfo is not None:
        return timestamp.isoformat()
    # SQLite返回的是无时区的UTC时间，补上'Z'后缀
    return timestamp.isoformat() + 'Z'
