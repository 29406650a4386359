"""
主持人凭证工具
"""

import hashlib
import hmac
import secrets


def generate_token() -> str:
    """生成新的主持人访问令牌"""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """令牌只以哈希形式入库"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_token(token: str, token_hash: str) -> bool:
    if not token or not token_hash:
        return False
    return hmac.compare_digest(hash_token(token), token_hash)
