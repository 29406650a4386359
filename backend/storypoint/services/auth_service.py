"""
主持人身份服务
"""

import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from storypoint.core.errors import ConflictError, ForbiddenError
from storypoint.core.security import generate_token, hash_token, verify_token
from storypoint.models.user import User

logger = logging.getLogger(__name__)


class AuthService:
    """主持人账号与凭证校验"""

    def __init__(self, db: Session):
        self.db = db

    def register_host(self, email: str) -> Tuple[User, str]:
        """创建主持人账号，返回账号和明文令牌（只在此时出现一次）"""
        if self.db.query(User).filter(User.email == email).first():
            raise ConflictError("Email already registered")

        token = generate_token()
        user = User(email=email, token_hash=hash_token(token))
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"已创建主持人账号 {user.id}")
        return user, token

    def host_for_token(self, token: Optional[str]) -> User:
        """根据Bearer令牌查找主持人"""
        if not token:
            raise ForbiddenError("Invalid or expired token")
        user = self.db.query(User).filter(User.token_hash == hash_token(token)).first()
        if user is None:
            raise ForbiddenError("Invalid or expired token")
        return user

    def authenticate_host(self, host_id: int, credential: str) -> User:
        """校验WebSocket中主持人提交的身份"""
        user = self.db.get(User, host_id)
        if user is None or not verify_token(credential, user.token_hash):
            raise ForbiddenError("Authentication failed")
        return user
