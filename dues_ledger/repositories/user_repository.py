from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dues_ledger.core.exceptions import ConflictError
from dues_ledger.models.base import utcnow
from dues_ledger.models.role import UserRole
from dues_ledger.models.user import User


class UserRepository:
    """Repository for User (principal) operations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: int) -> User | None:
        """Get user by internal ID"""
        return await self.db.get(User, user_id)

    async def get_by_username(self, username: str) -> User | None:
        """Get user by username ('sub' claim)"""
        return await self.db.scalar(select(User).where(User.username == username))

    async def get_or_create(
        self, username: str, role: UserRole = UserRole.ADMIN, email: str | None = None
    ) -> User:
        """
        Get user by username or create if doesn't exist.

        This is called automatically when a principal makes their first API
        request with a valid JWT. Two first requests racing on the same
        username both end up with the single persisted row.

        Args:
            username: 'sub' claim
            role: Role claim used only when the user is created
            email: Optional email

        Returns:
            User object (either existing or newly created)
        """
        user = await self.get_by_username(username)
        if user:
            return user

        user = User(username=username, role=role, email=email)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            user = await self.get_by_username(username)
            if user is None:
                raise
            return user

        await self.db.refresh(user)
        return user

    async def create(
        self,
        username: str,
        role: UserRole,
        tenant_id: int | None = None,
        email: str | None = None,
    ) -> User:
        """
        Create a principal.

        Raises:
            ConflictError: If username or email is already registered
        """
        user = User(username=username, role=role, tenant_id=tenant_id, email=email)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError("Username or email is already registered") from e

        await self.db.refresh(user)
        return user

    async def assign_tenant(self, user_id: int, tenant_id: int) -> User | None:
        """
        Bind an unbound user to a tenant.

        Conditional update: only applies while tenant_id is still NULL, so a
        concurrent assignment is never overwritten. Returns the re-read row.
        """
        await self.db.execute(
            update(User)
            .where(User.id == user_id, User.tenant_id.is_(None))
            .values(tenant_id=tenant_id, updated_at=utcnow())
        )
        await self.db.commit()

        user = await self.db.get(User, user_id, populate_existing=True)
        return user

    async def touch_last_login(self, user: User) -> None:
        user.last_login_at = utcnow()
        await self.db.commit()

    async def delete(self, user: User) -> None:
        await self.db.delete(user)
        await self.db.commit()
