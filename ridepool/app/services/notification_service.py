"""
Notification Service.

In-app notification rows. Push delivery is out of scope; clients poll.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, desc
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from ridepool.app.models.notification import Notification, NotificationType
from ridepool.app.models.user import User
from ridepool.app.models.enums import UserRole


class NotificationService:
    
    @staticmethod
    async def notify_admins(
        db: AsyncSession,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """Notify every active administrator. Returns the number of notifications created."""
        result = await db.execute(
            select(User.id).where(User.role == UserRole.ADMIN, User.is_active == True)
        )
        admin_ids = result.scalars().all()
        
        notifications = [
            Notification(
                user_id=admin_id,
                title=title,
                message=message,
                type=type,
                metadata_payload=metadata
            )
            for admin_id in admin_ids
        ]
        
        if notifications:
            db.add_all(notifications)
            
        return len(notifications)

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """Mark one of the user's notifications read. False if it is not theirs."""
        result = await db.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        return result.rowcount > 0

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50
    ) -> List[Notification]:
        """Newest first."""
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read == False)
        result = await db.execute(
            query.order_by(desc(Notification.created_at), desc(Notification.id)).limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: int) -> int:
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read == False)
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        return result.rowcount
