import asyncio

import campusnotes.models  # noqa: F401
from campusnotes.database import Base, async_session, engine
from campusnotes.models.chat import ChatMessage, ChatReaction
from campusnotes.models.notification import Notification, NotificationType, RelatedType
from campusnotes.models.user import RoleEnum, User
from campusnotes.routers.auth import token_for


async def async_main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        # Create users across two semesters plus an admin
        u1 = User(email="alice@example.com", full_name="Alice Sharma", semester="3")
        u2 = User(email="bob@example.com", full_name="Bob Mehta", semester="3")
        u3 = User(email="charlie@example.com", full_name="Charlie Rao", semester="4")
        u4 = User(email="admin@example.com", full_name="Dana Admin", semester="3", role=RoleEnum.ADMIN)
        session.add_all([u1, u2, u3, u4])
        await session.flush()

        # Some chatter in the semester room and the general room
        m1 = ChatMessage(room="3", sender_id=u1.id, body="Has anyone got the DBMS unit 2 notes?")
        m2 = ChatMessage(room="general", sender_id=u3.id, body="Welcome everyone!")
        session.add_all([m1, m2])
        await session.flush()

        m3 = ChatMessage(room="3", sender_id=u2.id, body="Uploading them tonight.", reply_to_id=m1.id)
        session.add(m3)
        session.add(ChatReaction(message_id=m1.id, user_id=u2.id, emoji="👍"))

        session.add(Notification(
            recipient_id=u1.id,
            sender_id=u2.id,
            type=NotificationType.POST_REPLY,
            title="New Reply",
            message="Bob Mehta replied to your message",
            related_type=RelatedType.CHAT,
            related_id=m1.id,
        ))

        await session.commit()

        for u in (u1, u2, u3, u4):
            print(f"{u.full_name:<15} semester {u.semester}  token: {token_for(u.id)}")
    print("Database seeded successfully.")

asyncio.run(async_main())
