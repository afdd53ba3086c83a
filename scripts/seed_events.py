import asyncio

from sqlalchemy import select

from devevent.config import Settings
from devevent.connection import ConnectionManager
from devevent.models.event import Event, slugify

SAMPLE_EVENTS = [
    dict(
        title="React Conf 2026",
        overview="Two days of talks on the future of React.",
        description="Core team updates, community talks and hands-on workshops.",
        organizer="React Community",
        audience="Frontend developers",
        venue="Moscone Center",
        location="San Francisco, CA",
        date="2026-05-14",
        time="09:00",
        mode="hybrid",
        image="https://res.cloudinary.com/demo/image/upload/sample.jpg",
        tags=["react", "frontend"],
        agenda=["Keynote", "Server components deep dive", "Lightning talks"],
    ),
    dict(
        title="PyData Remote Meetup",
        overview="An evening of data tooling talks.",
        description="Short talks on dataframes, notebooks and deployment.",
        organizer="PyData",
        audience="Data engineers and scientists",
        venue="Online",
        location="Worldwide",
        date="2026-06-02",
        time="18:30",
        mode="online",
        image="https://res.cloudinary.com/demo/image/upload/sample.jpg",
        tags=["python", "data"],
        agenda=["Welcome", "Talks", "Q&A"],
    ),
]


async def main() -> None:
    """Create tables and insert a few sample events that are not there yet."""

    settings = Settings.from_env()
    connections = ConnectionManager(
        settings.database_url,
        connect_timeout=settings.db_connect_timeout,
        socket_timeout=settings.db_socket_timeout,
    )
    try:
        async with connections.session() as db:
            for payload in SAMPLE_EVENTS:
                slug = slugify(payload["title"])
                exists = (await db.execute(select(Event.id).where(Event.slug == slug))).first()
                if exists is None:
                    db.add(Event(slug=slug, **payload))
            await db.commit()
    finally:
        await connections.close()
    print("Seeded sample events.")


if __name__ == "__main__":
    asyncio.run(main())
