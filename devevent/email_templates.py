import os
from html import escape


def event_link(slug: str) -> str:
    frontend = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
    return f"{frontend}/events/{slug}"


def booking_email_text(title: str, date: str, time: str, location: str, link: str) -> str:
    return (
        f"You're registered for {title}.\n"
        f"When: {date} {time}\n"
        f"Where: {location}\n"
        f"Details: {link}"
    )


def booking_email_html(title: str, date: str, time: str, location: str, link: str) -> str:
    return f"""
      <p>You're registered for <strong>{escape(title)}</strong>.</p>
      <p>{escape(date)} {escape(time)} &middot; {escape(location)}</p>
      <p><a href="{escape(link, quote=True)}">View the event</a></p>
      <p>If you didn't sign up for this event, you can safely ignore this email.</p>
    """
