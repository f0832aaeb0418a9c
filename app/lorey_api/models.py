"""SQLAlchemy database models for generated stories."""
from datetime import datetime, timezone
from uuid import uuid4
import sqlite3

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite connections for better concurrency."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute("PRAGMA busy_timeout=15000;")
        cursor.close()


def utcnow():
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def new_story_id():
    return uuid4().hex


class Story(db.Model):
    """A finalized story document (title, outcomes and reconciled paragraphs)."""
    __tablename__ = 'stories'

    id = db.Column(db.String(32), primary_key=True, default=new_story_id)
    user_id = db.Column(db.String(64), index=True, nullable=True)
    title = db.Column(db.String(255), nullable=False)
    universe = db.Column(db.String(120), nullable=False)
    story_data = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f'<Story {self.id} {self.title!r}>'

    @property
    def paragraphs(self):
        data = self.story_data or {}
        story = data.get('story')
        return story if isinstance(story, list) else []

    def set_image_url(self, index, image_url):
        """Attach a generated image to one paragraph.

        The JSON column is reassigned as a new dict so SQLAlchemy sees the change.
        """
        data = dict(self.story_data or {})
        story = [dict(unit) if isinstance(unit, dict) else unit for unit in data.get('story') or []]
        story[index]['imageUrl'] = image_url
        data['story'] = story
        self.story_data = data

    def to_summary(self):
        """Listing view without the paragraph payload."""
        return {
            'id': self.id,
            'title': self.title,
            'universe': self.universe,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def to_dict(self):
        """Convert story to dictionary."""
        payload = self.to_summary()
        payload['user_id'] = self.user_id
        payload['story_data'] = self.story_data
        return payload
