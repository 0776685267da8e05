from datetime import datetime

from clearly import db


class NoteResult(db.Model):
    """Generated notes for a processed file. Written once, never updated."""
    __tablename__ = 'notes'

    id = db.Column(db.Integer, primary_key=True)
    file_id = db.Column(db.Integer, db.ForeignKey('files.id'), nullable=False, unique=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    note_type = db.Column(db.String(50), nullable=False, default='general')
    content = db.Column(db.JSON, nullable=False)
    prompt_used = db.Column(db.Text, nullable=True)
    model = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __init__(self, file_id, content, note_type='general', owner_id=None,
                 prompt_used=None, model=None):
        self.file_id = file_id
        self.content = content
        self.note_type = note_type
        self.owner_id = owner_id
        self.prompt_used = prompt_used
        self.model = model

    def to_dict(self):
        return {
            'id': self.id,
            'fileId': self.file_id,
            'noteType': self.note_type,
            'content': self.content,
            'model': self.model,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }
