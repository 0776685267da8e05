from datetime import datetime
from enum import Enum

from clearly import db


class FileStatus(Enum):
    UPLOADED = 'uploaded'
    PROCESSING = 'processing'
    SENT_TO_WORKER = 'sent_to_worker'
    PROCESSED = 'processed'
    FAILED = 'failed'


TERMINAL_FILE_STATUSES = frozenset({FileStatus.PROCESSED, FileStatus.FAILED})


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class File(db.Model):
    __tablename__ = 'files'

    id = db.Column(db.Integer, primary_key=True)
    filename = db.Column(db.String(255), nullable=False, unique=True)
    original_name = db.Column(db.String(255), nullable=False)
    size_bytes = db.Column(db.BigInteger, nullable=False)
    mime_type = db.Column(db.String(100), nullable=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    storage_path = db.Column(db.String(500), nullable=False)
    transcription = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.Enum(FileStatus, native_enum=False, length=32, values_callable=_enum_values),
        default=FileStatus.UPLOADED, nullable=False, index=True
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    owner = db.relationship('User', backref=db.backref('files', lazy=True))
    task = db.relationship('Task', backref='file', uselist=False, lazy=True)
    note = db.relationship('NoteResult', backref='file', uselist=False, lazy=True)

    def __init__(self, filename, original_name, size_bytes, storage_path,
                 mime_type=None, owner_id=None):
        self.filename = filename
        self.original_name = original_name
        self.size_bytes = size_bytes
        self.storage_path = storage_path
        self.mime_type = mime_type
        self.owner_id = owner_id
        self.status = FileStatus.UPLOADED

    @property
    def is_terminal(self):
        return self.status in TERMINAL_FILE_STATUSES

    @property
    def is_audio(self):
        return bool(self.mime_type) and (
            self.mime_type.startswith('audio/') or self.mime_type.startswith('video/')
        )

    @property
    def is_text(self):
        return bool(self.mime_type) and self.mime_type.startswith('text/')

    @classmethod
    def compare_and_set(cls, file_id, expected, new_status, **changes):
        """Move ``status`` to ``new_status`` only if the row is still in one of
        ``expected``. Returns True when this caller won the transition.

        The caller owns the transaction; nothing is committed here.
        """
        values = dict(changes)
        values['status'] = new_status
        values['updated_at'] = datetime.utcnow()
        updated = cls.query.filter(
            cls.id == file_id,
            cls.status.in_(list(expected))
        ).update(values, synchronize_session=False)
        return updated == 1

    def to_dict(self):
        return {
            'id': self.id,
            'filename': self.filename,
            'originalName': self.original_name,
            'fileSize': self.size_bytes,
            'fileType': self.mime_type,
            'ownerId': self.owner_id,
            'status': self.status.value,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<File {self.id} {self.status.value}>'
