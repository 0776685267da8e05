from datetime import datetime
from enum import Enum

from clearly import db
from clearly.models.file import FileStatus, _enum_values


class TaskStatus(Enum):
    PENDING = 'pending'
    SENT_TO_MAKE = 'sent_to_make'
    COMPLETED = 'completed'
    FAILED = 'failed'


TASK_STATUS_FOR_FILE = {
    FileStatus.UPLOADED: TaskStatus.PENDING,
    FileStatus.PROCESSING: TaskStatus.PENDING,
    FileStatus.SENT_TO_WORKER: TaskStatus.SENT_TO_MAKE,
    FileStatus.PROCESSED: TaskStatus.COMPLETED,
    FileStatus.FAILED: TaskStatus.FAILED,
}

FILE_PROCESSING = 'file_processing'


class Task(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.Integer, primary_key=True)
    file_id = db.Column(db.Integer, db.ForeignKey('files.id'), nullable=False, unique=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    task_type = db.Column(db.String(50), nullable=False, default=FILE_PROCESSING)
    status = db.Column(
        db.Enum(TaskStatus, native_enum=False, length=32,
                values_callable=_enum_values),
        default=TaskStatus.PENDING, nullable=False, index=True
    )
    attempts = db.Column(db.Integer, default=0, nullable=False)
    max_attempts = db.Column(db.Integer, default=3, nullable=False)
    error_message = db.Column(db.Text, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __init__(self, file_id, owner_id=None, max_attempts=3, task_type=FILE_PROCESSING):
        self.file_id = file_id
        self.owner_id = owner_id
        self.task_type = task_type
        self.status = TaskStatus.PENDING
        self.attempts = 0
        self.max_attempts = max_attempts

    @classmethod
    def mirror(cls, file_id, file_status, **changes):
        """Bring the task row in line with its file's new status"""
        values = dict(changes)
        values['status'] = TASK_STATUS_FOR_FILE[file_status]
        values['updated_at'] = datetime.utcnow()
        return cls.query.filter_by(file_id=file_id, task_type=FILE_PROCESSING).update(
            values, synchronize_session=False
        )

    def to_dict(self):
        return {
            'id': self.id,
            'fileId': self.file_id,
            'ownerId': self.owner_id,
            'taskType': self.task_type,
            'status': self.status.value,
            'attempts': self.attempts,
            'maxAttempts': self.max_attempts,
            'errorMessage': self.error_message,
            'processedAt': self.processed_at.isoformat() if self.processed_at else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<Task {self.id} file={self.file_id} {self.status.value}>'
