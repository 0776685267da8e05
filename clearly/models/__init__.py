# Models package 
from .auth import User, UserRole
from .file import File, FileStatus, TERMINAL_FILE_STATUSES
from .task import Task, TaskStatus, TASK_STATUS_FOR_FILE
from .note import NoteResult
