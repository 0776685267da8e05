from clearly import db
from clearly.models import File, Task
from clearly.services.status import invalidate_status


def advance(file_id, expected, new_status, file_changes=None, task_changes=None):
    """Guarded File transition with the mirrored Task update, in the current
    transaction. Returns False (and changes nothing) when the file has already
    moved out of ``expected``."""
    if not File.compare_and_set(file_id, expected, new_status, **(file_changes or {})):
        return False
    Task.mirror(file_id, new_status, **(task_changes or {}))
    return True


def commit_transition(file_id):
    db.session.commit()
    invalidate_status(file_id)
