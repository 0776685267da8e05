import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from clearly import db
from clearly.errors import InvalidCallbackState, UnknownFile
from clearly.models import File, FileStatus, NoteResult
from clearly.schemas import Failure, Success
from clearly.services.transitions import advance, commit_transition

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    file_id: int
    status: str
    applied: bool
    duplicate: bool = False

    def to_dict(self):
        return {
            'fileId': self.file_id,
            'status': self.status,
            'applied': self.applied,
            'duplicate': self.duplicate,
        }


class CompletionReconciler:
    """Applies the external worker's completion callback to a File/Task pair.

    Delivery is at-least-once, so every callback is checked against the rows
    before anything is written: a terminal file turns the callback into a
    no-op, and the sent_to_worker -> terminal move is a compare-and-set so
    only one of several concurrent deliveries can win.
    """

    def apply_callback(self, file_id, outcome):
        file = db.session.get(File, file_id)
        if file is None:
            logger.warning('Callback for unknown file %s rejected', file_id)
            raise UnknownFile(f'File {file_id} not found')

        if file.is_terminal:
            logger.info('Duplicate callback for file %s ignored (already %s)',
                        file_id, file.status.value)
            return ReconcileResult(file_id, file.status.value, applied=False, duplicate=True)

        if file.status != FileStatus.SENT_TO_WORKER:
            logger.warning('Callback for file %s rejected: status is %s',
                           file_id, file.status.value)
            raise InvalidCallbackState(
                f'File {file_id} is {file.status.value}, not awaiting a worker result',
                status=file.status.value,
            )

        try:
            if isinstance(outcome, Success):
                won = self._apply_success(file, outcome)
            elif isinstance(outcome, Failure):
                won = self._apply_failure(file, outcome)
            else:
                raise TypeError(f'Unsupported callback outcome: {outcome!r}')
        except IntegrityError:
            # A concurrent delivery inserted the NoteResult first.
            db.session.rollback()
            won = False

        if not won:
            db.session.rollback()
            current = db.session.get(File, file_id)
            logger.info('Concurrent callback for file %s lost the race; treated as duplicate', file_id)
            return ReconcileResult(file_id, current.status.value, applied=False, duplicate=True)

        commit_transition(file_id)
        status = FileStatus.PROCESSED if isinstance(outcome, Success) else FileStatus.FAILED
        logger.info('Callback applied to file %s: %s', file_id, status.value)
        return ReconcileResult(file_id, status.value, applied=True)

    def _apply_success(self, file, outcome):
        # The note must exist before any reader can observe "processed".
        db.session.add(NoteResult(
            file_id=file.id,
            owner_id=file.owner_id,
            content=outcome.note_content,
            note_type=outcome.note_type,
            model='external-worker',
        ))
        db.session.flush()
        return advance(
            file.id, {FileStatus.SENT_TO_WORKER}, FileStatus.PROCESSED,
            task_changes={'processed_at': datetime.utcnow(), 'error_message': None},
        )

    def _apply_failure(self, file, outcome):
        return advance(
            file.id, {FileStatus.SENT_TO_WORKER}, FileStatus.FAILED,
            task_changes={'error_message': outcome.message},
        )
