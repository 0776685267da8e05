# Services package
from .scheduler import init_scheduler, run_maintenance, fail_stuck_files
from .status import Requester, ANONYMOUS, can_view, get_status, invalidate_status
from .finalizer import UploadFinalizer, UploadMetadata, allowed_file, guess_mime_type
from .dispatcher import ProcessingDispatcher, DispatchResult
from .reconciler import CompletionReconciler, ReconcileResult
