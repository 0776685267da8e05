import logging
from datetime import datetime, timedelta

from flask_apscheduler import APScheduler

logger = logging.getLogger(__name__)

# Create global scheduler instance
scheduler = APScheduler()

STUCK_FILE_MESSAGE = 'Processing was interrupted before completion'

def init_scheduler(app):
    """Initialize the scheduler with Flask app"""
    scheduler.init_app(app)
    scheduler.start()

    scheduler.add_job(
        id='pipeline_maintenance',
        func=lambda: run_maintenance_with_context(app),
        trigger='interval',
        minutes=app.config['MAINTENANCE_INTERVAL_MINUTES'],
        replace_existing=True
    )

    logger.info('Flask-APScheduler started successfully')

def run_maintenance_with_context(app):
    """Run maintenance with proper app context"""
    with app.app_context():
        run_maintenance(app)

def run_maintenance(app):
    """Sweep stale chunk sessions and fail files whose processing never finished"""
    from clearly.storage import get_chunk_store

    removed, restored = get_chunk_store().sweep_stale(
        max_age_seconds=app.config['STALE_UPLOAD_HOURS'] * 3600
    )
    failed = fail_stuck_files(timedelta(minutes=app.config['STUCK_PROCESSING_MINUTES']))
    if removed or restored or failed:
        logger.info('Maintenance: removed %d stale sessions, restored %d claims, failed %d stuck files',
                    removed, restored, failed)
    return removed, restored, failed

def fail_stuck_files(max_age, now=None):
    """Move files stuck in uploaded/processing to failed.

    sent_to_worker files are left alone; only a worker callback moves them.
    """
    from clearly import db
    from clearly.models import File, FileStatus
    from clearly.services.transitions import advance, commit_transition

    cutoff = (now or datetime.utcnow()) - max_age
    waiting = {FileStatus.UPLOADED, FileStatus.PROCESSING}
    stuck_ids = [
        row.id for row in File.query.with_entities(File.id).filter(
            File.status.in_(list(waiting)),
            File.updated_at < cutoff
        ).all()
    ]

    failed = 0
    for file_id in stuck_ids:
        try:
            if advance(file_id, waiting, FileStatus.FAILED,
                       task_changes={'error_message': STUCK_FILE_MESSAGE}):
                commit_transition(file_id)
                failed += 1
                logger.warning('File %s was stuck; marked failed', file_id)
            else:
                db.session.rollback()
        except Exception as e:
            db.session.rollback()
            logger.error('Could not fail stuck file %s: %s', file_id, e)
    return failed
