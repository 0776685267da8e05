"""Create pipeline tables and admin user

Revision ID: 4b7e2c91d0a3
Revises:
Create Date: 2026-09-02 10:14:07.318402

"""
from alembic import op
import sqlalchemy as sa
import bcrypt
import os


# revision identifiers, used by Alembic.
revision = '4b7e2c91d0a3'
down_revision = None
branch_labels = None
depends_on = None

FILE_STATUSES = ('uploaded', 'processing', 'sent_to_worker', 'processed', 'failed')
TASK_STATUSES = ('pending', 'sent_to_make', 'completed', 'failed')


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('role', sa.Enum('USER', 'ADMIN', name='userrole'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_table(
        'files',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('original_name', sa.String(length=255), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('mime_type', sa.String(length=100), nullable=True),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('storage_path', sa.String(length=500), nullable=False),
        sa.Column('transcription', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum(*FILE_STATUSES, name='filestatus', native_enum=False, length=32),
                  nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('filename')
    )
    op.create_index('ix_files_owner_id', 'files', ['owner_id'])
    op.create_index('ix_files_status', 'files', ['status'])
    op.create_index('ix_files_created_at', 'files', ['created_at'])

    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('file_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('task_type', sa.String(length=50), nullable=False),
        sa.Column('status', sa.Enum(*TASK_STATUSES, name='taskstatus', native_enum=False, length=32),
                  nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['file_id'], ['files.id']),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('file_id')
    )
    op.create_index('ix_tasks_status', 'tasks', ['status'])

    op.create_table(
        'notes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('file_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('note_type', sa.String(length=50), nullable=False),
        sa.Column('content', sa.JSON(), nullable=False),
        sa.Column('prompt_used', sa.Text(), nullable=True),
        sa.Column('model', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['file_id'], ['files.id']),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('file_id')
    )

    seed_admin()


def seed_admin():
    """Create admin user with configurable credentials"""
    connection = op.get_bind()

    admin_email = os.getenv('ADMIN_EMAIL', 'admin@admin.com')
    admin_password = os.getenv('ADMIN_PASSWORD', 'Admin@123')

    password_hash = bcrypt.hashpw(admin_password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    existing_user = connection.execute(sa.text("""
        SELECT id FROM users WHERE email = :email
    """), {'email': admin_email}).fetchone()

    if existing_user:
        print(f"Admin user '{admin_email}' already exists, skipping...")
        return

    connection.execute(sa.text("""
        INSERT INTO users (email, password_hash, role, created_at)
        VALUES (:email, :password_hash, :role, CURRENT_TIMESTAMP)
    """), {
        'email': admin_email,
        'password_hash': password_hash,
        'role': 'ADMIN',
    })

    print(f"Admin user '{admin_email}' created successfully!")


def downgrade():
    op.drop_table('notes')
    op.drop_index('ix_tasks_status', table_name='tasks')
    op.drop_table('tasks')
    op.drop_index('ix_files_created_at', table_name='files')
    op.drop_index('ix_files_status', table_name='files')
    op.drop_index('ix_files_owner_id', table_name='files')
    op.drop_table('files')
    op.drop_table('users')
    sa.Enum(name='userrole').drop(op.get_bind(), checkfirst=True)
