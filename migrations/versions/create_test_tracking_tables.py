"""create projects, test cases, test run sessions and test executions

Revision ID: create_test_tracking_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_test_tracking_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'projects',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('color', sa.String(length=20), nullable=True),
        sa.Column('icon', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_projects_user_id', 'projects', ['user_id'])
    op.create_index('ix_projects_user_name', 'projects', ['user_id', 'name'])

    op.create_table(
        'test_cases',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('project_id', sa.String(length=36), nullable=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('test_type', sa.String(length=50), nullable=False),
        sa.Column('priority', sa.Enum('LOW', 'MEDIUM', 'HIGH', 'CRITICAL', name='testcasepriority'), nullable=False),
        sa.Column('preconditions', sa.Text(), nullable=True),
        sa.Column('test_steps', sa.JSON(), nullable=False),
        sa.Column('expected_result', sa.Text(), nullable=False),
        sa.Column('is_edge_case', sa.Boolean(), nullable=False),
        sa.Column('status', sa.Enum('DRAFT', 'ACTIVE', 'ARCHIVED', name='testcasestatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_test_cases_user_id', 'test_cases', ['user_id'])
    op.create_index('ix_test_cases_project_id', 'test_cases', ['project_id'])
    op.create_index('ix_test_cases_status', 'test_cases', ['status'])
    op.create_index('ix_test_cases_user_created', 'test_cases', ['user_id', 'created_at'])

    op.create_table(
        'test_run_sessions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column(
            'status',
            sa.Enum('PLANNED', 'IN_PROGRESS', 'PAUSED', 'COMPLETED', 'ABORTED', name='sessionstatus'),
            nullable=False
        ),
        sa.Column('environment', sa.String(length=100), nullable=True),
        sa.Column('test_case_ids', sa.JSON(), nullable=False),
        sa.Column('planned_start', sa.DateTime(), nullable=True),
        sa.Column('actual_start', sa.DateTime(), nullable=True),
        sa.Column('actual_end', sa.DateTime(), nullable=True),
        sa.Column('test_cases_total', sa.Integer(), nullable=False),
        sa.Column('test_cases_completed', sa.Integer(), nullable=False),
        sa.Column('progress_percentage', sa.Integer(), nullable=False),
        sa.Column('passed_cases', sa.Integer(), nullable=False),
        sa.Column('failed_cases', sa.Integer(), nullable=False),
        sa.Column('blocked_cases', sa.Integer(), nullable=False),
        sa.Column('skipped_cases', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_test_run_sessions_user_id', 'test_run_sessions', ['user_id'])
    op.create_index('ix_test_run_sessions_status', 'test_run_sessions', ['status'])
    op.create_index('ix_test_run_sessions_user_status', 'test_run_sessions', ['user_id', 'status'])

    op.create_table(
        'test_executions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('test_case_id', sa.String(length=36), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=True),
        sa.Column('executed_by', sa.String(length=36), nullable=True),
        sa.Column('execution_status', sa.String(length=20), nullable=False),
        sa.Column('completed_steps', sa.JSON(), nullable=False),
        sa.Column('failed_steps', sa.JSON(), nullable=False),
        sa.Column('execution_notes', sa.Text(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('test_environment', sa.String(length=100), nullable=True),
        sa.Column('browser', sa.String(length=100), nullable=True),
        sa.Column('os_version', sa.String(length=100), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['test_case_id'], ['test_cases.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['session_id'], ['test_run_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('test_case_id', 'session_id', name='uq_test_executions_case_session')
    )
    op.create_index('ix_test_executions_test_case_id', 'test_executions', ['test_case_id'])
    op.create_index('ix_test_executions_session_id', 'test_executions', ['session_id'])
    op.create_index('ix_test_executions_executed_by', 'test_executions', ['executed_by'])
    op.create_index('ix_test_executions_execution_status', 'test_executions', ['execution_status'])
    op.create_index(
        'uq_test_executions_unscoped_case',
        'test_executions',
        ['test_case_id'],
        unique=True,
        postgresql_where=sa.text('session_id IS NULL'),
        sqlite_where=sa.text('session_id IS NULL')
    )


def downgrade():
    op.drop_index('uq_test_executions_unscoped_case', table_name='test_executions')
    op.drop_index('ix_test_executions_execution_status', table_name='test_executions')
    op.drop_index('ix_test_executions_executed_by', table_name='test_executions')
    op.drop_index('ix_test_executions_session_id', table_name='test_executions')
    op.drop_index('ix_test_executions_test_case_id', table_name='test_executions')
    op.drop_table('test_executions')

    op.drop_index('ix_test_run_sessions_user_status', table_name='test_run_sessions')
    op.drop_index('ix_test_run_sessions_status', table_name='test_run_sessions')
    op.drop_index('ix_test_run_sessions_user_id', table_name='test_run_sessions')
    op.drop_table('test_run_sessions')
    sa.Enum(name='sessionstatus').drop(op.get_bind(), checkfirst=True)

    op.drop_index('ix_test_cases_user_created', table_name='test_cases')
    op.drop_index('ix_test_cases_status', table_name='test_cases')
    op.drop_index('ix_test_cases_project_id', table_name='test_cases')
    op.drop_index('ix_test_cases_user_id', table_name='test_cases')
    op.drop_table('test_cases')
    sa.Enum(name='testcasestatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='testcasepriority').drop(op.get_bind(), checkfirst=True)

    op.drop_index('ix_projects_user_name', table_name='projects')
    op.drop_index('ix_projects_user_id', table_name='projects')
    op.drop_table('projects')
