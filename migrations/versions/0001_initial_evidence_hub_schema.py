"""Initial schema: users + grants, program/organization/standard/criteria hierarchy,
evidences with history and files, audit log

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns():
    return [
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['updated_by'], ['users.id'], ondelete='SET NULL'),
    ]


def upgrade():
    # ── Users ────────────────────────────────────────────────────────────
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=100), nullable=False),
        sa.Column('full_name', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('department', sa.String(length=200), nullable=True),
        sa.Column('position', sa.String(length=200), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
    )

    # ── Hierarchy ────────────────────────────────────────────────────────
    op.create_table(
        'programs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=300), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=30), nullable=True,
                  comment='undergraduate | graduate | institution | other'),
        sa.Column('version', sa.String(length=10), nullable=True),
        sa.Column('applicable_year', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True,
                  comment='draft | active | inactive | archived'),
        sa.Column('effective_date', sa.Date(), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('objectives', sa.Text(), nullable=True),
        sa.Column('guidelines', sa.Text(), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )

    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=300), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('level', sa.String(length=20), nullable=True,
                  comment='national | international | regional | institutional'),
        sa.Column('type', sa.String(length=30), nullable=True,
                  comment='government | education | professional | international | other'),
        sa.Column('website', sa.String(length=300), nullable=True),
        sa.Column('contact_email', sa.String(length=200), nullable=True),
        sa.Column('contact_phone', sa.String(length=30), nullable=True),
        sa.Column('address', sa.String(length=500), nullable=True),
        sa.Column('country', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True,
                  comment='draft | active | inactive | archived'),
        *_audit_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )

    op.create_table(
        'standards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=2), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=True,
                  comment='Sort order within program/organization'),
        sa.Column('weight', sa.Float(), nullable=True, comment='0-100'),
        sa.Column('objectives', sa.Text(), nullable=True),
        sa.Column('guidelines', sa.Text(), nullable=True),
        sa.Column('evaluation_criteria', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True,
                  comment='draft | active | inactive | archived'),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['program_id'], ['programs.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('program_id', 'organization_id', 'code',
                            name='uq_standard_program_org_code'),
    )
    with op.batch_alter_table('standards', schema=None) as batch_op:
        batch_op.create_index('ix_standards_program_id', ['program_id'], unique=False)
        batch_op.create_index('ix_standards_organization_id', ['organization_id'], unique=False)
        batch_op.create_index('ix_standard_program_org_order',
                              ['program_id', 'organization_id', 'order'], unique=False)

    op.create_table(
        'criteria',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=2), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('standard_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=True),
        sa.Column('weight', sa.Float(), nullable=True),
        sa.Column('type', sa.String(length=20), nullable=True,
                  comment='mandatory | optional | conditional'),
        sa.Column('requirements', sa.Text(), nullable=True),
        sa.Column('guidelines', sa.Text(), nullable=True),
        sa.Column('indicators', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True,
                  comment='draft | active | inactive | archived'),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['standard_id'], ['standards.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['program_id'], ['programs.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('standard_id', 'code', name='uq_criteria_standard_code'),
    )
    with op.batch_alter_table('criteria', schema=None) as batch_op:
        batch_op.create_index('ix_criteria_standard_id', ['standard_id'], unique=False)
        batch_op.create_index('ix_criteria_program_org', ['program_id', 'organization_id'], unique=False)

    # ── Scoped grants ────────────────────────────────────────────────────
    op.create_table(
        'user_standard_access',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('standard_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['standard_id'], ['standards.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'standard_id'),
    )
    op.create_table(
        'user_criteria_access',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('criteria_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['criteria_id'], ['criteria.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'criteria_id'),
    )

    # ── Evidences ────────────────────────────────────────────────────────
    op.create_table(
        'evidences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=30), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('standard_id', sa.Integer(), nullable=False),
        sa.Column('criteria_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=100), nullable=True),
        sa.Column('issue_date', sa.Date(), nullable=True),
        sa.Column('effective_date', sa.Date(), nullable=True),
        sa.Column('issuing_agency', sa.String(length=200), nullable=True),
        sa.Column('document_type', sa.String(length=30), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True,
                  comment='active | inactive | pending | archived'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['program_id'], ['programs.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['standard_id'], ['standards.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['criteria_id'], ['criteria.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )
    with op.batch_alter_table('evidences', schema=None) as batch_op:
        batch_op.create_index('ix_evidences_standard_id', ['standard_id'], unique=False)
        batch_op.create_index('ix_evidences_criteria_id', ['criteria_id'], unique=False)
        batch_op.create_index('ix_evidence_program_org', ['program_id', 'organization_id'], unique=False)
        batch_op.create_index(
            'ix_evidence_hierarchy',
            ['program_id', 'organization_id', 'standard_id', 'criteria_id'], unique=False,
        )
        batch_op.create_index('ix_evidence_status', ['status'], unique=False)
        batch_op.create_index('ix_evidence_created_at', ['created_at'], unique=False)

    op.create_table(
        'evidence_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('evidence_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=20), nullable=False,
                  comment='created | updated | deleted | moved | copied'),
        sa.Column('changed_by', sa.Integer(), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.ForeignKeyConstraint(['evidence_id'], ['evidences.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['changed_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('evidence_history', schema=None) as batch_op:
        batch_op.create_index('ix_evidence_history_evidence_ts', ['evidence_id', 'changed_at'], unique=False)

    op.create_table(
        'evidence_files',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('original_name', sa.String(length=255), nullable=False),
        sa.Column('stored_name', sa.String(length=255), nullable=False),
        sa.Column('file_path', sa.String(length=1024), nullable=False),
        sa.Column('size', sa.Integer(), nullable=False),
        sa.Column('mime_type', sa.String(length=150), nullable=False),
        sa.Column('extension', sa.String(length=20), nullable=True),
        sa.Column('evidence_id', sa.Integer(), nullable=False),
        sa.Column('uploaded_by', sa.Integer(), nullable=True),
        sa.Column('download_count', sa.Integer(), nullable=False),
        sa.Column('last_downloaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True,
                  comment='active | deleted | processing | failed'),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['evidence_id'], ['evidences.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['uploaded_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('evidence_files', schema=None) as batch_op:
        batch_op.create_index('ix_evidence_files_evidence', ['evidence_id'], unique=False)
        batch_op.create_index('ix_evidence_files_uploaded_at', ['uploaded_at'], unique=False)

    # ── Audit log ────────────────────────────────────────────────────────
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=30), nullable=False,
                  comment='program | organization | standard | criteria | evidence | evidence_file'),
        sa.Column('entity_id', sa.String(length=36), nullable=False),
        sa.Column('entity_code', sa.String(length=30), nullable=True),
        sa.Column('action', sa.String(length=60), nullable=False,
                  comment='standard.delete | evidence.delete | …'),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('diff_json', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.create_index('idx_audit_entity', ['entity_type', 'entity_id'], unique=False)
        batch_op.create_index('idx_audit_actor', ['actor_user_id'], unique=False)
        batch_op.create_index('idx_audit_action', ['action'], unique=False)
        batch_op.create_index('idx_audit_ts', ['timestamp'], unique=False)


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('evidence_files')
    op.drop_table('evidence_history')
    op.drop_table('evidences')
    op.drop_table('user_criteria_access')
    op.drop_table('user_standard_access')
    op.drop_table('criteria')
    op.drop_table('standards')
    op.drop_table('organizations')
    op.drop_table('programs')
    op.drop_table('users')
