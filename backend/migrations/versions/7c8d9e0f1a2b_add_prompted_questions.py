"""add prompted questions and their per-room answers

Revision ID: 7c8d9e0f1a2b
Revises: 1a2b3c4d5e6f
Create Date: 2026-10-20 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c8d9e0f1a2b'
down_revision = '1a2b3c4d5e6f'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_question_category', 'question', ['category'])

    op.create_table(
        'question_answer',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('room_id', sa.Integer(), sa.ForeignKey('room.id'), nullable=False),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('question.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('answer_text', sa.Text(), nullable=False),
        sa.Column('answer_data', sa.Text(), nullable=True),
        sa.Column('answered_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('room_id', 'question_id', 'user_id', name='uq_question_answer'),
    )
    op.create_index('ix_question_answer_room_id', 'question_answer', ['room_id'])
    op.create_index('ix_question_answer_user_id', 'question_answer', ['user_id'])
    op.create_index('ix_question_answer_answered_at', 'question_answer', ['answered_at'])


def downgrade():
    op.drop_table('question_answer')
    op.drop_table('question')
