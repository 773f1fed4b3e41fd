"""wallet init

Revision ID: 5d1c0e7a9b42
Revises:
Create Date: 2026-10-18 09:41:07.118302

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5d1c0e7a9b42"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "wallet_accounts",
        sa.Column("guid", sa.String(512), primary_key=True),
        sa.Column("principal", sa.String(512), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_wallet_accounts_principal", "wallet_accounts", ["principal"], unique=True
    )

    op.create_table(
        "wallet_access_tokens",
        sa.Column("token_digest", sa.String(64), primary_key=True),
        sa.Column("account_guid", sa.String(512), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_wallet_access_tokens_account", "wallet_access_tokens", ["account_guid"]
    )
    op.create_index(
        "idx_wallet_access_tokens_expires", "wallet_access_tokens", ["expires_at"]
    )

    op.create_table(
        "wallet_encrypted_seeds",
        sa.Column("account_guid", sa.String(512), primary_key=True),
        sa.Column("ciphertext", sa.Text, nullable=False),
        sa.Column("escrowed_secret", sa.Text, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "wallet_credentials",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("account_guid", sa.String(512), nullable=False),
        sa.Column("credential_id", sa.String(512), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("types", sa.JSON, nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "account_guid", "credential_id", name="uq_wallet_credentials_account_id"
        ),
    )
    op.create_index(
        "idx_wallet_credentials_account", "wallet_credentials", ["account_guid"]
    )


def downgrade() -> None:
    op.drop_table("wallet_credentials")
    op.drop_table("wallet_encrypted_seeds")
    op.drop_table("wallet_access_tokens")
    op.drop_table("wallet_accounts")
