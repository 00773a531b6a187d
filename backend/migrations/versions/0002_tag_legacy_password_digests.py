"""Tag legacy password digests imported from the old admin console

Revision ID: 0002_tag_legacy_digests
Revises: 0001_initial
Create Date: 2026-10-16

Rows copied over from the old console hold sha256(password + pepper) as bare
hex. The verifier is chosen by prefix, so those rows get "sha256:" prepended
here and are upgraded to bcrypt on the next successful login.

Downgrade is a no-op: stripping the prefix would make the rows unusable again.
"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '0002_tag_legacy_digests'
down_revision = '0001_initial'
branch_labels = None
depends_on = None


def upgrade():
    from storeadmin.services.auth_service import tag_legacy_verifiers_statement

    op.execute(tag_legacy_verifiers_statement())


def downgrade():
    pass
