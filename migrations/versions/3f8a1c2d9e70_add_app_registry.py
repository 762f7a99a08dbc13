"""add app registry

Revision ID: 3f8a1c2d9e70
Revises:
Create Date: 2026-03-02 10:15:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "3f8a1c2d9e70"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _create_indexes(inspector, table: str, columns, unique_columns=()) -> None:
    existing = {ix.get("name") for ix in inspector.get_indexes(table)}
    for column in columns:
        name = op.f(f"ix_{table}_{column}")
        if name not in existing:
            op.create_index(name, table, [column], unique=column in unique_columns)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())

    if "app_definitions" not in tables:
        op.create_table(
            "app_definitions",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("key", sa.String(length=100), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("app_type", sa.String(length=20), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("icon_name", sa.String(length=100), nullable=True),
            sa.Column("routes", _json(), nullable=True),
            sa.Column("modules", _json(), nullable=True),
            sa.Column("extension_points", _json(), nullable=True),
            sa.Column("schema_version", sa.String(length=50), nullable=True),
            sa.Column("domain_tables", _json(), nullable=True),
            sa.Column("shared_tables", _json(), nullable=True),
            sa.Column("hooks", _json(), nullable=True),
            sa.Column("ui_components", _json(), nullable=True),
            sa.Column("capabilities", _json(), nullable=True),
            sa.Column("integration_requirements", _json(), nullable=True),
            sa.Column("mcp_actions", _json(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(inspector, "app_definitions", ["key"], unique_columns=("key",))

    if "app_versions" not in tables:
        op.create_table(
            "app_versions",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("app_definition_id", sa.String(), nullable=False),
            sa.Column("version", sa.String(length=50), nullable=False),
            sa.Column("manifest_url", sa.String(length=500), nullable=True),
            sa.Column("changelog", sa.Text(), nullable=True),
            sa.Column("migrations", _json(), nullable=True),
            sa.Column("breaking_changes", sa.Boolean(), nullable=False),
            sa.Column("released_at", sa.DateTime(), nullable=False),
            sa.Column("deprecated_at", sa.DateTime(), nullable=True),
            sa.Column("end_of_life_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(
                ["app_definition_id"], ["app_definitions.id"], ondelete="CASCADE"
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("app_definition_id", "version", name="uq_app_version"),
        )
    _create_indexes(inspector, "app_versions", ["app_definition_id", "released_at"])

    if "applications" not in tables:
        op.create_table(
            "applications",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("tenant_id", sa.String(length=64), nullable=False),
            sa.Column("key", sa.String(length=100), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("icon_name", sa.String(length=100), nullable=True),
            sa.Column("app_definition_id", sa.String(), nullable=True),
            sa.Column("installed_version", sa.String(length=50), nullable=True),
            sa.Column("channel", sa.String(length=20), nullable=False),
            sa.Column("install_status", sa.String(length=20), nullable=False),
            sa.Column("config", _json(), nullable=True),
            sa.Column("overrides", _json(), nullable=True),
            sa.Column("domain_tables", _json(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("last_updated_at", sa.DateTime(), nullable=True),
            sa.Column("updated_by", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["app_definition_id"], ["app_definitions.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "key", name="uq_tenant_app_key"),
        )
    _create_indexes(inspector, "applications", ["tenant_id", "key", "app_definition_id"])

    if "app_compatibility" not in tables:
        op.create_table(
            "app_compatibility",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("app_definition_id", sa.String(), nullable=False),
            sa.Column("incompatible_with", _json(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(
                ["app_definition_id"], ["app_definitions.id"], ondelete="CASCADE"
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("app_definition_id"),
        )

    if "tenant_app_extensions" not in tables:
        op.create_table(
            "tenant_app_extensions",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("tenant_id", sa.String(length=64), nullable=False),
            sa.Column("app_definition_id", sa.String(), nullable=False),
            sa.Column("extension_type", sa.String(length=20), nullable=False),
            sa.Column("extension_key", sa.String(length=100), nullable=False),
            sa.Column("implementation_url", sa.String(length=500), nullable=False),
            sa.Column("config", _json(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(
                ["app_definition_id"], ["app_definitions.id"], ondelete="CASCADE"
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "tenant_id",
                "app_definition_id",
                "extension_key",
                name="uq_tenant_app_extension",
            ),
        )
    _create_indexes(inspector, "tenant_app_extensions", ["tenant_id", "app_definition_id"])

    if "mcp_action_registry" not in tables:
        op.create_table(
            "mcp_action_registry",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("tenant_id", sa.String(length=64), nullable=False),
            sa.Column("app_key", sa.String(length=100), nullable=False),
            sa.Column("action_key", sa.String(length=100), nullable=False),
            sa.Column("fq_action", sa.String(length=200), nullable=False),
            sa.Column("version", sa.String(length=50), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("input_schema", _json(), nullable=True),
            sa.Column("output_schema", _json(), nullable=True),
            sa.Column("enabled", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "tenant_id", "fq_action", "version", name="uq_mcp_action_version"
            ),
        )
    _create_indexes(inspector, "mcp_action_registry", ["tenant_id", "app_key"])

    if "mcp_action_logs" not in tables:
        op.create_table(
            "mcp_action_logs",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("tenant_id", sa.String(length=64), nullable=True),
            sa.Column("user_id", sa.String(length=64), nullable=True),
            sa.Column("action", sa.String(length=200), nullable=False),
            sa.Column("payload", _json(), nullable=True),
            sa.Column("result", _json(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("duration_ms", sa.Integer(), nullable=False),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("idempotency_key", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(inspector, "mcp_action_logs", ["tenant_id", "idempotency_key"])


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())
    for table in (
        "mcp_action_logs",
        "mcp_action_registry",
        "tenant_app_extensions",
        "app_compatibility",
        "applications",
        "app_versions",
        "app_definitions",
    ):
        if table in tables:
            op.drop_table(table)
