"""initial schema (users, cities, ad types, ads, photos)

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


AD_TYPES = ("sale", "rent", "buy", "service", "exchange")
CITIES = ("Moscow", "Saint Petersburg", "Kazan", "Novosibirsk", "Yekaterinburg")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=80), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    cities = op.create_table(
        "cities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
    )
    op.create_index("ix_cities_name", "cities", ["name"], unique=True)

    ad_types = op.create_table(
        "ad_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type_name", sa.String(length=40), nullable=False),
    )
    op.create_index("ix_ad_types_type_name", "ad_types", ["type_name"], unique=True)

    op.create_table(
        "ads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("ad_type_id", sa.Integer(), sa.ForeignKey("ad_types.id"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("city_id", sa.Integer(), sa.ForeignKey("cities.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_ads_owner_id", "ads", ["owner_id"])
    op.create_index("ix_ads_category_id", "ads", ["category_id"])
    op.create_index("ix_ads_ad_type_id", "ads", ["ad_type_id"])
    op.create_index("ix_ads_city_id", "ads", ["city_id"])
    op.create_index("ix_ads_created_at", "ads", ["created_at"])

    op.create_table(
        "photos",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ad_id", sa.Integer(), sa.ForeignKey("ads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("photo_url", sa.String(length=512), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("content_type", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_photos_ad_id", "photos", ["ad_id"])

    op.bulk_insert(ad_types, [{"type_name": name} for name in AD_TYPES])
    op.bulk_insert(cities, [{"name": name} for name in CITIES])


def downgrade() -> None:
    op.drop_index("ix_photos_ad_id", table_name="photos")
    op.drop_table("photos")

    op.drop_index("ix_ads_created_at", table_name="ads")
    op.drop_index("ix_ads_city_id", table_name="ads")
    op.drop_index("ix_ads_ad_type_id", table_name="ads")
    op.drop_index("ix_ads_category_id", table_name="ads")
    op.drop_index("ix_ads_owner_id", table_name="ads")
    op.drop_table("ads")

    op.drop_index("ix_ad_types_type_name", table_name="ad_types")
    op.drop_table("ad_types")

    op.drop_index("ix_cities_name", table_name="cities")
    op.drop_table("cities")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
