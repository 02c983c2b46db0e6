"""Create administrative hierarchy and metric tables

Revision ID: 5c1e8a2f9d40
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import geoalchemy2
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e8a2f9d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the hierarchy, lineage, election, census and incident tables."""
    op.create_table(
        "administrative_units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("registered_voters", sa.Integer(), nullable=True),
        sa.Column(
            "geom",
            geoalchemy2.types.Geometry(
                geometry_type="GEOMETRY",
                srid=4326,
                spatial_index=False,
                from_text="ST_GeomFromEWKT",
                name="geometry",
            ),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["parent_id"], ["administrative_units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("level BETWEEN 1 AND 5", name="ck_admin_unit_level"),
    )
    op.create_index("idx_admin_unit_level", "administrative_units", ["level"], unique=False)
    op.create_index("idx_admin_unit_parent", "administrative_units", ["parent_id"], unique=False)
    op.create_index(
        "idx_admin_unit_level_parent", "administrative_units", ["level", "parent_id"], unique=False
    )
    op.create_index(
        "idx_admin_unit_geom",
        "administrative_units",
        ["geom"],
        unique=False,
        postgresql_using="gist",
    )

    op.create_table(
        "district_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("current_district_id", sa.Integer(), nullable=False),
        sa.Column("parent_district_id", sa.Integer(), nullable=False),
        sa.Column("split_year", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["current_district_id"], ["administrative_units.id"]),
        sa.ForeignKeyConstraint(["parent_district_id"], ["administrative_units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("current_district_id"),
    )

    op.create_table(
        "election_types",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("electoral_level", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "elections",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("election_date", sa.Date(), nullable=True),
        sa.Column("election_type_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.ForeignKeyConstraint(["election_type_id"], ["election_types.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "political_parties",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("abbreviation", sa.String(length=20), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "candidates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("election_id", sa.Integer(), nullable=False),
        sa.Column("party_id", sa.Integer(), nullable=True),
        sa.Column("electoral_area_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["election_id"], ["elections.id"]),
        sa.ForeignKeyConstraint(["party_id"], ["political_parties.id"]),
        sa.ForeignKeyConstraint(["electoral_area_id"], ["administrative_units.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_candidates_election_id", "candidates", ["election_id"], unique=False)

    op.create_table(
        "results",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("election_id", sa.Integer(), nullable=False),
        sa.Column("candidate_id", sa.Integer(), nullable=False),
        sa.Column("admin_unit_id", sa.Integer(), nullable=False),
        sa.Column("votes", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["election_id"], ["elections.id"]),
        sa.ForeignKeyConstraint(["candidate_id"], ["candidates.id"]),
        sa.ForeignKeyConstraint(["admin_unit_id"], ["administrative_units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("election_id", "candidate_id", "admin_unit_id", name="uq_result_unit"),
    )
    op.create_index(
        "idx_results_election_status", "results", ["election_id", "status"], unique=False
    )
    op.create_index("idx_results_admin_unit", "results", ["admin_unit_id"], unique=False)

    op.create_table(
        "demographics",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("admin_unit_id", sa.Integer(), nullable=False),
        sa.Column("census_year", sa.Integer(), nullable=False),
        sa.Column("total_population", sa.Integer(), nullable=False),
        sa.Column("male_population", sa.Integer(), nullable=False),
        sa.Column("female_population", sa.Integer(), nullable=False),
        sa.Column("voting_age_population", sa.Integer(), nullable=False),
        sa.Column("youth_population", sa.Integer(), nullable=False),
        sa.Column("elderly_population", sa.Integer(), nullable=False),
        sa.Column("number_of_households", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=100), nullable=True),
        sa.ForeignKeyConstraint(["admin_unit_id"], ["administrative_units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("admin_unit_id", "census_year", name="uq_demographics_unit_year"),
    )
    op.create_index("idx_demographics_year", "demographics", ["census_year"], unique=False)

    op.create_table(
        "issue_categories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("severity", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "electoral_issues",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("issue_category_id", sa.Integer(), nullable=False),
        sa.Column("election_id", sa.Integer(), nullable=True),
        sa.Column("district_id", sa.Integer(), nullable=False),
        sa.Column("constituency_id", sa.Integer(), nullable=True),
        sa.Column("subcounty_id", sa.Integer(), nullable=True),
        sa.Column("parish_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("death_count", sa.Integer(), nullable=False),
        sa.Column("injury_count", sa.Integer(), nullable=False),
        sa.Column("arrest_count", sa.Integer(), nullable=False),
        sa.Column("extra_properties", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["issue_category_id"], ["issue_categories.id"]),
        sa.ForeignKeyConstraint(["election_id"], ["elections.id"]),
        sa.ForeignKeyConstraint(["district_id"], ["administrative_units.id"]),
        sa.ForeignKeyConstraint(["constituency_id"], ["administrative_units.id"]),
        sa.ForeignKeyConstraint(["subcounty_id"], ["administrative_units.id"]),
        sa.ForeignKeyConstraint(["parish_id"], ["administrative_units.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_issues_district", "electoral_issues", ["district_id"], unique=False)
    op.create_index(
        "idx_issues_constituency", "electoral_issues", ["constituency_id"], unique=False
    )
    op.create_index("idx_issues_subcounty", "electoral_issues", ["subcounty_id"], unique=False)
    op.create_index("idx_issues_parish", "electoral_issues", ["parish_id"], unique=False)
    op.create_index("idx_issues_date", "electoral_issues", ["date"], unique=False)


def downgrade() -> None:
    """Drop all tables created by this revision."""
    op.drop_index("idx_issues_date", table_name="electoral_issues")
    op.drop_index("idx_issues_parish", table_name="electoral_issues")
    op.drop_index("idx_issues_subcounty", table_name="electoral_issues")
    op.drop_index("idx_issues_constituency", table_name="electoral_issues")
    op.drop_index("idx_issues_district", table_name="electoral_issues")
    op.drop_table("electoral_issues")
    op.drop_table("issue_categories")

    op.drop_index("idx_demographics_year", table_name="demographics")
    op.drop_table("demographics")

    op.drop_index("idx_results_admin_unit", table_name="results")
    op.drop_index("idx_results_election_status", table_name="results")
    op.drop_table("results")

    op.drop_index("ix_candidates_election_id", table_name="candidates")
    op.drop_table("candidates")
    op.drop_table("political_parties")
    op.drop_table("elections")
    op.drop_table("election_types")
    op.drop_table("district_history")

    op.drop_index("idx_admin_unit_geom", table_name="administrative_units")
    op.drop_index("idx_admin_unit_level_parent", table_name="administrative_units")
    op.drop_index("idx_admin_unit_parent", table_name="administrative_units")
    op.drop_index("idx_admin_unit_level", table_name="administrative_units")
    op.drop_table("administrative_units")
