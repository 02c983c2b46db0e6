"""SQLAlchemy models for Electoral Atlas."""

from geoalchemy2 import Geometry
from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class AdministrativeUnit(Base):
    """A node of the five-level administrative hierarchy.

    Levels are 1 Subregion, 2 District, 3 Constituency, 4 Subcounty and
    5 Parish. Every unit below level 1 has exactly one parent one level up.
    """

    __tablename__ = "administrative_units"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    code = Column(String(50), nullable=True)
    level = Column(Integer, nullable=False)
    parent_id = Column(Integer, ForeignKey("administrative_units.id"), nullable=True)
    registered_voters = Column(Integer, nullable=True)
    geom = Column(Geometry("GEOMETRY", srid=4326, spatial_index=False), nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    parent = relationship("AdministrativeUnit", remote_side=[id], backref="children")

    __table_args__ = (
        Index("idx_admin_unit_level", "level"),
        Index("idx_admin_unit_parent", "parent_id"),
        Index("idx_admin_unit_level_parent", "level", "parent_id"),
        Index("idx_admin_unit_geom", "geom", postgresql_using="gist"),
        CheckConstraint("level BETWEEN 1 AND 5", name="ck_admin_unit_level"),
    )

    def __repr__(self) -> str:
        return f"<AdministrativeUnit(id={self.id}, name='{self.name}', level={self.level})>"


class DistrictHistory(Base):
    """Lineage of a district created by splitting an older district."""

    __tablename__ = "district_history"

    id = Column(Integer, primary_key=True)
    current_district_id = Column(
        Integer, ForeignKey("administrative_units.id"), nullable=False, unique=True
    )
    parent_district_id = Column(Integer, ForeignKey("administrative_units.id"), nullable=False)
    split_year = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)

    current_district = relationship("AdministrativeUnit", foreign_keys=[current_district_id])
    parent_district = relationship("AdministrativeUnit", foreign_keys=[parent_district_id])


class ElectionType(Base):
    """Kind of election, which fixes the level its results are stored at."""

    __tablename__ = "election_types"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    code = Column(String(20), nullable=False, unique=True)  # PRES, CONST_MP, WOMAN_MP, ...
    electoral_level = Column(Integer, nullable=True)


class Election(Base):
    """A single election event."""

    __tablename__ = "elections"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    year = Column(Integer, nullable=False)
    election_date = Column(Date, nullable=True)
    election_type_id = Column(Integer, ForeignKey("election_types.id"), nullable=True)
    status = Column(String(20), nullable=False, default="upcoming")

    election_type = relationship("ElectionType")


class PoliticalParty(Base):
    """Political party with its map colour."""

    __tablename__ = "political_parties"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    abbreviation = Column(String(20), nullable=False)
    color = Column(String(20), nullable=True)


class Candidate(Base):
    """A candidate standing in an election."""

    __tablename__ = "candidates"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=False, index=True)
    party_id = Column(Integer, ForeignKey("political_parties.id"), nullable=True)
    electoral_area_id = Column(Integer, ForeignKey("administrative_units.id"), nullable=True)

    party = relationship("PoliticalParty")


class Result(Base):
    """Votes for one candidate in one administrative unit.

    Only rows whose status is public (``approved``) contribute to aggregates.
    """

    __tablename__ = "results"

    id = Column(Integer, primary_key=True)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=False)
    candidate_id = Column(Integer, ForeignKey("candidates.id"), nullable=False)
    admin_unit_id = Column(Integer, ForeignKey("administrative_units.id"), nullable=False)
    votes = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="draft")
    created_at = Column(DateTime, nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("election_id", "candidate_id", "admin_unit_id", name="uq_result_unit"),
        Index("idx_results_election_status", "election_id", "status"),
        Index("idx_results_admin_unit", "admin_unit_id"),
    )


class Demographics(Base):
    """Census counts for a parish in a census year."""

    __tablename__ = "demographics"

    id = Column(Integer, primary_key=True)
    admin_unit_id = Column(Integer, ForeignKey("administrative_units.id"), nullable=False)
    census_year = Column(Integer, nullable=False)
    total_population = Column(Integer, nullable=False, default=0)
    male_population = Column(Integer, nullable=False, default=0)
    female_population = Column(Integer, nullable=False, default=0)
    voting_age_population = Column(Integer, nullable=False, default=0)
    youth_population = Column(Integer, nullable=False, default=0)
    elderly_population = Column(Integer, nullable=False, default=0)
    number_of_households = Column(Integer, nullable=False, default=0)
    source = Column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("admin_unit_id", "census_year", name="uq_demographics_unit_year"),
        Index("idx_demographics_year", "census_year"),
    )


class IssueCategory(Base):
    """Category of an electoral incident."""

    __tablename__ = "issue_categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=False, unique=True)
    color = Column(String(20), nullable=True)
    severity = Column(Integer, nullable=False, default=1)


class ElectoralIssue(Base):
    """A reported electoral incident with its location at every level."""

    __tablename__ = "electoral_issues"

    id = Column(Integer, primary_key=True)
    issue_category_id = Column(Integer, ForeignKey("issue_categories.id"), nullable=False)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=True)
    district_id = Column(Integer, ForeignKey("administrative_units.id"), nullable=False)
    constituency_id = Column(Integer, ForeignKey("administrative_units.id"), nullable=True)
    subcounty_id = Column(Integer, ForeignKey("administrative_units.id"), nullable=True)
    parish_id = Column(Integer, ForeignKey("administrative_units.id"), nullable=True)
    description = Column(Text, nullable=True)
    date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="reported")
    death_count = Column(Integer, nullable=False, default=0)
    injury_count = Column(Integer, nullable=False, default=0)
    arrest_count = Column(Integer, nullable=False, default=0)
    extra_properties = Column(JSON, nullable=True)

    category = relationship("IssueCategory")

    __table_args__ = (
        Index("idx_issues_district", "district_id"),
        Index("idx_issues_constituency", "constituency_id"),
        Index("idx_issues_subcounty", "subcounty_id"),
        Index("idx_issues_parish", "parish_id"),
        Index("idx_issues_date", "date"),
    )
