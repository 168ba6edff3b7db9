"""ORM model for the flat vulnerability table built by the ingest job."""

from sqlalchemy import Boolean, Column, Float, Index, Integer, String, Text

from app.models.base import Base


class Vulnerability(Base):
    """
    One row per (package, CVE) pairing from the flattened export.

    Column names are camelCase so databases produced by earlier conversion runs stay
    readable. Array fields (risk_factors, cwe, reference_links) hold JSON text and are
    decoded on read. cve_id is not unique: a package may repeat a CVE across images.
    """

    __tablename__ = "vulnerabilities"
    __table_args__ = (
        Index("idx_severity", "severity"),
        Index("idx_cveId", "cveId"),
        Index("idx_kaiStatus", "kaiStatus"),
        Index("idx_packageName", "packageName"),
        Index("idx_publishedDate", "publishedDate"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    cve_id = Column("cveId", String, nullable=False)
    package_name = Column("packageName", String, nullable=True)
    current_version = Column("currentVersion", String, nullable=True)
    fixed_version = Column("fixedVersion", String, nullable=True)
    severity = Column(String, nullable=False)
    cvss_score = Column("cvssScore", Float, nullable=True)
    description = Column(Text, nullable=True)
    published_date = Column("publishedDate", String, nullable=True)
    last_modified_date = Column("lastModifiedDate", String, nullable=True)
    kai_status = Column("kaiStatus", String, nullable=True)
    exploit_available = Column("exploitAvailable", Boolean, nullable=False, default=False)
    patch_available = Column("patchAvailable", Boolean, nullable=False, default=False)
    risk_factors = Column("riskFactors", Text, nullable=True)
    cwe = Column(Text, nullable=True)
    reference_links = Column("referenceLinks", Text, nullable=True)
    epss_score = Column("epssScore", Float, nullable=True)
    raw_data = Column("rawData", Text, nullable=True)
