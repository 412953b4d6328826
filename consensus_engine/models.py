from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from consensus_engine.database import Base


class FinancialDataExtended(Base):
    """Scraped per-year EPS/PER facts; several sources may report the same year."""
    __tablename__ = "financial_data_extended"
    __table_args__ = (
        UniqueConstraint("company_id", "year", "data_source", "scrape_date",
                         name="uq_financial_fact"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, nullable=False, index=True)
    ticker = Column(String, nullable=False, index=True)
    company_name = Column(String)
    year = Column(Integer, nullable=False, index=True)
    eps = Column(Float)
    per = Column(Float)
    data_source = Column(String, nullable=False)
    scrape_date = Column(Date, nullable=False, index=True)


class ConsensusMetricDaily(Base):
    __tablename__ = "consensus_metric_daily"
    __table_args__ = (
        UniqueConstraint("snapshot_date", "ticker", "target_y1", "target_y2",
                         name="uq_consensus_metric_daily"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    snapshot_date = Column(Date, nullable=False, index=True)
    ticker = Column(String, nullable=False, index=True)
    company_id = Column(Integer, nullable=False)
    target_y1 = Column(Integer, nullable=False)
    target_y2 = Column(Integer, nullable=False)

    calc_status = Column(String, nullable=False)
    calc_error = Column(Text)

    eps_y1 = Column(Float)
    eps_y2 = Column(Float)
    per_y1 = Column(Float)
    per_y2 = Column(Float)

    eps_growth_pct = Column(Float)
    per_growth_pct = Column(Float)
    fvb_score = Column(Float)
    hgs_score = Column(Float)
    rrs_score = Column(Float)

    quad_position = Column(String, index=True)
    quad_x = Column(Float)
    quad_y = Column(Float)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class ConsensusDiffLog(Base):
    __tablename__ = "consensus_diff_log"
    __table_args__ = (
        UniqueConstraint("snapshot_date", "ticker", "target_y1", "target_y2",
                         name="uq_consensus_diff_log"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    snapshot_date = Column(Date, nullable=False, index=True)
    ticker = Column(String, nullable=False, index=True)
    company_id = Column(Integer, nullable=False)
    target_y1 = Column(Integer, nullable=False)
    target_y2 = Column(Integer, nullable=False)

    fvb_diff_d1 = Column(Float)
    hgs_diff_d1 = Column(Float)
    rrs_diff_d1 = Column(Float)
    quad_shift_d1 = Column(String)

    fvb_diff_w1 = Column(Float)
    hgs_diff_w1 = Column(Float)
    rrs_diff_w1 = Column(Float)
    quad_shift_w1 = Column(String)

    fvb_diff_m1 = Column(Float)
    hgs_diff_m1 = Column(Float)
    rrs_diff_m1 = Column(Float)
    quad_shift_m1 = Column(String)

    signal_tags = Column(Text, nullable=False, default="[]")   # JSON list
    tag_count = Column(Integer, nullable=False, default=0)

    fvb_trend = Column(String)
    hgs_trend = Column(String)
    rrs_trend = Column(String)

    is_overheat = Column(Boolean, nullable=False, default=False)
    is_target_zone = Column(Boolean, nullable=False, default=False)
    is_turnaround = Column(Boolean, nullable=False, default=False)
    is_high_growth = Column(Boolean, nullable=False, default=False)
    is_healthy = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, server_default=func.now())
