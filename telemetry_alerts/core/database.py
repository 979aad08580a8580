"""
PostgreSQL Database

SQLAlchemy session factory and the threshold configuration table.
"""

from sqlalchemy import Boolean, Column, Float, Integer, String, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base

from telemetry_alerts.pipelines.base import Direction, ThresholdRule
from telemetry_alerts.pipelines.errors import ConfigUnavailable

Base = declarative_base()


class AlertThresholdRow(Base):
    __tablename__ = "alert_thresholds"

    id = Column(Integer, primary_key=True)
    parameter = Column(String(64), unique=True, nullable=False)
    warning_threshold = Column(Float, nullable=True)
    critical_threshold = Column(Float, nullable=True)
    direction = Column(String(8), nullable=True)
    description = Column(String(500), default="")
    is_active = Column(Boolean, default=True, nullable=False)

    def to_rule(self) -> ThresholdRule:
        return ThresholdRule(
            parameter=self.parameter,
            warning_level=self.warning_threshold,
            critical_level=self.critical_threshold,
            description=self.description or "",
            is_active=bool(self.is_active),
            direction=Direction(self.direction) if self.direction else None,
        )


class Database:
    def __init__(self, url: str):
        self.engine = create_engine(url)
        self.Session = sessionmaker(bind=self.engine)

    def create_tables(self):
        Base.metadata.create_all(self.engine)

    def session(self):
        return self.Session()


class ThresholdSource:
    """
    Reads threshold rules from the `alert_thresholds` table.

    Example:
        source = ThresholdSource(Database(Config.POSTGRES_URL))
        registry.refresh(source.fetch())
    """

    def __init__(self, database: Database):
        self.database = database

    def fetch(self) -> list[ThresholdRule]:
        try:
            with self.database.session() as session:
                rows = session.scalars(select(AlertThresholdRow).order_by(AlertThresholdRow.parameter)).all()
                return [row.to_rule() for row in rows]
        except SQLAlchemyError as e:
            raise ConfigUnavailable(f"threshold query failed: {e}") from e
