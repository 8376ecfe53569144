"""Observation store: ingestion and windowed reads of raw price observations."""

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from src.database.models import PriceObservationRecord
from src.models.price_data import PriceObservation, PriceSource
from src.services.errors import PersistenceError
from src.utils.logger import StructuredLogger
from src.utils.time_utils import as_aware_utc, to_naive_utc


def _to_observation(record: PriceObservationRecord) -> PriceObservation:
    return PriceObservation(
        item_id=record.item_id,
        source=PriceSource(record.source),
        raw_amount=record.raw_amount,
        raw_currency=record.raw_currency,
        observed_at=as_aware_utc(record.observed_at),
        is_outlier=bool(record.is_outlier),
        id=record.id,
        source_event_id=record.source_event_id,
    )


class ObservationStore:
    """Stores raw observations; only the outlier flag is ever updated."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.logger = StructuredLogger("ObservationStore")

    def submit_observation(
        self,
        item_id: str,
        source: PriceSource | str,
        amount: float,
        currency: str,
        observed_at: datetime,
        source_event_id: str | None = None,
    ) -> bool:
        """
        Record one observation, best effort.

        Never raises for invalid input or storage trouble: the problem is
        logged and False returned. Re-submitting an observation with the same
        ``(source, source_event_id)`` is accepted as a no-op.

        Returns:
            True if the observation is stored (or already was)
        """
        context = {"item_id": item_id, "source": str(getattr(source, "value", source))}
        try:
            source = PriceSource(source)
            currency = currency.strip().upper()
            if not item_id:
                raise ValueError("item_id is required")
            if len(currency) != 3 or not currency.isalpha():
                raise ValueError(f"invalid currency code {currency!r}")
            if amount is None or float(amount) <= 0:
                raise ValueError(f"amount must be positive, got {amount!r}")
        except (ValueError, TypeError, AttributeError) as e:
            self.logger.warning(
                "Rejected invalid observation", context={**context, "reason": str(e)}
            )
            return False

        session = self.session_factory()
        try:
            if source_event_id is not None:
                existing = (
                    session.query(PriceObservationRecord.id)
                    .filter_by(source=source.value, source_event_id=source_event_id)
                    .first()
                )
                if existing is not None:
                    self.logger.debug(
                        "Duplicate observation ignored",
                        context={**context, "source_event_id": source_event_id},
                    )
                    return True

            session.add(
                PriceObservationRecord(
                    item_id=item_id,
                    source=source.value,
                    source_event_id=source_event_id,
                    raw_amount=float(amount),
                    raw_currency=currency,
                    observed_at=to_naive_utc(observed_at),
                    is_outlier=False,
                )
            )
            session.commit()
            return True
        except IntegrityError:
            # Lost a race with a concurrent submit of the same source event
            session.rollback()
            return True
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error(
                "Failed to store observation", context=context, exception=e
            )
            return False
        finally:
            session.close()

    def list_item_ids(self) -> list[str]:
        """Distinct item ids that have at least one observation."""
        with self.session_factory() as session:
            rows = (
                session.query(PriceObservationRecord.item_id)
                .distinct()
                .order_by(PriceObservationRecord.item_id)
                .all()
            )
            return [row[0] for row in rows]

    def observations_in_window(
        self, item_id: str, start: datetime, end: datetime
    ) -> list[PriceObservation]:
        """Observations for an item with ``start <= observed_at <= end``, oldest first."""
        with self.session_factory() as session:
            records = (
                session.query(PriceObservationRecord)
                .filter(
                    PriceObservationRecord.item_id == item_id,
                    PriceObservationRecord.observed_at >= to_naive_utc(start),
                    PriceObservationRecord.observed_at <= to_naive_utc(end),
                )
                .order_by(PriceObservationRecord.observed_at.asc(), PriceObservationRecord.id.asc())
                .all()
            )
            return [_to_observation(r) for r in records]

    def mark_outliers(self, item_id: str, outlier_ids: Iterable[int], inlier_ids: Iterable[int]) -> None:
        """
        Set the outlier flag for the given observation ids.

        Raises:
            PersistenceError: If the update fails
        """
        outlier_ids = [i for i in outlier_ids if i is not None]
        inlier_ids = [i for i in inlier_ids if i is not None]
        if not outlier_ids and not inlier_ids:
            return

        session = self.session_factory()
        try:
            for ids, flag in ((outlier_ids, True), (inlier_ids, False)):
                if ids:
                    session.execute(
                        update(PriceObservationRecord)
                        .where(PriceObservationRecord.id.in_(ids))
                        .values(is_outlier=flag)
                    )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(item_id, str(e)) from e
        finally:
            session.close()
