"""Early-warning use case: detect, de-duplicate, annotate, persist"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from merchant_credit.config import settings
from merchant_credit.domain.early_warning import DetectionWindow, run_detectors
from merchant_credit.domain.exceptions import NotFoundError
from merchant_credit.domain.models import AlertCandidate, EarlyWarningAlert
from merchant_credit.infrastructure.clients.explainer import TextExplainer
from merchant_credit.infrastructure.database.repositories import LedgerStore
from merchant_credit.infrastructure.observability.logging import log_alert_raised
from merchant_credit.infrastructure.observability.metrics import alert_suppressed_counter, record_alert
from merchant_credit.utils.date_utils import utcnow

LOOKBACK_DAYS = 30
SNAPSHOTS_COMPARED = 2


def anomaly_context(merchant_id: str, candidate: AlertCandidate) -> Dict[str, Any]:
    return {
        "merchant_id": merchant_id,
        "alert_type": candidate.alert_type.value,
        "severity": candidate.severity.value,
        "metric_name": candidate.metric_name,
        "current_value": round(candidate.metric_value, 2),
        "historical_value": round(candidate.historical_value, 2),
        "deviation_percentage": round(candidate.deviation_percentage, 2),
    }


class EarlyWarningService:
    def __init__(
        self,
        store: LedgerStore,
        explainer: TextExplainer,
        suppress_duplicates: Optional[bool] = None,
    ):
        self.store = store
        self.explainer = explainer
        self.suppress_duplicates = (
            settings.suppress_duplicate_alerts if suppress_duplicates is None else suppress_duplicates
        )

    def load_window(self, merchant_id: str, now: datetime) -> DetectionWindow:
        end = self.store.local_day(now) + timedelta(days=1)
        start = end - timedelta(days=LOOKBACK_DAYS)
        rows = self.store.get_window_aggregates(merchant_id, start, end)
        return DetectionWindow(
            daily_rows=list(reversed(rows)),
            transactions=self.store.get_transactions(merchant_id, start, end),
            snapshots=self.store.get_latest_snapshots(merchant_id, SNAPSHOTS_COMPARED),
        )

    async def detect(self, merchant_id: str, now: Optional[datetime] = None) -> List[EarlyWarningAlert]:
        """
        Run every detector and persist the new alerts.

        With duplicate suppression on, a detection is skipped while an
        unresolved alert of the same type is still open for the merchant.
        """
        now = now or utcnow()
        candidates = run_detectors(self.load_window(merchant_id, now))

        open_types = set()
        if self.suppress_duplicates:
            open_types = {a.alert_type for a in self.store.get_unresolved_alerts(merchant_id)}

        raised = []
        for candidate in candidates:
            if candidate.alert_type in open_types:
                alert_suppressed_counter.labels(alert_type=candidate.alert_type.value).inc()
                logging.info(
                    f"Skipping {candidate.alert_type.value} for {merchant_id}: unresolved alert exists",
                    extra={"merchant_id": merchant_id},
                )
                continue

            analysis = await self.explainer.explain_anomaly(anomaly_context(merchant_id, candidate))
            alert = self.store.save_alert(
                EarlyWarningAlert(
                    merchant_id=merchant_id,
                    alert_type=candidate.alert_type,
                    severity=candidate.severity,
                    metric_name=candidate.metric_name,
                    metric_value=candidate.metric_value,
                    threshold_value=candidate.threshold_value,
                    deviation_percentage=candidate.deviation_percentage,
                    detected_at=now,
                    analysis=analysis,
                )
            )
            record_alert(alert.alert_type.value, alert.severity.value)
            log_alert_raised(merchant_id, alert.alert_type.value, alert.severity.value, alert.metric_value)
            raised.append(alert)

        return raised

    def active_alerts(self, merchant_id: str) -> List[EarlyWarningAlert]:
        return self.store.get_unresolved_alerts(merchant_id)

    def resolve(
        self,
        alert_id: uuid.UUID,
        resolved_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EarlyWarningAlert:
        """
        Raises:
            NotFoundError: Unknown alert id
        """
        alert = self.store.resolve_alert(alert_id, resolved_by, now or utcnow())
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        logging.info("Alert resolved", extra={"alert_id": str(alert_id), "resolved_by": resolved_by})
        return alert
