import logging
import time
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional

import requests
from requests.exceptions import RequestException, Timeout

from subscription_sync.errors import ConfigurationError, UpstreamError
from .periods import isoformat_utc
from .retry import RetryConfig, retry_call

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.portone.io"


class PaymentDetail(NamedTuple):
    id: str
    gateway_payment_id: Optional[str]
    amount_total: int
    order_name: str
    billing_key: Optional[str]
    customer_id: Optional[str]

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PaymentDetail":
        try:
            amount_total = int(data["amount"]["total"])
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError("PortOne payment payload has no amount.total") from e
        return cls(
            id=data.get("id"),
            gateway_payment_id=data.get("paymentId"),
            amount_total=amount_total,
            order_name=data.get("orderName") or "",
            billing_key=data.get("billingKey") or None,
            customer_id=(data.get("customer") or {}).get("id"),
        )


class ScheduleRecord(NamedTuple):
    id: str
    payment_id: Optional[str]


def _is_transient(exc: Exception) -> bool:
    if not isinstance(exc, UpstreamError):
        return False
    return exc.status_code is None or exc.status_code == 429 or exc.status_code >= 500


class PortOneClient:
    """
    Blocking PortOne REST client. One instance per process: the session and
    credential are shared, read-only, across webhook deliveries.
    """

    def __init__(
        self,
        api_secret: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        retry: Optional[RetryConfig] = None,
        nonfatal_retry: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
    ):
        if not api_secret:
            raise ConfigurationError("PORTONE_API_SECRET is not configured")
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.retry = retry or RetryConfig(max_attempts=3)
        self.nonfatal_retry = nonfatal_retry or RetryConfig(max_attempts=1)
        self.session = session or requests.Session()
        self.headers = {
            "Content-Type": "application/json",
            "Authorization": f"PortOne {api_secret}",
        }
        self._sleep = sleep

    @classmethod
    def from_config(cls, config) -> "PortOneClient":
        base_delay = float(config.get("PORTONE_RETRY_BASE_DELAY", 0.5))
        return cls(
            api_secret=config.get("PORTONE_API_SECRET"),
            base_url=config.get("PORTONE_API_BASE", DEFAULT_BASE_URL),
            timeout=float(config.get("PORTONE_TIMEOUT_SECONDS", 10.0)),
            retry=RetryConfig(
                max_attempts=int(config.get("PORTONE_MAX_ATTEMPTS", 3)),
                base_delay=base_delay,
            ),
            nonfatal_retry=RetryConfig(
                max_attempts=int(config.get("PORTONE_NONFATAL_MAX_ATTEMPTS", 1)),
                base_delay=base_delay,
            ),
        )

    def _send(self, method: str, path: str, label: str, retry: RetryConfig, payload=None) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"

        def attempt() -> requests.Response:
            try:
                response = self.session.request(
                    method, url, json=payload, headers=self.headers, timeout=self.timeout,
                )
            except Timeout as e:
                raise UpstreamError(f"PortOne {label} timed out after {self.timeout}s") from e
            except RequestException as e:
                raise UpstreamError(f"PortOne {label} request failed: {e}") from e

            if not response.ok:
                logger.error("PortOne %s failed (%s): %s", label, response.status_code, response.text)
                raise UpstreamError(
                    f"PortOne {label} failed: {response.status_code}",
                    status_code=response.status_code,
                    body=response.text,
                )
            return response

        return retry_call(attempt, retry, _is_transient, sleep=self._sleep, label=f"PortOne {label}")

    @staticmethod
    def _json(response: requests.Response, label: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"PortOne {label} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"PortOne {label} returned an unexpected payload")
        return data

    def get_payment(self, payment_id: str) -> PaymentDetail:
        response = self._send("GET", f"payments/{payment_id}", "payment lookup", self.retry)
        return PaymentDetail.from_json(self._json(response, "payment lookup"))

    def create_schedule(
        self,
        schedule_id: str,
        *,
        billing_key: str,
        order_name: str,
        customer_id: Optional[str],
        amount_total: int,
        currency: str,
        time_to_pay: datetime,
    ) -> None:
        """Register a future charge whose gateway payment id is schedule_id."""
        body = {
            "payment": {
                "billingKey": billing_key,
                "orderName": order_name,
                "customer": {"id": customer_id},
                "amount": {"total": amount_total},
                "currency": currency,
            },
            "timeToPay": isoformat_utc(time_to_pay),
        }
        self._send("POST", f"payments/{schedule_id}/schedule", "schedule creation", self.nonfatal_retry, body)

    def query_payment_schedules(self, billing_key: str, from_: datetime, until: datetime) -> List[ScheduleRecord]:
        # PortOne takes the filter as a body on GET
        body = {
            "filter": {
                "billingKey": billing_key,
                "from": isoformat_utc(from_),
                "until": isoformat_utc(until),
            },
        }
        response = self._send("GET", "payment-schedules", "schedule lookup", self.nonfatal_retry, body)
        items = self._json(response, "schedule lookup").get("items") or []
        return [
            ScheduleRecord(id=item.get("id"), payment_id=item.get("paymentId"))
            for item in items
            if isinstance(item, dict) and item.get("id")
        ]

    def cancel_schedules(self, schedule_ids: List[str]) -> None:
        self._send("DELETE", "payment-schedules", "schedule cancellation", self.nonfatal_retry,
                   {"scheduleIds": list(schedule_ids)})

    def cancel_payment(self, payment_id: str, reason: str) -> None:
        """Refund and cancel a paid charge. PortOne follows up with a Cancelled webhook."""
        # Single attempt: a cancel that timed out may still have gone through
        self._send("POST", f"payments/{payment_id}/cancel", "payment cancellation",
                   RetryConfig(max_attempts=1), {"reason": reason})
