import logging

from flask import current_app, jsonify, request
from . import bp
from subscription_sync.billing import get_gateway, get_ledger
from subscription_sync.errors import UpstreamError
from subscription_sync.extensions import limiter
from subscription_sync.observability import log_event

logger = logging.getLogger(__name__)

STATUS_SUBSCRIBED = "subscribed"
STATUS_FREE = "free"

@bp.get("/status")
@limiter.limit("60/minute")
def subscription_status():
    """
    Current subscription state from the ledger. With ?transaction_key= the
    answer is scoped to that payment; otherwise any active period counts.
    """
    ledger = get_ledger()
    key = (request.args.get("transaction_key") or "").strip()

    if key:
        current = ledger.current_period(key)
    else:
        active = ledger.active_periods()
        current = active[0] if active else None

    return jsonify({
        "subscribed": current is not None,
        "transaction_key": current.transaction_key if current else None,
        "status_message": STATUS_SUBSCRIBED if current else STATUS_FREE,
        "payment": current.to_dict() if current else None,
    })

@bp.post("/cancel")
@limiter.limit("10/minute")
def cancel_subscription():
    """
    Customer-initiated cancellation. Body: {"transactionKey": "..."}
    Only asks PortOne to cancel the charge; the ledger reversal and the
    next-cycle schedule are handled when the Cancelled webhook arrives.
    """
    data = request.get_json(silent=True) or {}
    key = data.get("transactionKey") if isinstance(data, dict) else None
    if not isinstance(key, str) or not key.strip():
        return jsonify({"success": False, "error": "transactionKey is required"}), 400

    if get_ledger().current_period(key) is None:
        return jsonify({"success": False, "error": "No active subscription for this transaction"}), 404

    try:
        get_gateway().cancel_payment(key, reason=current_app.config.get("SUBSCRIPTION_CANCEL_REASON"))
    except UpstreamError as e:
        logger.warning("Cancel request for %s failed: %s", key, e)
        return jsonify({"success": False, "error": str(e)}), 502

    log_event(logger, "subscription_cancel_requested", transaction_key=key)
    return jsonify({"success": True})
