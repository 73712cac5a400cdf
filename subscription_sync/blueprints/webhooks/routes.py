from flask import jsonify, request
from . import bp
from subscription_sync.billing import get_dispatcher
from subscription_sync.extensions import limiter

# ----- PortOne Webhook (Paid / Cancelled lifecycle) -----
@limiter.exempt
@bp.post("/portone")
def portone_webhook():
    """
    PortOne → /api/portone
    Body: {"payment_id": "...", "status": "Paid" | "Cancelled"}
    """
    payload = request.get_json(force=True, silent=True)
    body, status = get_dispatcher().dispatch(payload)
    return jsonify(body), status
