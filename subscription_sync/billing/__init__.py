from flask import current_app

EXTENSION_KEY = "subscription_sync"


def init_billing(app, db, gateway=None, calculator=None):
    """
    Wire the webhook flow once per process and park it on app.extensions.
    Production builds the gateway client and calculator from config; tests
    pass fakes.
    """
    from .dispatcher import WebhookDispatcher
    from .gateway import PortOneClient
    from .handlers import CancelledEventHandler, PaidEventHandler
    from .ledger import SubscriptionLedger
    from .periods import PeriodCalculator

    cfg = app.config
    gateway = gateway or PortOneClient.from_config(cfg)
    calculator = calculator or PeriodCalculator(schedule_tz=cfg.get("SCHEDULE_TIMEZONE", "UTC"))
    ledger = SubscriptionLedger(db, clock=calculator.clock)

    dispatcher = WebhookDispatcher(
        paid_handler=PaidEventHandler(
            gateway, ledger, calculator,
            currency=cfg.get("SUBSCRIPTION_CURRENCY", "KRW"),
        ),
        cancelled_handler=CancelledEventHandler(gateway, ledger, calculator),
        db=db,
    )
    app.extensions[EXTENSION_KEY] = {"dispatcher": dispatcher, "ledger": ledger, "gateway": gateway}
    return dispatcher


def get_dispatcher():
    return current_app.extensions[EXTENSION_KEY]["dispatcher"]


def get_ledger():
    return current_app.extensions[EXTENSION_KEY]["ledger"]


def get_gateway():
    return current_app.extensions[EXTENSION_KEY]["gateway"]
