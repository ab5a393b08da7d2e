"""Product handlers invoked by the step dispatcher."""

from ussd_engine.ussd.handlers.airtime import AirtimeHandler
from ussd_engine.ussd.handlers.base import BUNDLE_SELECTION_REQUIRED, HandlerResult, TurnContext
from ussd_engine.ussd.handlers.bundle import BundleHandler
from ussd_engine.ussd.handlers.earnings import EarningsHandler
from ussd_engine.ussd.handlers.menu import MenuHandler
from ussd_engine.ussd.handlers.result_checker import ResultCheckerHandler
from ussd_engine.ussd.handlers.tv_bills import TVBillsHandler
from ussd_engine.ussd.handlers.utility import UtilityHandler

__all__ = [
    "AirtimeHandler",
    "BUNDLE_SELECTION_REQUIRED",
    "BundleHandler",
    "EarningsHandler",
    "HandlerResult",
    "MenuHandler",
    "ResultCheckerHandler",
    "TVBillsHandler",
    "TurnContext",
    "UtilityHandler",
]
