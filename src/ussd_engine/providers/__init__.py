"""External collaborator adapters."""

from __future__ import annotations

from dataclasses import dataclass

from ussd_engine.config import Settings
from ussd_engine.providers.base import (
    CatalogProvider,
    CommissionProvider,
    GatewayClient,
    ProviderError,
    SendMoneyProvider,
    StatusCheckProvider,
    StatusQueryError,
    VoucherNotifier,
)


@dataclass
class Providers:
    """The set of collaborators one engine instance talks to."""

    gateway: GatewayClient
    status: StatusCheckProvider
    commission: CommissionProvider
    send_money: SendMoneyProvider
    catalog: CatalogProvider
    notifier: VoucherNotifier

    async def aclose(self) -> None:
        """Close HTTP clients held by the adapters."""
        for adapter in (
            self.gateway, self.status, self.commission,
            self.send_money, self.catalog, self.notifier,
        ):
            close = getattr(adapter, "aclose", None)
            if close is not None:
                await close()


def build_providers(settings: Settings) -> Providers:
    """Select stub or Hubtel adapters from PROVIDER_MODE."""
    if settings.provider_mode == "hubtel":
        from ussd_engine.providers.hubtel import (
            HubtelCatalogProvider,
            HubtelCommissionProvider,
            HubtelGatewayClient,
            HubtelSendMoneyProvider,
            HubtelSmsNotifier,
            HubtelStatusCheckProvider,
        )

        return Providers(
            gateway=HubtelGatewayClient(settings),
            status=HubtelStatusCheckProvider(settings),
            commission=HubtelCommissionProvider(settings),
            send_money=HubtelSendMoneyProvider(settings),
            catalog=HubtelCatalogProvider(settings),
            notifier=HubtelSmsNotifier(settings),
        )
    if settings.provider_mode != "stub":
        raise ValueError(f"Unknown PROVIDER_MODE: {settings.provider_mode}")

    from ussd_engine.providers.stub import (
        StubCommissionProvider,
        StubGatewayClient,
        StubSendMoneyProvider,
        StubStatusCheckProvider,
        StubVoucherNotifier,
        default_catalog,
    )

    return Providers(
        gateway=StubGatewayClient(),
        status=StubStatusCheckProvider(),
        commission=StubCommissionProvider(),
        send_money=StubSendMoneyProvider(),
        catalog=default_catalog(),
        notifier=StubVoucherNotifier(),
    )


__all__ = [
    "CatalogProvider",
    "CommissionProvider",
    "GatewayClient",
    "ProviderError",
    "Providers",
    "SendMoneyProvider",
    "StatusCheckProvider",
    "StatusQueryError",
    "VoucherNotifier",
    "build_providers",
]
