"""Service layer: gateway and payout clients, settlement and the lifecycle sweep."""
