# trading/__init__.py
"""
Trading subsystem package.

Provides:
- Endpoints for the BingX perpetual-swap REST API
- Core domain enums, models and errors
- Services for market data, account, execution and composite trading flows
- EventBus for fanning out stream events to local observers
- Application-level TradeAPI for the gateway
"""
