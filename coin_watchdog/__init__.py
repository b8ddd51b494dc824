"""Top-level package for the coin watchdog.

The package streams tickers and account positions from a ccxt.pro exchange and
keeps a downstream display in sync. Subpackages (config, core, exchange, watch,
interfaces, telemetry) stay import-safe for any runtime component.
"""

__all__: list[str] = []
