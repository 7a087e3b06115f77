"""Bilateral trade statistics ingestion (UN Comtrade, World Bank WITS)."""

__version__ = "0.1.0"
