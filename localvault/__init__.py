"""LocalVault - encrypted local vault and delegated data import."""

__version__ = "0.4.0"
