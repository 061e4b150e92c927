"""eventpay - ticket payment settlement and escrow on the Stellar network."""

__version__ = "0.1.0"
