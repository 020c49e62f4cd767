"""Load a layered configuration session, order its changes into transactions and commit them."""

__version__ = "0.1.0"