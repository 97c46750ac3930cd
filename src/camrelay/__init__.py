"""camrelay — on-demand camera relay over HTTP."""

__version__ = "0.1.0"
