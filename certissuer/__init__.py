"""Certificate issuer controller core for HomeLab PKI."""

__version__ = "0.1.0"
