"""Version information for ledgerlens."""

VERSION = '0.3.0'
