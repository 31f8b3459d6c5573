"""Client discovery, ARP lookup, profile selection, byte-size parsing and a control socket for a local DNS proxy."""

__version__ = "0.1.0"