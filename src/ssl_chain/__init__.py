"""Certificate chain viewer: issuance tree, trust anchors and weak signatures."""

__version__ = "0.1.0"
