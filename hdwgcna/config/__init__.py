"""Configuration for hdwgcna runs.

Example
-------
>>> from hdwgcna.config import HdWGCNAConfig
>>> config = HdWGCNAConfig.from_yaml("hdwgcna.yaml")
>>> config.to_dict()["network"]["deep_split"]
4
"""

from .pipeline import HdWGCNAConfig

__all__ = [
    "HdWGCNAConfig",
]
