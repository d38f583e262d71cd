"""RPMB protocol, block devices and super-block handling for a tamper-resistant file system."""

__version__ = "0.1.0"
__all__ = ["blockrange", "device", "rpmb", "superblock"]