"""CSI driver logic for DingoFS: driver capabilities, services, fuse mounting and mount-info resolution."""

__version__ = "1.0.0"