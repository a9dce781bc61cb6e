"""SecondLook: privacy-safe activity snapshots from connector imports."""

__version__ = "0.1.0"
