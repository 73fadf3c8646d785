"""MODIS SST clean-up, cross-validation gaps and DINCAE-style reconstruction."""

__version__ = "0.1.0"
