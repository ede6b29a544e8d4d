# src/epi_ensembles/version_info.py
VERSION = "0.1.0"
