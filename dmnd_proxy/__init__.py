"""Messages, job translation, extranonces, channels and share checks for a Stratum V1 to V2 proxy."""

__version__ = "0.2.4"