"""osslite: an OSS-compatible object store with per-object canned ACLs."""

__version__ = "0.1.0"
