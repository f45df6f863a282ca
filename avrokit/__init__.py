"""Avro schema codecs, binary and JSON encodings, Object Container Files and Rabin fingerprints."""

__version__ = "0.1.0"

__all__ = [
    "maps",
    "names",
    "ocf",
    "ocf_writer",
    "primitives",
    "rabin",
    "records",
    "schema",
    "textscan",
    "unions",
]