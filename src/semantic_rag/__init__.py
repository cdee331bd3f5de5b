"""Retrieval-augmented chat over indexed documents with a semantic response cache."""

__version__ = "0.1.0"
