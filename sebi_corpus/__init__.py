"""SEBI regulatory corpus: chunking, embedding and hybrid retrieval"""

__version__ = "1.0.0"
