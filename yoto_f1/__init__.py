"""yoto-f1: keeps a Yoto MYO card narrating the next Formula 1 race weekend."""

__version__ = "0.1.0"
