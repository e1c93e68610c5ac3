"""stackform: deployment descriptor compiler."""
__version__ = "0.1.0"
