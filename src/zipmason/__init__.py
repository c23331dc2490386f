"""zipmason - safe, concurrent ZIP archive operations driven by 7-Zip."""

__version__ = "0.1.0"
