"""Detection, identification and localisation of circular ring markers."""

__version__ = "0.1.0"
__all__ = [
    "circle_detect",
    "code_reader",
    "necklace",
    "orientation",
    "raw_image",
    "structs",
    "timer",
    "transformation",
    "whycon",
]